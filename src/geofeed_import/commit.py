"""geofeed_import.commit

Commit executor: persists the rows a caller selected from a preview.

The server re-validates and re-reconciles every submitted row because storage
may have changed since the preview was built.  Processing order:

  1. Reject a request with no caller identity or no rows.
  2. Ownership check for the target geofeed.
  3. Re-validate rows; reject the request if none pass (NoValidRowsError).
  4. Snapshot stored rows once and re-reconcile.
  5. Insert accepted rows and, when finalizing, clear the draft flag inside a
     single storage transaction.  Rows that lose a race against a concurrent
     insert are reported as skipped duplicates.
  6. Audit record, after the transaction, failures swallowed.

Partial success is the normal outcome; the ImportResult lists every rejected
row with its index, reason, and original value.
"""

from __future__ import annotations

import logging

from geofeed_import.activity import ACTION_IMPORT, ActivitySink, record_safely
from geofeed_import.alpha2 import ALPHA2_CODES
from geofeed_import.errors import (
    NoRowsProvidedError,
    NoValidRowsError,
    UnauthorizedError,
)
from geofeed_import.models import (
    DUPLICATE_BATCH,
    REASON_DUPLICATE_IN_BATCH,
    REASON_DUPLICATE_OF_EXISTING,
    ImportRequest,
    ImportResult,
    RequestContext,
    RowError,
)
from geofeed_import.parser import build_candidate
from geofeed_import.reconcile import reconcile
from geofeed_import.storage import GeofeedStore

log = logging.getLogger(__name__)


def require_user(ctx: RequestContext) -> None:
    if ctx is None or not (ctx.user_id or "").strip():
        raise UnauthorizedError("Unauthorized")


def commit_import(
    store: GeofeedStore,
    ctx: RequestContext,
    request: ImportRequest,
    activity: ActivitySink | None = None,
    allowed: frozenset[str] = ALPHA2_CODES,
) -> ImportResult:
    """Persist the valid, non-duplicate rows of ``request``."""
    require_user(ctx)
    if request.submitted_count == 0:
        raise NoRowsProvidedError("No rows provided")

    geofeed = store.get_geofeed(ctx, request.geofeed_id)

    candidates = [
        build_candidate(r.index, r.fields(), r.original, allowed)
        for r in request.rows
    ]
    if not any(c.valid for c in candidates):
        raise NoValidRowsError("No valid rows to import")

    existing = store.list_rows(ctx, geofeed.id)
    plan = reconcile(candidates, existing)

    result = ImportResult(errors=list(request.payload_errors))
    accepted = []
    for row in plan.rows:
        if not row.valid:
            result.errors.append(RowError(row.line_number, row.reason or "", row.original))
            continue
        if row.duplicate:
            reason = (
                REASON_DUPLICATE_IN_BATCH
                if row.duplicate_source == DUPLICATE_BATCH
                else REASON_DUPLICATE_OF_EXISTING
            )
            result.skipped_count += 1
            result.errors.append(RowError(row.line_number, reason, row.original))
            continue
        accepted.append(row)

    with store.transaction():
        inserted = (
            store.insert_rows(ctx, geofeed.id, [r.to_row() for r in accepted])
            if accepted else set()
        )
        if request.finalize:
            store.set_draft_flag(ctx, geofeed.id, False)

    for row in accepted:
        if row.key not in inserted:
            # Lost to a concurrent insert between snapshot and write
            result.skipped_count += 1
            result.errors.append(
                RowError(row.line_number, REASON_DUPLICATE_OF_EXISTING, row.original)
            )
        elif row.conflict:
            result.conflict_count += 1

    result.imported_count = len(inserted)
    result.finalized = request.finalize

    log.info(
        "Imported %d rows into geofeed %s (skipped=%d conflicts=%d errors=%d finalize=%s)",
        result.imported_count, geofeed.id, result.skipped_count,
        result.conflict_count, result.error_count, request.finalize,
    )

    finalize_note = " and finalized draft" if request.finalize else ""
    record_safely(
        activity, ctx, ACTION_IMPORT,
        f'Imported {result.imported_count} ranges into "{geofeed.name}"{finalize_note}',
        geofeed_id=geofeed.id,
        geofeed_name=geofeed.name,
    )
    return result


def import_payload(
    store: GeofeedStore,
    ctx: RequestContext,
    geofeed_id: str,
    payload: object,
    activity: ActivitySink | None = None,
    allowed: frozenset[str] = ALPHA2_CODES,
) -> dict:
    """Entry point for a thin HTTP layer: untyped JSON in, wire-shape dict out."""
    request = ImportRequest.from_payload(geofeed_id, payload)
    return commit_import(store, ctx, request, activity, allowed).to_dict()
