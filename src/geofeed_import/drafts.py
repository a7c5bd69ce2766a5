"""geofeed_import.drafts

Draft lifecycle coordinator for the import workflow.

States:
    target_selected -> previewing -> committed                (existing geofeed)
    draft_created   -> previewing -> committed | abandoned    (new geofeed)

  - start_new() creates the target geofeed with is_draft=true before any CSV
    is parsed, so accepted rows have somewhere to land.
  - commit() always finalizes when this session created the draft or the
    target was already a draft; finalizing is the only path that clears
    is_draft.
  - cancel() deletes a draft this session created and never committed.  It is
    idempotent and best-effort: storage failures are logged, not raised, so a
    failed cleanup never blocks a retry.
  - continue_draft() re-enters previewing for a draft left by an earlier
    session, without recreating it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import requests

from geofeed_import.activity import (
    ACTION_CREATE,
    ACTION_DELETE,
    ActivitySink,
    record_safely,
)
from geofeed_import.commit import commit_import, require_user
from geofeed_import.config import ImportSettings
from geofeed_import.errors import (
    GeofeedImportError,
    InvalidRequestError,
    NoRowsProvidedError,
)
from geofeed_import.models import (
    Geofeed,
    ImportRequest,
    ImportResult,
    RequestContext,
)
from geofeed_import.parser import parse_import_text
from geofeed_import.reconcile import ReconciliationResult, reconcile
from geofeed_import.sources import fetch_csv_text, read_csv_file
from geofeed_import.storage import GeofeedStore

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    TARGET_SELECTED = "target_selected"
    DRAFT_CREATED = "draft_created"
    PREVIEWING = "previewing"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


_OPEN_STATES = frozenset({
    SessionState.TARGET_SELECTED,
    SessionState.DRAFT_CREATED,
    SessionState.PREVIEWING,
})


@dataclass
class ImportSession:
    ctx: RequestContext
    geofeed_id: str
    geofeed_name: str
    created_draft: bool = False
    is_draft: bool = False
    state: SessionState = SessionState.TARGET_SELECTED
    preview: ReconciliationResult | None = None
    result: ImportResult | None = None

    @property
    def finalize_on_commit(self) -> bool:
        return self.created_draft or self.is_draft

    @property
    def is_open(self) -> bool:
        return self.state in _OPEN_STATES


class DraftCoordinator:
    """Drives create-draft -> preview -> commit-or-discard for one store."""

    def __init__(
        self,
        store: GeofeedStore,
        activity: ActivitySink | None = None,
        settings: ImportSettings | None = None,
        http: requests.Session | None = None,
    ) -> None:
        self._store = store
        self._activity = activity
        self._settings = settings or ImportSettings()
        self._http = http
        self._country_codes = self._settings.country_codes

    # ------------------------------------------------------------------
    # Session start
    # ------------------------------------------------------------------

    def start_new(self, ctx: RequestContext, name: str) -> ImportSession:
        require_user(ctx)
        name = (name or "").strip()
        if not name:
            raise InvalidRequestError("Geofeed name is required")

        geofeed_id = self._store.create_geofeed(ctx, name, is_draft=True)
        log.info("Created draft geofeed %s (%r) for import", geofeed_id, name)
        record_safely(
            self._activity, ctx, ACTION_CREATE,
            f'Created draft geofeed "{name}" for import',
            geofeed_id=geofeed_id, geofeed_name=name,
        )
        return ImportSession(
            ctx=ctx,
            geofeed_id=geofeed_id,
            geofeed_name=name,
            created_draft=True,
            is_draft=True,
            state=SessionState.DRAFT_CREATED,
        )

    def start_existing(self, ctx: RequestContext, geofeed_id: str) -> ImportSession:
        require_user(ctx)
        geofeed = self._store.get_geofeed(ctx, geofeed_id)
        return ImportSession(
            ctx=ctx,
            geofeed_id=geofeed.id,
            geofeed_name=geofeed.name,
            created_draft=False,
            is_draft=geofeed.is_draft,
            state=SessionState.TARGET_SELECTED,
        )

    def continue_draft(self, ctx: RequestContext, geofeed_id: str) -> ImportSession:
        require_user(ctx)
        geofeed = self._store.get_geofeed(ctx, geofeed_id)
        if not geofeed.is_draft:
            raise InvalidRequestError(f'Geofeed "{geofeed.name}" is not a draft')
        return ImportSession(
            ctx=ctx,
            geofeed_id=geofeed.id,
            geofeed_name=geofeed.name,
            created_draft=False,
            is_draft=True,
            state=SessionState.PREVIEWING,
        )

    # ------------------------------------------------------------------
    # Preview
    # ------------------------------------------------------------------

    def _require_open(self, session: ImportSession) -> None:
        if not session.is_open:
            raise InvalidRequestError(f"Import session is already {session.state.value}")

    def preview_text(self, session: ImportSession, text: str) -> ReconciliationResult:
        """Parse ``text`` and reconcile it against one snapshot of stored rows."""
        self._require_open(session)
        candidates = parse_import_text(text, self._country_codes)
        existing = self._store.list_rows(session.ctx, session.geofeed_id)
        session.preview = reconcile(candidates, existing)
        session.state = SessionState.PREVIEWING
        summary = session.preview.summary
        log.info(
            "Preview for geofeed %s: %d rows, %d valid, %d invalid, %d duplicate, %d conflict",
            session.geofeed_id, summary.total, summary.valid, summary.invalid,
            summary.duplicate, summary.conflict,
        )
        return session.preview

    def preview_file(self, session: ImportSession, path: Path) -> ReconciliationResult:
        return self.preview_text(session, read_csv_file(path))

    def preview_url(self, session: ImportSession, url: str) -> ReconciliationResult:
        self._require_open(session)
        text = fetch_csv_text(
            url, session=self._http, timeout=self._settings.fetch_timeout_seconds
        )
        return self.preview_text(session, text)

    # ------------------------------------------------------------------
    # Commit / cancel
    # ------------------------------------------------------------------

    def commit(self, session: ImportSession) -> ImportResult:
        """Commit the preview's selected rows; finalizes drafts."""
        self._require_open(session)
        if session.preview is None:
            raise NoRowsProvidedError("No preview to commit")

        selected = session.preview.selected_rows()
        if not selected:
            raise NoRowsProvidedError("Select at least one valid row to import")

        request = ImportRequest(
            geofeed_id=session.geofeed_id,
            rows=[row.to_input() for row in selected],
            finalize=session.finalize_on_commit,
        )
        result = commit_import(
            self._store, session.ctx, request, self._activity, self._country_codes
        )
        session.result = result
        session.state = SessionState.COMMITTED
        if result.finalized:
            session.is_draft = False
        return result

    def cancel(self, session: ImportSession) -> bool:
        """Abandon the session; returns True if a draft was deleted.

        Safe to call repeatedly and after the draft is already gone.
        """
        if session.state in (SessionState.COMMITTED, SessionState.ABANDONED):
            return False

        deleted = False
        if session.created_draft:
            deleted = self._delete_draft_quietly(
                session.ctx, session.geofeed_id, session.geofeed_name
            )
        session.state = SessionState.ABANDONED
        session.preview = None
        return deleted

    def abandon_draft(self, ctx: RequestContext, geofeed_id: str) -> bool:
        """Delete a draft left by an earlier session.

        Finalized geofeeds are never deleted here; a missing geofeed is a no-op.
        """
        require_user(ctx)
        try:
            geofeed = self._store.get_geofeed(ctx, geofeed_id)
        except GeofeedImportError as exc:
            log.info("abandon_draft: geofeed %s not available (%s)", geofeed_id, exc)
            return False
        if not geofeed.is_draft:
            raise InvalidRequestError(f'Geofeed "{geofeed.name}" is not a draft')
        return self._delete_draft_quietly(ctx, geofeed.id, geofeed.name)

    def _delete_draft_quietly(
        self,
        ctx: RequestContext,
        geofeed_id: str,
        geofeed_name: str,
    ) -> bool:
        try:
            deleted = self._store.delete_geofeed(ctx, geofeed_id)
        except Exception as exc:  # noqa: BLE001
            log.warning("Draft cleanup failed for geofeed %s: %s", geofeed_id, exc)
            return False
        if deleted:
            log.info("Deleted abandoned draft geofeed %s", geofeed_id)
            record_safely(
                self._activity, ctx, ACTION_DELETE,
                f'Discarded draft geofeed "{geofeed_name}"',
                geofeed_id=geofeed_id, geofeed_name=geofeed_name,
            )
        return deleted

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_geofeeds(self, ctx: RequestContext) -> tuple[list[Geofeed], list[Geofeed]]:
        """Return (finalized, drafts); drafts never appear in the first list."""
        require_user(ctx)
        geofeeds = self._store.list_geofeeds(ctx)
        finalized = [g for g in geofeeds if not g.is_draft]
        drafts = [g for g in geofeeds if g.is_draft]
        return finalized, drafts
