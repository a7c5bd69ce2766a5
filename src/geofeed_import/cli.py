"""geofeed_import.cli

Command-line entrypoint for geofeed imports.

Modes (--mode):
  import        create/select a target, preview a CSV, commit the selected rows (default)
  preview       parse and reconcile a CSV without writing anything
  cancel_draft  discard a draft geofeed left by an abandoned import
  list          list finalized geofeeds and open drafts
  export        write a geofeed as RFC 8805 CSV

Usage (import into a new draft geofeed):
    geofeed-import \\
        --mode import \\
        --db-dsn "$GEOFEED_DB_DSN" \\
        --user-id "$GEOFEED_USER_ID" \\
        --target new \\
        --geofeed-name "Import Batch" \\
        --csv-path "feeds/geofeed.csv"

Usage (continue an open draft from a URL):
    geofeed-import --mode import --continue-draft \\
        --geofeed-id 7d1c... --url https://example.com/geofeed.csv
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from geofeed_import.activity import PgActivityLog
from geofeed_import.config import ImportSettings, load_settings
from geofeed_import.drafts import DraftCoordinator, ImportSession
from geofeed_import.errors import GeofeedImportError, SettingsValidationError
from geofeed_import.export import export_geofeed
from geofeed_import.models import (
    DUPLICATE_BATCH,
    REASON_DUPLICATE_IN_BATCH,
    REASON_DUPLICATE_OF_EXISTING,
    ImportCandidateRow,
    RequestContext,
)
from geofeed_import.parser import parse_import_text
from geofeed_import.reconcile import ReconciliationResult, reconcile
from geofeed_import.shared import ImportRunCounters, RejectWriter, write_run_report
from geofeed_import.sources import fetch_csv_text, read_csv_file
from geofeed_import.storage import PgGeofeedStore

MODES = ["import", "preview", "cancel_draft", "list", "export"]


# ---------------------------------------------------------------------------
# Flag validation
# ---------------------------------------------------------------------------

def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_source_flags(csv_path: str | None, url: str | None, run_id: str) -> None:
    if bool(csv_path) == bool(url):
        _fatal(run_id, "provide exactly one of --csv-path or --url")


def _validate_target_flags(
    target: str,
    continue_draft: bool,
    geofeed_name: str | None,
    geofeed_id: str | None,
    run_id: str,
) -> None:
    if continue_draft or target == "existing":
        if not geofeed_id:
            _fatal(run_id, "--geofeed-id is required for an existing or draft target")
    elif not (geofeed_name or "").strip():
        _fatal(run_id, "--geofeed-name is required for --target new")


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def _row_status(row: ImportCandidateRow) -> str:
    if not row.valid:
        return row.reason or "invalid"
    if row.duplicate:
        return "duplicate (batch)" if row.duplicate_source == DUPLICATE_BATCH else "duplicate"
    if row.conflict:
        return "conflict"
    return "valid"


def _echo_preview(run_id: str, preview: ReconciliationResult) -> None:
    for row in preview.rows:
        fields = ",".join([
            row.network, row.country_code, row.subdivision, row.city, row.postal_code,
        ]) if row.valid else row.original
        mark = "x" if row.selected else " "
        click.echo(f"  [{mark}] {row.line_number:>6}  {_row_status(row):<22} {fields}")
    s = preview.summary
    click.echo(
        f"[{run_id}] Preview: {s.total} rows, {s.valid} valid, {s.invalid} invalid, "
        f"{s.duplicate} duplicate, {s.conflict} conflict"
    )


def _write_rejects(preview: ReconciliationResult, rejects: RejectWriter) -> None:
    for row in preview.rows:
        if not row.valid:
            rejects.write(row)
        elif row.duplicate:
            reason = (
                REASON_DUPLICATE_IN_BATCH
                if row.duplicate_source == DUPLICATE_BATCH
                else REASON_DUPLICATE_OF_EXISTING
            )
            rejects.write(row, reason)


def _read_source(csv_path: str | None, url: str | None, settings: ImportSettings) -> str:
    if csv_path:
        return read_csv_file(Path(csv_path))
    return fetch_csv_text(url or "", timeout=settings.fetch_timeout_seconds)


# ---------------------------------------------------------------------------
# Mode runners
# ---------------------------------------------------------------------------

def _run_import(
    run_id: str,
    coordinator: DraftCoordinator,
    ctx: RequestContext,
    counters: ImportRunCounters,
    rejects: RejectWriter,
    target: str,
    continue_draft: bool,
    geofeed_name: str | None,
    geofeed_id: str | None,
    csv_path: str | None,
    url: str | None,
    max_reject_rate: float,
    dry_run: bool,
) -> None:
    if continue_draft:
        session = coordinator.continue_draft(ctx, geofeed_id or "")
    elif target == "existing":
        session = coordinator.start_existing(ctx, geofeed_id or "")
    else:
        session = coordinator.start_new(ctx, geofeed_name or "")
        counters.draft_created = True
    click.echo(
        f"[{run_id}] Target geofeed {session.geofeed_id} "
        f'"{session.geofeed_name}" (draft={session.is_draft})'
    )

    try:
        preview = _preview_session(coordinator, session, csv_path, url)
    except GeofeedImportError:
        _abandon(run_id, coordinator, session, counters)
        raise

    _echo_preview(run_id, preview)
    counters.absorb_preview(preview.summary, preview.rows)
    _write_rejects(preview, rejects)

    if dry_run:
        _abandon(run_id, coordinator, session, counters)
        click.echo(f"[{run_id}] [dry-run] Nothing committed.")
        return

    if counters.reject_rate > max_reject_rate:
        _abandon(run_id, coordinator, session, counters)
        _fatal(
            run_id,
            f"reject rate {counters.reject_rate:.2%} exceeds threshold "
            f"{max_reject_rate:.2%}; nothing committed",
        )

    if not preview.selected_rows():
        _abandon(run_id, coordinator, session, counters)
        click.echo(f"[{run_id}] No new rows to import.")
        return

    try:
        result = coordinator.commit(session)
    except GeofeedImportError:
        _abandon(run_id, coordinator, session, counters)
        raise
    counters.rows_imported = result.imported_count
    counters.rows_skipped = result.skipped_count
    counters.draft_finalized = result.finalized
    for err in result.errors:
        counters.warnings.append(f"row {err.index}: {err.reason}")
    click.echo(
        f"[{run_id}] Imported {result.imported_count} ranges, "
        f"{result.skipped_count} skipped, {result.conflict_count} conflicts, "
        f"{result.error_count} errors"
        + (" (draft finalized)" if result.finalized else "")
    )


def _preview_session(
    coordinator: DraftCoordinator,
    session: ImportSession,
    csv_path: str | None,
    url: str | None,
) -> ReconciliationResult:
    if csv_path:
        return coordinator.preview_file(session, Path(csv_path))
    return coordinator.preview_url(session, url or "")


def _abandon(
    run_id: str,
    coordinator: DraftCoordinator,
    session: ImportSession,
    counters: ImportRunCounters,
) -> None:
    if coordinator.cancel(session):
        counters.draft_abandoned = True
        click.echo(f"[{run_id}] Discarded draft geofeed {session.geofeed_id}")


def _run_preview(
    run_id: str,
    coordinator: DraftCoordinator,
    ctx: RequestContext,
    settings: ImportSettings,
    counters: ImportRunCounters,
    rejects: RejectWriter,
    geofeed_id: str | None,
    csv_path: str | None,
    url: str | None,
) -> None:
    if geofeed_id:
        session = coordinator.start_existing(ctx, geofeed_id)
        preview = _preview_session(coordinator, session, csv_path, url)
    else:
        text = _read_source(csv_path, url, settings)
        preview = reconcile(parse_import_text(text, settings.country_codes), [])
    _echo_preview(run_id, preview)
    counters.absorb_preview(preview.summary, preview.rows)
    _write_rejects(preview, rejects)


def _run_list(coordinator: DraftCoordinator, ctx: RequestContext) -> None:
    finalized, drafts = coordinator.list_geofeeds(ctx)
    click.echo(f"Geofeeds ({len(finalized)}):")
    for g in finalized:
        click.echo(f"  {g.id}  {g.name}  ({g.row_count} ranges)")
    click.echo(f"Drafts ({len(drafts)}); resume with --mode import --continue-draft:")
    for g in drafts:
        click.echo(f"  {g.id}  {g.name}  ({g.row_count} ranges)")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice(MODES),
    show_default=True,
    help="Operation to run",
)
@click.option("--db-dsn", required=True, envvar="GEOFEED_DB_DSN", help="PostgreSQL DSN")
@click.option(
    "--user-id",
    required=True,
    envvar="GEOFEED_USER_ID",
    help="Owning user id as issued by the identity provider",
)
@click.option(
    "--target",
    default="new",
    type=click.Choice(["new", "existing"]),
    show_default=True,
    help="[import] Import into a new draft geofeed or an existing one",
)
@click.option("--geofeed-name", default=None, help="[import] Name for a new geofeed")
@click.option("--geofeed-id", default=None, help="[import|preview|cancel_draft|export] Target geofeed id")
@click.option(
    "--continue-draft",
    is_flag=True,
    default=False,
    help="[import] Resume an open draft (--geofeed-id) without recreating it",
)
@click.option("--csv-path", default=None, type=click.Path(), help="[import|preview] Input CSV file")
@click.option("--url", default=None, help="[import|preview] Fetch input CSV from URL")
@click.option("--config-path", default=None, type=click.Path(), help="YAML settings file")
@click.option(
    "--max-reject-rate",
    default=None,
    type=float,
    help="[import] Fraction of invalid lines tolerated before nothing is committed "
         "(default from settings)",
)
@click.option("--dry-run", is_flag=True, default=False, help="[import] Preview, then discard")
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/geofeed_rejects.csv",
    show_default=True,
)
@click.option("--output-path", default=None, type=click.Path(), help="[export] Output file (stdout if omitted)")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str,
    user_id: str,
    target: str,
    geofeed_name: str | None,
    geofeed_id: str | None,
    continue_draft: bool,
    csv_path: str | None,
    url: str | None,
    config_path: str | None,
    max_reject_rate: float | None,
    dry_run: bool,
    rejects_path: str,
    output_path: str | None,
    run_id: str | None,
    log_level: str,
) -> None:
    """Geofeed import CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = ImportRunCounters()

    try:
        settings = load_settings(Path(config_path) if config_path else None)
    except (SettingsValidationError, FileNotFoundError) as exc:
        _fatal(run_id, f"settings: {exc}")
    if max_reject_rate is None:
        max_reject_rate = settings.max_reject_rate

    if mode in ("import", "preview"):
        _validate_source_flags(csv_path, url, run_id)
    if mode == "import":
        _validate_target_flags(target, continue_draft, geofeed_name, geofeed_id, run_id)
    if mode in ("cancel_draft", "export") and not geofeed_id:
        _fatal(run_id, f"--geofeed-id is required for --mode {mode}")

    if mode != "export" or output_path:
        click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    ctx = RequestContext(user_id=user_id)
    rejects = RejectWriter(Path(rejects_path))
    try:
        conn = psycopg.connect(db_dsn, autocommit=True)
    except psycopg.Error as exc:
        _fatal(run_id, f"cannot connect to database: {exc}")

    try:
        store = PgGeofeedStore(conn)
        activity = PgActivityLog(conn)
        coordinator = DraftCoordinator(store, activity, settings)

        if mode == "import":
            _run_import(
                run_id, coordinator, ctx, counters, rejects,
                target=target,
                continue_draft=continue_draft,
                geofeed_name=geofeed_name,
                geofeed_id=geofeed_id,
                csv_path=csv_path,
                url=url,
                max_reject_rate=max_reject_rate,
                dry_run=dry_run,
            )
        elif mode == "preview":
            _run_preview(
                run_id, coordinator, ctx, settings, counters, rejects,
                geofeed_id=geofeed_id, csv_path=csv_path, url=url,
            )
        elif mode == "cancel_draft":
            deleted = coordinator.abandon_draft(ctx, geofeed_id or "")
            click.echo(
                f"[{run_id}] Draft {geofeed_id} "
                + ("discarded." if deleted else "not found; nothing to do.")
            )
            return
        elif mode == "list":
            _run_list(coordinator, ctx)
            return
        elif mode == "export":
            content = export_geofeed(store, ctx, geofeed_id or "", activity)
            if output_path:
                out = Path(output_path)
                out.parent.mkdir(parents=True, exist_ok=True)
                out.write_text(content + "\n" if content else "", encoding="utf-8")
                click.echo(f"[{run_id}] Wrote {out}")
            else:
                click.echo(content)
            return
    except GeofeedImportError as exc:
        _fatal(run_id, str(exc))
    finally:
        conn.close()
        rejects.close()

    if rejects.count:
        click.echo(f"[{run_id}] {rejects.count} rejected lines written to {rejects.path}")
    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"csv_path": csv_path, "url": url, "geofeed_id": geofeed_id},
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
