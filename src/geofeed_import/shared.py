"""geofeed_import.shared

CLI run support: reject-file writer, run counters, and the JSON run report.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from geofeed_import.models import DUPLICATE_BATCH, ImportCandidateRow
from geofeed_import.reconcile import ReconciliationSummary

REJECT_FIELDNAMES = ["line_number", "original", "error_kind", "reason"]


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected input lines.

    The file is only created when the first reject is written, so a clean run
    leaves nothing behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    @property
    def path(self) -> Path:
        return self._path

    def write(self, row: ImportCandidateRow, reason: str | None = None) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.DictWriter(self._fh, fieldnames=REJECT_FIELDNAMES)
            self._writer.writeheader()
        self._writer.writerow({
            "line_number": row.line_number,
            "original": row.original,
            "error_kind": row.error_kind or "",
            "reason": reason or row.reason or "",
        })
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# Run counters
# ---------------------------------------------------------------------------

@dataclass
class ImportRunCounters:
    rows_read: int = 0
    rows_valid: int = 0
    rows_invalid: int = 0
    rows_duplicate_batch: int = 0
    rows_duplicate_storage: int = 0
    rows_conflict: int = 0
    rows_selected: int = 0
    rows_imported: int = 0
    rows_skipped: int = 0
    draft_created: bool = False
    draft_finalized: bool = False
    draft_abandoned: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def reject_rate(self) -> float:
        return self.rows_invalid / self.rows_read if self.rows_read else 0.0

    def absorb_preview(
        self,
        summary: ReconciliationSummary,
        rows: list[ImportCandidateRow],
    ) -> None:
        self.rows_read = summary.total
        self.rows_valid = summary.valid
        self.rows_invalid = summary.invalid
        self.rows_conflict = summary.conflict
        self.rows_duplicate_batch = sum(
            1 for r in rows if r.duplicate and r.duplicate_source == DUPLICATE_BATCH
        )
        self.rows_duplicate_storage = summary.duplicate - self.rows_duplicate_batch
        self.rows_selected = sum(1 for r in rows if r.valid and r.selected and not r.duplicate)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["reject_rate"] = round(self.reject_rate, 4)
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source: dict[str, Any],
    counters: ImportRunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
