"""geofeed_import.reconcile

Reconciliation engine: classifies parsed candidates against the rows already
stored for the target geofeed.

Classification, in file order, for each valid candidate:
  1. key already seen earlier in this batch   -> duplicate (batch)
  2. key already stored                       -> duplicate (storage)
  3. network stored under a different key     -> conflict (still selectable)
  4. otherwise                                -> new

Invalid candidates pass through untouched and are never compared with
storage.  The engine is pure: callers supply the stored-row snapshot and
receive an annotated plan.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from geofeed_import.models import (
    DUPLICATE_BATCH,
    DUPLICATE_STORAGE,
    GeofeedRow,
    ImportCandidateRow,
)
from geofeed_import.normalize import normalize_key, trim_field


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ReconciliationSummary:
    total: int = 0
    valid: int = 0
    invalid: int = 0
    duplicate: int = 0
    conflict: int = 0
    new: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "duplicate": self.duplicate,
            "conflict": self.conflict,
            "new": self.new,
        }


@dataclass
class ReconciliationResult:
    rows: list[ImportCandidateRow] = field(default_factory=list)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)

    def _find(self, line_number: int) -> ImportCandidateRow | None:
        for row in self.rows:
            if row.line_number == line_number:
                return row
        return None

    def set_selected(self, line_number: int, selected: bool) -> bool:
        """Select or deselect one row.

        Invalid and duplicate rows can never be selected.  Returns the row's
        selection state after the call (False for an unknown line).
        """
        row = self._find(line_number)
        if row is None:
            return False
        if row.selectable:
            row.selected = selected
        return row.selected

    def select_all_valid(self, selected: bool) -> None:
        for row in self.rows:
            if row.selectable:
                row.selected = selected

    @property
    def all_valid_selected(self) -> bool:
        selectable = [r for r in self.rows if r.selectable]
        return bool(selectable) and all(r.selected for r in selectable)

    def selected_rows(self) -> list[ImportCandidateRow]:
        """Rows eligible for commit: valid, selected, not duplicate."""
        return [r for r in self.rows if r.valid and r.selected and not r.duplicate]

    def invalid_rows(self) -> list[ImportCandidateRow]:
        return [r for r in self.rows if not r.valid]


# ---------------------------------------------------------------------------
# Existing-row index
# ---------------------------------------------------------------------------

def index_existing(
    existing_rows: Iterable[GeofeedRow],
) -> tuple[set[str], dict[str, list[str]]]:
    """Return (existing_keys, existing_by_network) for O(1) duplicate checks."""
    existing_keys: set[str] = set()
    existing_by_network: dict[str, list[str]] = defaultdict(list)
    for row in existing_rows:
        key = normalize_key(row)
        existing_keys.add(key)
        existing_by_network[trim_field(row.network)].append(key)
    return existing_keys, dict(existing_by_network)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def reconcile(
    candidates: Sequence[ImportCandidateRow],
    existing_rows: Iterable[GeofeedRow],
) -> ReconciliationResult:
    """Annotate ``candidates`` in place and return them with aggregate counts."""
    existing_keys, existing_by_network = index_existing(existing_rows)
    seen_in_batch: set[str] = set()
    summary = ReconciliationSummary(total=len(candidates))

    for row in candidates:
        row.duplicate = False
        row.duplicate_source = None
        row.conflict = False

        if not row.valid:
            row.selected = False
            summary.invalid += 1
            continue
        summary.valid += 1

        if row.key in seen_in_batch:
            row.duplicate = True
            row.duplicate_source = DUPLICATE_BATCH
        elif row.key in existing_keys:
            row.duplicate = True
            row.duplicate_source = DUPLICATE_STORAGE
        else:
            same_network = existing_by_network.get(row.network, [])
            row.conflict = any(k != row.key for k in same_network)

        seen_in_batch.add(row.key)
        row.selected = row.valid and not row.duplicate

        if row.duplicate:
            summary.duplicate += 1
        elif row.conflict:
            summary.conflict += 1
        else:
            summary.new += 1

    return ReconciliationResult(rows=list(candidates), summary=summary)
