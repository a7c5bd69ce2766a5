"""geofeed_import.models

Typed values that flow through the import pipeline.

  - RequestContext      : explicit caller identity, passed into every storage call
  - Geofeed / GeofeedRow: stored container and range entry
  - ImportCandidateRow  : transient parsed line, annotated by the reconciler
  - ImportRequest       : validated commit payload (built from untyped JSON)
  - RowError / ImportResult: commit outcome, serialisable to the wire shape
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from geofeed_import.normalize import build_key, normalize_country_code, trim_field

# ---------------------------------------------------------------------------
# Row error kinds and user-facing reasons
# ---------------------------------------------------------------------------

ERR_WRONG_FIELD_COUNT = "wrong_field_count"
ERR_INVALID_CIDR = "invalid_cidr"
ERR_INVALID_COUNTRY_CODE = "invalid_country_code"
ERR_INVALID_ROW_PAYLOAD = "invalid_row_payload"
ERR_CONTROL_CHARACTER = "control_character"

REASONS: dict[str, str] = {
    ERR_WRONG_FIELD_COUNT: "wrong field count",
    ERR_INVALID_CIDR: "invalid CIDR network",
    ERR_INVALID_COUNTRY_CODE: "invalid country code",
    ERR_INVALID_ROW_PAYLOAD: "invalid row payload",
    ERR_CONTROL_CHARACTER: "control character in field",
}

REASON_DUPLICATE_IN_BATCH = "duplicate in import file"
REASON_DUPLICATE_OF_EXISTING = "duplicate of existing range"

DUPLICATE_BATCH = "batch"
DUPLICATE_STORAGE = "storage"

FIELD_COUNT = 5


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller; every scoped query filters by user_id."""

    user_id: str


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------

@dataclass
class Geofeed:
    id: str
    user_id: str
    name: str
    is_draft: bool = False
    created_at: datetime | None = None
    row_count: int = 0


@dataclass
class GeofeedRow:
    network: str
    country_code: str
    subdivision: str | None = None
    city: str | None = None
    postal_code: str | None = None
    id: str | None = None
    geofeed_id: str | None = None
    user_id: str | None = None
    created_at: datetime | None = None

    @property
    def key(self) -> str:
        return build_key(
            self.network, self.country_code,
            self.subdivision, self.city, self.postal_code,
        )

    def fields(self) -> list[str]:
        """The five wire-format fields, absent optionals as empty strings."""
        return [
            trim_field(self.network),
            normalize_country_code(self.country_code),
            trim_field(self.subdivision),
            trim_field(self.city),
            trim_field(self.postal_code),
        ]


# ---------------------------------------------------------------------------
# Import candidates
# ---------------------------------------------------------------------------

@dataclass
class ImportCandidateRow:
    """One non-blank input line after parsing.

    ``duplicate_source`` is DUPLICATE_BATCH when an earlier line of the same
    input carried the same key, DUPLICATE_STORAGE when the key is already
    stored for the target geofeed.
    """

    line_number: int
    original: str
    network: str = ""
    country_code: str = ""
    subdivision: str = ""
    city: str = ""
    postal_code: str = ""
    key: str = ""
    valid: bool = False
    error_kind: str | None = None
    reason: str | None = None
    duplicate: bool = False
    duplicate_source: str | None = None
    conflict: bool = False
    selected: bool = False

    @property
    def selectable(self) -> bool:
        return self.valid and not self.duplicate

    def to_row(self) -> GeofeedRow:
        return GeofeedRow(
            network=self.network,
            country_code=self.country_code,
            subdivision=self.subdivision or None,
            city=self.city or None,
            postal_code=self.postal_code or None,
        )

    def to_input(self) -> ImportRowInput:
        return ImportRowInput(
            index=self.line_number,
            network=self.network,
            country_code=self.country_code,
            subdivision=self.subdivision,
            city=self.city,
            postal_code=self.postal_code,
            original=self.original,
        )


# ---------------------------------------------------------------------------
# Commit request (boundary schema)
# ---------------------------------------------------------------------------

@dataclass
class ImportRowInput:
    index: int
    network: str = ""
    country_code: str = ""
    subdivision: str = ""
    city: str = ""
    postal_code: str = ""
    original: str = ""

    def fields(self) -> list[str]:
        return [
            self.network, self.country_code,
            self.subdivision, self.city, self.postal_code,
        ]


@dataclass
class RowError:
    index: int
    reason: str
    value: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason, "value": self.value}


def _str_field(record: dict[str, Any], name: str) -> str:
    value = record.get(name)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


@dataclass
class ImportRequest:
    """Validated commit payload.

    Entries of ``rows`` that are not objects become ``payload_errors`` rather
    than failing the whole request.
    """

    geofeed_id: str
    rows: list[ImportRowInput] = field(default_factory=list)
    finalize: bool = False
    payload_errors: list[RowError] = field(default_factory=list)

    @property
    def submitted_count(self) -> int:
        return len(self.rows) + len(self.payload_errors)

    @classmethod
    def from_payload(cls, geofeed_id: str, payload: Any) -> ImportRequest:
        """Build a request from ``{rows: [...], finalize: bool}`` JSON."""
        body = payload if isinstance(payload, dict) else {}
        raw_rows = body.get("rows")
        if not isinstance(raw_rows, list):
            raw_rows = []

        rows: list[ImportRowInput] = []
        payload_errors: list[RowError] = []
        for index, record in enumerate(raw_rows):
            if not isinstance(record, dict):
                payload_errors.append(
                    RowError(index, REASONS[ERR_INVALID_ROW_PAYLOAD], "")
                )
                continue
            rows.append(ImportRowInput(
                index=index,
                network=_str_field(record, "network"),
                country_code=_str_field(record, "countryCode"),
                subdivision=_str_field(record, "subdivision"),
                city=_str_field(record, "city"),
                postal_code=_str_field(record, "postalCode"),
                original=_str_field(record, "original"),
            ))

        return cls(
            geofeed_id=geofeed_id,
            rows=rows,
            finalize=bool(body.get("finalize")),
            payload_errors=payload_errors,
        )


@dataclass
class ImportResult:
    imported_count: int = 0
    skipped_count: int = 0
    conflict_count: int = 0
    errors: list[RowError] = field(default_factory=list)
    finalized: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        # Wire shape consumed by the HTTP layer
        return {
            "importedCount": self.imported_count,
            "errorCount": self.error_count,
            "skippedCount": self.skipped_count,
            "conflictCount": self.conflict_count,
            "errors": [e.to_dict() for e in sorted(self.errors, key=lambda e: e.index)],
        }
