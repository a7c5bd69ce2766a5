"""geofeed_import.parser

Splits raw geofeed CSV text into ImportCandidateRow values.

Input format (RFC 8805 column order, no header):
    network,countryCode,subdivision,city,postalCode

  - CRLF and LF line endings are both accepted.
  - Blank lines and '#' comment lines are skipped (never emitted, never errors)
    but still count toward line numbers.
  - A line with a field count other than 5 is emitted invalid with reason
    "wrong field count"; no further validation is attempted on it.
  - Otherwise fields are trimmed, the country code uppercased, and CIDR then
    country code are validated; a control character (tab, CR, LF, ...) left
    in an optional field after trimming makes the row invalid.

Parsing never touches storage.
"""

from __future__ import annotations

import csv
import re
from typing import Sequence

from geofeed_import.alpha2 import ALPHA2_CODES
from geofeed_import.models import (
    ERR_WRONG_FIELD_COUNT,
    FIELD_COUNT,
    REASONS,
    ImportCandidateRow,
)
from geofeed_import.normalize import build_key, normalize_country_code, trim_field
from geofeed_import.validators import validate_fields

_LINE_SPLIT_RE = re.compile(r"\r?\n")
_BOM = "\ufeff"


def split_fields(line: str) -> list[str]:
    """Split one line into raw fields; double-quoted fields may contain commas."""
    try:
        return next(csv.reader([line]))
    except (csv.Error, StopIteration):
        return line.split(",")


def is_skippable_line(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def build_candidate(
    line_number: int,
    fields: Sequence[str],
    original: str,
    allowed: frozenset[str] = ALPHA2_CODES,
) -> ImportCandidateRow:
    """Validate one record's fields and return an unreconciled candidate."""
    if len(fields) != FIELD_COUNT:
        return ImportCandidateRow(
            line_number=line_number,
            original=original,
            valid=False,
            error_kind=ERR_WRONG_FIELD_COUNT,
            reason=REASONS[ERR_WRONG_FIELD_COUNT],
        )

    network, country_raw, subdivision, city, postal_code = (trim_field(f) for f in fields)
    country_code = normalize_country_code(country_raw)
    error_kind, reason = validate_fields(
        network, country_code, allowed, (subdivision, city, postal_code)
    )
    valid = error_kind is None

    return ImportCandidateRow(
        line_number=line_number,
        original=original,
        network=network,
        country_code=country_code,
        subdivision=subdivision,
        city=city,
        postal_code=postal_code,
        key=build_key(network, country_code, subdivision, city, postal_code),
        valid=valid,
        error_kind=error_kind,
        reason=reason,
        selected=valid,
    )


def parse_import_text(
    text: str,
    allowed: frozenset[str] = ALPHA2_CODES,
) -> list[ImportCandidateRow]:
    """Parse raw CSV text into candidates, one per non-blank, non-comment line."""
    if text.startswith(_BOM):
        text = text[len(_BOM):]

    candidates: list[ImportCandidateRow] = []
    for idx, raw_line in enumerate(_LINE_SPLIT_RE.split(text)):
        if is_skippable_line(raw_line):
            continue
        candidates.append(
            build_candidate(idx + 1, split_fields(raw_line.strip()), raw_line, allowed)
        )
    return candidates
