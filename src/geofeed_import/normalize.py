"""Normalization functions for geofeed rows.

All functions accept str | None.  Absent optional fields and empty strings are
equivalent: both normalize to "".
"""

from __future__ import annotations

from typing import Any

KEY_DELIMITER = "|"
_ESCAPE = "\\"


# ---------------------------------------------------------------------------
# Rule 1: trim_field
# ---------------------------------------------------------------------------

def trim_field(value: str | None) -> str:
    """Strip leading/trailing whitespace; treat None as empty string."""
    if value is None:
        return ""
    return value.strip()


# ---------------------------------------------------------------------------
# Rule 2: normalize_country_code
# ---------------------------------------------------------------------------

def normalize_country_code(value: str | None) -> str:
    """Trim and uppercase.

    Codes outside the reference table pass through uppercased; rejecting them
    is the validator's job.
    """
    return trim_field(value).upper()


# ---------------------------------------------------------------------------
# Rule 3: reconciliation key
# ---------------------------------------------------------------------------

def _escape_key_part(value: str) -> str:
    return value.replace(_ESCAPE, _ESCAPE * 2).replace(KEY_DELIMITER, _ESCAPE + KEY_DELIMITER)


def build_key(
    network: str | None,
    country_code: str | None,
    subdivision: str | None = None,
    city: str | None = None,
    postal_code: str | None = None,
) -> str:
    """Return the canonical identity key for a geofeed row.

    Every field is trimmed, the country code uppercased, and the five parts
    joined with '|'.  A backslash or '|' inside a field is backslash-escaped
    so distinct rows never share a key.
    """
    parts = [
        trim_field(network),
        normalize_country_code(country_code),
        trim_field(subdivision),
        trim_field(city),
        trim_field(postal_code),
    ]
    return KEY_DELIMITER.join(_escape_key_part(p) for p in parts)


def normalize_key(row: Any) -> str:
    """Key for any object exposing the five geofeed attributes."""
    return build_key(
        getattr(row, "network", None),
        getattr(row, "country_code", None),
        getattr(row, "subdivision", None),
        getattr(row, "city", None),
        getattr(row, "postal_code", None),
    )
