"""geofeed_import.validators

Pure, total validators for geofeed fields.  Nothing here raises.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Sequence

from geofeed_import.alpha2 import ALPHA2_CODES
from geofeed_import.models import (
    ERR_CONTROL_CHARACTER,
    ERR_INVALID_CIDR,
    ERR_INVALID_COUNTRY_CODE,
    REASONS,
)
from geofeed_import.normalize import normalize_country_code

# Address part is left to ipaddress; the prefix must be an explicit length
# without leading zeros, never a netmask or hostmask. Scoped IPv6 addresses
# ("fe80::1%eth0") are refused.
_PREFIX_RE = re.compile(r"^[^/\s%]+/(0|[1-9]\d{0,2})$")
_ALPHA2_RE = re.compile(r"^[A-Z]{2}$")
# C0 controls and DEL; a CR or LF would split an exported record in two.
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def is_valid_cidr(value: str | None) -> bool:
    """True for IPv4 /0-/32 or IPv6 /0-/128 networks with an explicit prefix.

    Host bits may be set ("10.0.0.1/24" is accepted).
    """
    if not isinstance(value, str):
        return False
    v = value.strip()
    m = _PREFIX_RE.match(v)
    if not m:
        return False
    try:
        ipaddress.ip_network(v, strict=False)
    except ValueError:
        return False
    return True


def is_valid_country_code(
    value: str | None,
    allowed: frozenset[str] = ALPHA2_CODES,
) -> bool:
    """True when the normalized code is in the reference table."""
    if not isinstance(value, str):
        return False
    code = normalize_country_code(value)
    return bool(_ALPHA2_RE.match(code)) and code in allowed


def has_control_characters(value: str | None) -> bool:
    return isinstance(value, str) and bool(_CONTROL_RE.search(value))


def validate_fields(
    network: str,
    country_code: str,
    allowed: frozenset[str] = ALPHA2_CODES,
    optional: Sequence[str] = (),
) -> tuple[str | None, str | None]:
    """Return (error_kind, reason) for the first failing check, else (None, None).

    CIDR is checked before country code; the optional fields (subdivision,
    city, postal code) are then checked for control characters.
    """
    if not network or not is_valid_cidr(network):
        return ERR_INVALID_CIDR, REASONS[ERR_INVALID_CIDR]
    if not country_code or not is_valid_country_code(country_code, allowed):
        return ERR_INVALID_COUNTRY_CODE, REASONS[ERR_INVALID_COUNTRY_CODE]
    if any(has_control_characters(v) for v in optional):
        return ERR_CONTROL_CHARACTER, REASONS[ERR_CONTROL_CHARACTER]
    return None, None
