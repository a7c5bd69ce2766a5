"""geofeed_import.alpha2

Reference table of accepted country codes: ISO 3166-1 alpha-2 officially
assigned codes plus extension codes in common geolocation use.  Deployments
can add organization-specific extension codes through the settings file.
"""

from __future__ import annotations

from typing import Iterable

from geofeed_import.normalize import normalize_country_code

ISO_3166_ALPHA2: frozenset[str] = frozenset("""
    AD AE AF AG AI AL AM AO AQ AR AS AT AU AW AX AZ
    BA BB BD BE BF BG BH BI BJ BL BM BN BO BQ BR BS BT BV BW BY BZ
    CA CC CD CF CG CH CI CK CL CM CN CO CR CU CV CW CX CY CZ
    DE DJ DK DM DO DZ
    EC EE EG EH ER ES ET
    FI FJ FK FM FO FR
    GA GB GD GE GF GG GH GI GL GM GN GP GQ GR GS GT GU GW GY
    HK HM HN HR HT HU
    ID IE IL IM IN IO IQ IR IS IT
    JE JM JO JP
    KE KG KH KI KM KN KP KR KW KY KZ
    LA LB LC LI LK LR LS LT LU LV LY
    MA MC MD ME MF MG MH MK ML MM MN MO MP MQ MR MS MT MU MV MW MX MY MZ
    NA NC NE NF NG NI NL NO NP NR NU NZ
    OM
    PA PE PF PG PH PK PL PM PN PR PS PT PW PY
    QA
    RE RO RS RU RW
    SA SB SC SD SE SG SH SI SJ SK SL SM SN SO SR SS ST SV SX SY SZ
    TC TD TF TG TH TJ TK TL TM TN TO TR TT TV TW TZ
    UA UG UM US UY UZ
    VA VC VE VG VI VN VU
    WF WS
    YE YT
    ZA ZM ZW
""".split())

# User-assigned codes with stable meaning in geolocation data (Kosovo).
EXTENSION_CODES: frozenset[str] = frozenset({"XK"})

ALPHA2_CODES: frozenset[str] = ISO_3166_ALPHA2 | EXTENSION_CODES


def country_code_table(extra: Iterable[str] = ()) -> frozenset[str]:
    """Return the default table extended with ``extra`` codes (normalized)."""
    extra_codes = {normalize_country_code(c) for c in extra}
    return ALPHA2_CODES | frozenset(c for c in extra_codes if c)
