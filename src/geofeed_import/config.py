"""geofeed_import.config

YAML settings for the import pipeline.

Usage:
    from pathlib import Path
    from geofeed_import.config import load_settings

    settings = load_settings(Path("config/geofeed_import.yml"))
    settings.country_codes   # ISO 3166-1 table plus configured extensions

Recognised keys (all optional):
    extension_country_codes: [XK, ...]
    fetch_timeout_seconds:   30
    max_reject_rate:         0.05
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from geofeed_import.alpha2 import country_code_table
from geofeed_import.errors import SettingsValidationError

KNOWN_KEYS = frozenset({
    "extension_country_codes",
    "fetch_timeout_seconds",
    "max_reject_rate",
})

_CODE_RE = re.compile(r"^[A-Za-z]{2}$")


@dataclass
class ImportSettings:
    extension_country_codes: list[str] = field(default_factory=list)
    fetch_timeout_seconds: int = 30
    max_reject_rate: float = 0.05

    @property
    def country_codes(self) -> frozenset[str]:
        return country_code_table(self.extension_country_codes)


def validate_settings(data: dict[str, Any]) -> None:
    """Raise SettingsValidationError if ``data`` does not match the schema."""
    unknown = set(data) - KNOWN_KEYS
    if unknown:
        raise SettingsValidationError(f"unknown settings keys: {sorted(unknown)}")

    codes = data.get("extension_country_codes", [])
    if not isinstance(codes, list):
        raise SettingsValidationError("extension_country_codes must be a list")
    bad = [c for c in codes if not isinstance(c, str) or not _CODE_RE.match(c.strip())]
    if bad:
        raise SettingsValidationError(
            f"extension_country_codes entries must be two letters: {bad}"
        )

    timeout = data.get("fetch_timeout_seconds", 30)
    if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0:
        raise SettingsValidationError("fetch_timeout_seconds must be a positive integer")

    rate = data.get("max_reject_rate", 0.05)
    if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0.0 <= rate <= 1.0:
        raise SettingsValidationError("max_reject_rate must be between 0 and 1")


def settings_from_dict(data: dict[str, Any] | None) -> ImportSettings:
    data = data or {}
    if not isinstance(data, dict):
        raise SettingsValidationError("settings file must contain a mapping")
    validate_settings(data)
    return ImportSettings(
        extension_country_codes=[c.strip().upper() for c in data.get("extension_country_codes", [])],
        fetch_timeout_seconds=int(data.get("fetch_timeout_seconds", 30)),
        max_reject_rate=float(data.get("max_reject_rate", 0.05)),
    )


def load_settings(path: Path | None) -> ImportSettings:
    """Load settings from ``path``; None returns defaults.

    Raises:
        SettingsValidationError: If the file content is invalid.
        FileNotFoundError: If ``path`` is given but does not exist.
    """
    if path is None:
        return ImportSettings()
    raw = path.read_text(encoding="utf-8")
    return settings_from_dict(yaml.safe_load(raw))
