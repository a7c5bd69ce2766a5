"""geofeed_import.sources

Read geofeed CSV text from an uploaded file or a URL.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests

from geofeed_import.errors import SourceFetchError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def read_csv_file(path: Path) -> str:
    """Return the file's text; a UTF-8 BOM is tolerated."""
    try:
        return path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceFetchError(f"Failed to read CSV file {path}: {exc}") from exc


def fetch_csv_text(
    url: str,
    session: requests.Session | None = None,
    timeout: int = DEFAULT_TIMEOUT,
) -> str:
    """GET ``url`` and return the body text.

    Raises SourceFetchError on a blank URL, a transport error, or a non-2xx
    response.
    """
    url = (url or "").strip()
    if not url:
        raise SourceFetchError("Enter a valid URL to import")

    if session is not None:
        return _get_text(session, url, timeout)
    with requests.Session() as http:
        return _get_text(http, url, timeout)


def _get_text(http: requests.Session, url: str, timeout: int) -> str:
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as exc:
        log.error("CSV fetch failed for %s: %s", url, exc)
        raise SourceFetchError("Failed to fetch CSV from URL") from exc

    if not resp.ok:
        log.error("CSV fetch for %s returned status %s", url, resp.status_code)
        raise SourceFetchError(
            f"Failed to fetch CSV from URL (status {resp.status_code})"
        )
    if resp.encoding is None:
        resp.encoding = "utf-8"
    return resp.text
