"""geofeed_import.export

Render stored rows in the geofeed CSV wire format:

    network,countryCode,subdivision,city,postalCode

No header, five fields per line, empty optional fields as empty strings.
Fields are quoted only when they contain a comma or quote, so the output
re-imports through parse_import_text unchanged.
"""

from __future__ import annotations

import csv
import io
from typing import Iterable

from geofeed_import.activity import ACTION_EXPORT, ActivitySink, record_safely
from geofeed_import.commit import require_user
from geofeed_import.models import GeofeedRow, RequestContext
from geofeed_import.storage import GeofeedStore


def render_geofeed_csv(rows: Iterable[GeofeedRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    for row in rows:
        writer.writerow(row.fields())
    return buf.getvalue().rstrip("\n")


def export_geofeed(
    store: GeofeedStore,
    ctx: RequestContext,
    geofeed_id: str,
    activity: ActivitySink | None = None,
) -> str:
    """Return the CSV text for an owned geofeed, oldest rows first."""
    require_user(ctx)
    geofeed = store.get_geofeed(ctx, geofeed_id)
    rows = store.list_rows(ctx, geofeed.id)
    content = render_geofeed_csv(rows)
    record_safely(
        activity, ctx, ACTION_EXPORT,
        f'Exported geofeed "{geofeed.name}" ({len(rows)} ranges)',
        geofeed_id=geofeed.id, geofeed_name=geofeed.name,
    )
    return content
