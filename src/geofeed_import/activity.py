"""geofeed_import.activity

Fire-and-forget audit sink.

Callers record activity only after their primary transaction has finished, so
an audit failure can never roll back or fail the operation it describes.
Every exception raised while writing is logged and swallowed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import psycopg

from geofeed_import.models import RequestContext
from geofeed_import.storage import storage_errors

log = logging.getLogger(__name__)

ACTION_CREATE = "geofeed.create"
ACTION_IMPORT = "geofeed.import"
ACTION_DELETE = "geofeed.delete"
ACTION_EXPORT = "geofeed.export"


class ActivitySink(Protocol):
    def record_activity(
        self,
        ctx: RequestContext,
        action: str,
        message: str,
        geofeed_id: str | None = None,
        geofeed_name: str | None = None,
    ) -> None:
        ...


@dataclass
class ActivityEntry:
    action: str
    message: str
    geofeed_id: str | None = None
    geofeed_name: str | None = None
    created_at: datetime | None = None
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "message": self.message,
            "geofeedId": self.geofeed_id,
            "geofeedName": self.geofeed_name,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def _geofeed_uuid(geofeed_id: str | None) -> uuid.UUID | None:
    if not geofeed_id:
        return None
    try:
        return uuid.UUID(str(geofeed_id))
    except ValueError:
        return None


class PgActivityLog:
    """Writes activity_log rows on an autocommit connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def record_activity(
        self,
        ctx: RequestContext,
        action: str,
        message: str,
        geofeed_id: str | None = None,
        geofeed_name: str | None = None,
    ) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO activity_log
                  (id, user_id, action, message, geofeed_id, geofeed_name)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    uuid.uuid4(), ctx.user_id, action, message,
                    _geofeed_uuid(geofeed_id), geofeed_name or None,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("Activity log write failed (%s %s): %s", action, geofeed_id, exc)


@dataclass
class NullActivityLog:
    """No-op sink for callers that do not audit."""

    def record_activity(
        self,
        ctx: RequestContext,
        action: str,
        message: str,
        geofeed_id: str | None = None,
        geofeed_name: str | None = None,
    ) -> None:
        return None


@dataclass
class MemoryActivityLog:
    """Keeps entries in memory; used by tests and dry runs."""

    entries: list[ActivityEntry] = field(default_factory=list)

    def record_activity(
        self,
        ctx: RequestContext,
        action: str,
        message: str,
        geofeed_id: str | None = None,
        geofeed_name: str | None = None,
    ) -> None:
        self.entries.append(ActivityEntry(action, message, geofeed_id, geofeed_name))


def record_safely(
    sink: ActivitySink | None,
    ctx: RequestContext,
    action: str,
    message: str,
    geofeed_id: str | None = None,
    geofeed_name: str | None = None,
) -> None:
    """Dispatch to ``sink``; never raises, whatever the sink does."""
    if sink is None:
        return
    try:
        sink.record_activity(ctx, action, message, geofeed_id, geofeed_name)
    except Exception as exc:  # noqa: BLE001
        log.warning("Activity sink raised for %s: %s", action, exc)


def list_activity(
    conn: psycopg.Connection,
    ctx: RequestContext,
    limit: int = 50,
) -> list[ActivityEntry]:
    """Most recent activity for the caller, newest first.

    Raises StorageFailureError when the query fails; only writes are
    fire-and-forget.
    """
    with storage_errors("list_activity"):
        recs = conn.execute(
            """
            SELECT id, action, message, geofeed_id, geofeed_name, created_at
            FROM activity_log
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (ctx.user_id, limit),
        ).fetchall()
    return [
        ActivityEntry(
            id=str(rec[0]),
            action=rec[1],
            message=rec[2],
            geofeed_id=str(rec[3]) if rec[3] else None,
            geofeed_name=rec[4],
            created_at=rec[5],
        )
        for rec in recs
    ]
