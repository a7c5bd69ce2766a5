"""geofeed_import.storage

Storage query interface for geofeeds and their rows.

Every query is scoped by the caller's user_id; row queries additionally by
geofeed_id.  The authoritative duplicate guard is the unique constraint
uq_geofeed_row_key on (geofeed_id, user_id, normalized_key): inserts use
ON CONFLICT DO NOTHING so a racing duplicate is skipped atomically.

PgGeofeedStore expects an autocommit connection; multi-statement units run
inside ``store.transaction()``.

Depends on: migrations/0001_geofeed_core.sql
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, ContextManager, Iterator, Protocol, Sequence

import psycopg

from geofeed_import.errors import GeofeedNotFoundError, StorageFailureError
from geofeed_import.models import Geofeed, GeofeedRow, RequestContext
from geofeed_import.normalize import normalize_country_code, trim_field

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class GeofeedStore(Protocol):
    def transaction(self) -> ContextManager[Any]:
        ...

    def get_geofeed(self, ctx: RequestContext, geofeed_id: str) -> Geofeed:
        """Return the owned geofeed or raise GeofeedNotFoundError."""
        ...

    def list_geofeeds(self, ctx: RequestContext) -> list[Geofeed]:
        ...

    def list_rows(self, ctx: RequestContext, geofeed_id: str) -> list[GeofeedRow]:
        ...

    def insert_rows(
        self,
        ctx: RequestContext,
        geofeed_id: str,
        rows: Sequence[GeofeedRow],
    ) -> set[str]:
        """Insert rows, skipping keys already stored; return the inserted keys."""
        ...

    def set_draft_flag(self, ctx: RequestContext, geofeed_id: str, is_draft: bool) -> None:
        ...

    def create_geofeed(self, ctx: RequestContext, name: str, is_draft: bool) -> str:
        ...

    def delete_geofeed(self, ctx: RequestContext, geofeed_id: str) -> bool:
        """Delete the geofeed and its rows; False when nothing was deleted."""
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate psycopg errors into StorageFailureError, logging the detail."""
    try:
        yield
    except psycopg.Error as exc:
        log.exception("Storage failure during %s", operation)
        raise StorageFailureError(f"Storage failure during {operation}") from exc


def _as_uuid(geofeed_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(geofeed_id))
    except (ValueError, TypeError, AttributeError):
        return None


def _optional(value: str | None) -> str | None:
    v = trim_field(value)
    return v or None


_ROW_COLUMNS = (
    "id, geofeed_id, user_id, network, country_code, "
    "subdivision, city, postal_code, created_at"
)


def _row_from_record(rec: tuple) -> GeofeedRow:
    return GeofeedRow(
        id=str(rec[0]),
        geofeed_id=str(rec[1]),
        user_id=rec[2],
        network=rec[3],
        country_code=rec[4],
        subdivision=rec[5],
        city=rec[6],
        postal_code=rec[7],
        created_at=rec[8],
    )


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------

class PgGeofeedStore:
    """psycopg 3 implementation of GeofeedStore."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def transaction(self) -> ContextManager[Any]:
        return self._conn.transaction()

    def get_geofeed(self, ctx: RequestContext, geofeed_id: str) -> Geofeed:
        gid = _as_uuid(geofeed_id)
        if gid is None:
            raise GeofeedNotFoundError(f"geofeed {geofeed_id!r} not found")
        with storage_errors("get_geofeed"):
            rec = self._conn.execute(
                """
                SELECT g.id, g.user_id, g.name, g.is_draft, g.created_at,
                       (SELECT count(*) FROM geofeed_row r
                        WHERE r.geofeed_id = g.id AND r.user_id = g.user_id)
                FROM geofeed g
                WHERE g.id = %s AND g.user_id = %s
                """,
                (gid, ctx.user_id),
            ).fetchone()
        if rec is None:
            raise GeofeedNotFoundError(f"geofeed {geofeed_id!r} not found")
        return Geofeed(
            id=str(rec[0]), user_id=rec[1], name=rec[2],
            is_draft=rec[3], created_at=rec[4], row_count=int(rec[5]),
        )

    def list_geofeeds(self, ctx: RequestContext) -> list[Geofeed]:
        with storage_errors("list_geofeeds"):
            recs = self._conn.execute(
                """
                SELECT g.id, g.user_id, g.name, g.is_draft, g.created_at,
                       count(r.id)
                FROM geofeed g
                LEFT JOIN geofeed_row r
                  ON r.geofeed_id = g.id AND r.user_id = g.user_id
                WHERE g.user_id = %s
                GROUP BY g.id, g.user_id, g.name, g.is_draft, g.created_at
                ORDER BY g.created_at DESC, g.id
                """,
                (ctx.user_id,),
            ).fetchall()
        return [
            Geofeed(
                id=str(rec[0]), user_id=rec[1], name=rec[2],
                is_draft=rec[3], created_at=rec[4], row_count=int(rec[5]),
            )
            for rec in recs
        ]

    def list_rows(self, ctx: RequestContext, geofeed_id: str) -> list[GeofeedRow]:
        gid = _as_uuid(geofeed_id)
        if gid is None:
            return []
        with storage_errors("list_rows"):
            recs = self._conn.execute(
                f"""
                SELECT {_ROW_COLUMNS}
                FROM geofeed_row
                WHERE geofeed_id = %s AND user_id = %s
                ORDER BY created_at, id
                """,
                (gid, ctx.user_id),
            ).fetchall()
        return [_row_from_record(rec) for rec in recs]

    def insert_rows(
        self,
        ctx: RequestContext,
        geofeed_id: str,
        rows: Sequence[GeofeedRow],
    ) -> set[str]:
        gid = _as_uuid(geofeed_id)
        if gid is None:
            raise GeofeedNotFoundError(f"geofeed {geofeed_id!r} not found")
        inserted: set[str] = set()
        with storage_errors("insert_rows"):
            for row in rows:
                key = row.key
                result = self._conn.execute(
                    """
                    INSERT INTO geofeed_row
                      (id, geofeed_id, user_id, network, country_code,
                       subdivision, city, postal_code, normalized_key)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (geofeed_id, user_id, normalized_key) DO NOTHING
                    RETURNING normalized_key
                    """,
                    (
                        uuid.uuid4(), gid, ctx.user_id,
                        trim_field(row.network),
                        normalize_country_code(row.country_code),
                        _optional(row.subdivision),
                        _optional(row.city),
                        _optional(row.postal_code),
                        key,
                    ),
                ).fetchone()
                if result:
                    inserted.add(result[0])
        return inserted

    def set_draft_flag(self, ctx: RequestContext, geofeed_id: str, is_draft: bool) -> None:
        gid = _as_uuid(geofeed_id)
        if gid is None:
            return
        with storage_errors("set_draft_flag"):
            self._conn.execute(
                """
                UPDATE geofeed
                SET is_draft = %s, updated_at = now()
                WHERE id = %s AND user_id = %s
                """,
                (is_draft, gid, ctx.user_id),
            )

    def create_geofeed(self, ctx: RequestContext, name: str, is_draft: bool) -> str:
        gid = uuid.uuid4()
        with storage_errors("create_geofeed"):
            self._conn.execute(
                """
                INSERT INTO geofeed (id, user_id, name, is_draft)
                VALUES (%s, %s, %s, %s)
                """,
                (gid, ctx.user_id, name.strip(), is_draft),
            )
        return str(gid)

    def delete_geofeed(self, ctx: RequestContext, geofeed_id: str) -> bool:
        gid = _as_uuid(geofeed_id)
        if gid is None:
            return False
        with storage_errors("delete_geofeed"):
            cur = self._conn.execute(
                "DELETE FROM geofeed WHERE id = %s AND user_id = %s",
                (gid, ctx.user_id),
            )
        return cur.rowcount > 0
