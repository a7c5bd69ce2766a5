"""Unit-test fixtures: an in-memory GeofeedStore.

No database or network access required.
"""

from __future__ import annotations

import copy
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Sequence

import pytest

from geofeed_import.errors import GeofeedNotFoundError, StorageFailureError
from geofeed_import.models import Geofeed, GeofeedRow, RequestContext


class FakeGeofeedStore:
    """Dict-backed store honouring the (geofeed, user, key) uniqueness rule.

    ``fail_on`` names operations that raise StorageFailureError.
    ``race_keys`` simulates rows inserted by a concurrent request after the
    caller's snapshot was taken.
    """

    def __init__(self) -> None:
        self.geofeeds: dict[str, Geofeed] = {}
        self.rows: list[GeofeedRow] = []
        self.fail_on: set[str] = set()
        self.race_keys: set[str] = set()
        self.calls: list[str] = []

    def _op(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise StorageFailureError(f"Storage failure during {name}")

    @property
    def writes(self) -> list[str]:
        return [c for c in self.calls if c in ("insert_rows", "set_draft_flag",
                                               "create_geofeed", "delete_geofeed")]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        saved = (copy.deepcopy(self.geofeeds), list(self.rows))
        try:
            yield
        except Exception:
            self.geofeeds, self.rows = saved
            raise

    def _owned(self, ctx: RequestContext, geofeed_id: str) -> Geofeed | None:
        g = self.geofeeds.get(geofeed_id)
        if g is None or g.user_id != ctx.user_id:
            return None
        return g

    def get_geofeed(self, ctx: RequestContext, geofeed_id: str) -> Geofeed:
        self._op("get_geofeed")
        g = self._owned(ctx, geofeed_id)
        if g is None:
            raise GeofeedNotFoundError(f"geofeed {geofeed_id!r} not found")
        out = copy.copy(g)
        out.row_count = len(self.list_rows(ctx, geofeed_id))
        return out

    def list_geofeeds(self, ctx: RequestContext) -> list[Geofeed]:
        self._op("list_geofeeds")
        return [copy.copy(g) for g in self.geofeeds.values() if g.user_id == ctx.user_id]

    def list_rows(self, ctx: RequestContext, geofeed_id: str) -> list[GeofeedRow]:
        return [
            r for r in self.rows
            if r.geofeed_id == geofeed_id and r.user_id == ctx.user_id
        ]

    def insert_rows(
        self,
        ctx: RequestContext,
        geofeed_id: str,
        rows: Sequence[GeofeedRow],
    ) -> set[str]:
        self._op("insert_rows")
        stored = {r.key for r in self.list_rows(ctx, geofeed_id)} | self.race_keys
        inserted: set[str] = set()
        for row in rows:
            if row.key in stored:
                continue
            stored.add(row.key)
            inserted.add(row.key)
            self.rows.append(GeofeedRow(
                network=row.network,
                country_code=row.country_code,
                subdivision=row.subdivision,
                city=row.city,
                postal_code=row.postal_code,
                id=str(uuid.uuid4()),
                geofeed_id=geofeed_id,
                user_id=ctx.user_id,
                created_at=datetime.now(timezone.utc),
            ))
        return inserted

    def set_draft_flag(self, ctx: RequestContext, geofeed_id: str, is_draft: bool) -> None:
        self._op("set_draft_flag")
        g = self._owned(ctx, geofeed_id)
        if g is not None:
            g.is_draft = is_draft

    def create_geofeed(self, ctx: RequestContext, name: str, is_draft: bool) -> str:
        self._op("create_geofeed")
        gid = str(uuid.uuid4())
        self.geofeeds[gid] = Geofeed(
            id=gid, user_id=ctx.user_id, name=name.strip(), is_draft=is_draft,
            created_at=datetime.now(timezone.utc),
        )
        return gid

    def delete_geofeed(self, ctx: RequestContext, geofeed_id: str) -> bool:
        self._op("delete_geofeed")
        if self._owned(ctx, geofeed_id) is None:
            return False
        del self.geofeeds[geofeed_id]
        self.rows = [r for r in self.rows if r.geofeed_id != geofeed_id]
        return True

    # Test helper, not part of the interface
    def seed(
        self,
        ctx: RequestContext,
        name: str,
        rows: Sequence[tuple[str, ...]] = (),
        is_draft: bool = False,
    ) -> str:
        gid = self.create_geofeed(ctx, name, is_draft)
        self.insert_rows(ctx, gid, [GeofeedRow(*fields) for fields in rows])
        self.calls.clear()
        return gid


@pytest.fixture
def store() -> FakeGeofeedStore:
    return FakeGeofeedStore()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(user_id="user-1")


@pytest.fixture
def other_ctx() -> RequestContext:
    return RequestContext(user_id="user-2")
