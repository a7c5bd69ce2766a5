"""Unit tests for geofeed_import.activity sinks."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg
import pytest

from geofeed_import.activity import (
    ACTION_DELETE,
    ActivityEntry,
    MemoryActivityLog,
    NullActivityLog,
    PgActivityLog,
    list_activity,
    record_safely,
)
from geofeed_import.errors import StorageFailureError
from geofeed_import.models import RequestContext

CTX = RequestContext(user_id="user-1")


class TestRecordSafely:
    def test_none_sink(self):
        record_safely(None, CTX, ACTION_DELETE, "msg")

    def test_null_sink(self):
        record_safely(NullActivityLog(), CTX, ACTION_DELETE, "msg")

    def test_memory_sink(self):
        sink = MemoryActivityLog()
        record_safely(sink, CTX, ACTION_DELETE, "gone", "g1", "feed")
        assert sink.entries == [ActivityEntry(ACTION_DELETE, "gone", "g1", "feed")]

    def test_raising_sink_swallowed(self):
        sink = MagicMock()
        sink.record_activity.side_effect = RuntimeError("boom")
        record_safely(sink, CTX, ACTION_DELETE, "msg")
        sink.record_activity.assert_called_once()


class TestPgActivityLog:
    def test_database_error_swallowed(self):
        conn = MagicMock()
        conn.execute.side_effect = RuntimeError("connection lost")
        PgActivityLog(conn).record_activity(CTX, ACTION_DELETE, "msg", "not-a-uuid")
        conn.execute.assert_called_once()

    def test_invalid_geofeed_id_stored_as_null(self):
        conn = MagicMock()
        PgActivityLog(conn).record_activity(CTX, ACTION_DELETE, "msg", "not-a-uuid", "")
        params = conn.execute.call_args[0][1]
        assert params[1:] == ("user-1", ACTION_DELETE, "msg", None, None)


class TestListActivity:
    def test_query_failure_wrapped(self):
        conn = MagicMock()
        conn.execute.side_effect = psycopg.OperationalError("server closed the connection")
        with pytest.raises(StorageFailureError, match="list_activity"):
            list_activity(conn, CTX)

    def test_rows_mapped(self):
        ts = datetime(2025, 1, 2, tzinfo=timezone.utc)
        conn = MagicMock()
        conn.execute.return_value.fetchall.return_value = [
            ("e1", ACTION_DELETE, "gone", None, "feed", ts),
        ]
        assert list_activity(conn, CTX, limit=5) == [
            ActivityEntry(ACTION_DELETE, "gone", None, "feed", ts, "e1"),
        ]
        assert conn.execute.call_args[0][1] == ("user-1", 5)

class TestActivityEntry:
    def test_to_dict(self):
        ts = datetime(2025, 1, 2, tzinfo=timezone.utc)
        entry = ActivityEntry("geofeed.import", "m", "g1", "feed", ts, "e1")
        assert entry.to_dict() == {
            "id": "e1",
            "action": "geofeed.import",
            "message": "m",
            "geofeedId": "g1",
            "geofeedName": "feed",
            "createdAt": "2025-01-02T00:00:00+00:00",
        }
