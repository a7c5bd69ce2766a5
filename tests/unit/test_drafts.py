"""Unit tests for geofeed_import.drafts."""

from unittest.mock import MagicMock

import pytest

from geofeed_import.activity import ACTION_CREATE, ACTION_DELETE, MemoryActivityLog
from geofeed_import.config import ImportSettings
from geofeed_import.drafts import DraftCoordinator, SessionState
from geofeed_import.errors import (
    GeofeedNotFoundError,
    InvalidRequestError,
    NoRowsProvidedError,
    SourceFetchError,
)

CSV = "192.0.2.0/24,us,,,\n198.51.100.0/24,ZZ,,,"


@pytest.fixture
def sink():
    return MemoryActivityLog()


@pytest.fixture
def coordinator(store, sink):
    return DraftCoordinator(store, activity=sink)


# ---------------------------------------------------------------------------
# New-geofeed path
# ---------------------------------------------------------------------------

class TestStartNew:
    def test_creates_draft_before_preview(self, coordinator, store, ctx, sink):
        session = coordinator.start_new(ctx, "  Edge PoPs ")
        assert session.state == SessionState.DRAFT_CREATED
        assert session.created_draft is True
        assert session.finalize_on_commit is True
        g = store.geofeeds[session.geofeed_id]
        assert g.is_draft is True
        assert g.name == "Edge PoPs"
        assert sink.entries[0].action == ACTION_CREATE

    def test_blank_name_rejected(self, coordinator, store, ctx):
        with pytest.raises(InvalidRequestError):
            coordinator.start_new(ctx, "   ")
        assert store.geofeeds == {}

    def test_commit_finalizes(self, coordinator, store, ctx):
        session = coordinator.start_new(ctx, "feed")
        preview = coordinator.preview_text(session, CSV)
        assert preview.summary.valid == 1
        result = coordinator.commit(session)
        assert result.imported_count == 1
        assert result.finalized is True
        assert session.state == SessionState.COMMITTED
        assert session.is_draft is False
        assert store.geofeeds[session.geofeed_id].is_draft is False

    def test_cancel_deletes_draft(self, coordinator, store, ctx, sink):
        session = coordinator.start_new(ctx, "feed")
        coordinator.preview_text(session, CSV)
        assert coordinator.cancel(session) is True
        assert session.state == SessionState.ABANDONED
        assert session.preview is None
        assert not [g for g in store.geofeeds.values() if g.name == "feed"]
        assert sink.entries[-1].action == ACTION_DELETE

    def test_cancel_is_idempotent(self, coordinator, store, ctx):
        session = coordinator.start_new(ctx, "feed")
        assert coordinator.cancel(session) is True
        assert coordinator.cancel(session) is False
        assert store.calls.count("delete_geofeed") == 1

    def test_cancel_after_external_delete(self, coordinator, store, ctx):
        session = coordinator.start_new(ctx, "feed")
        store.delete_geofeed(ctx, session.geofeed_id)
        assert coordinator.cancel(session) is False
        assert session.state == SessionState.ABANDONED

    def test_cancel_swallows_storage_failure(self, coordinator, store, ctx):
        session = coordinator.start_new(ctx, "feed")
        store.fail_on.add("delete_geofeed")
        assert coordinator.cancel(session) is False
        assert session.state == SessionState.ABANDONED

    def test_cancel_after_commit_keeps_geofeed(self, coordinator, store, ctx):
        session = coordinator.start_new(ctx, "feed")
        coordinator.preview_text(session, CSV)
        coordinator.commit(session)
        assert coordinator.cancel(session) is False
        assert session.geofeed_id in store.geofeeds


# ---------------------------------------------------------------------------
# Existing-geofeed path
# ---------------------------------------------------------------------------

class TestStartExisting:
    def test_commit_does_not_finalize(self, coordinator, store, ctx):
        gid = store.seed(ctx, "feed")
        session = coordinator.start_existing(ctx, gid)
        assert session.state == SessionState.TARGET_SELECTED
        coordinator.preview_text(session, CSV)
        result = coordinator.commit(session)
        assert result.finalized is False
        assert "set_draft_flag" not in store.calls

    def test_cancel_never_deletes_existing(self, coordinator, store, ctx):
        gid = store.seed(ctx, "feed")
        session = coordinator.start_existing(ctx, gid)
        assert coordinator.cancel(session) is False
        assert gid in store.geofeeds

    def test_preview_marks_storage_duplicates(self, coordinator, store, ctx):
        gid = store.seed(ctx, "feed", [("192.0.2.0/24", "US")])
        session = coordinator.start_existing(ctx, gid)
        preview = coordinator.preview_text(session, CSV)
        assert preview.summary.duplicate == 1
        assert preview.selected_rows() == []
        with pytest.raises(NoRowsProvidedError):
            coordinator.commit(session)

    def test_other_user(self, coordinator, store, ctx, other_ctx):
        gid = store.seed(other_ctx, "theirs")
        with pytest.raises(GeofeedNotFoundError):
            coordinator.start_existing(ctx, gid)


# ---------------------------------------------------------------------------
# Continue draft
# ---------------------------------------------------------------------------

class TestContinueDraft:
    def test_resumes_without_recreating(self, coordinator, store, ctx):
        gid = store.seed(ctx, "left over", is_draft=True)
        session = coordinator.continue_draft(ctx, gid)
        assert session.state == SessionState.PREVIEWING
        assert session.created_draft is False
        assert session.finalize_on_commit is True
        assert "create_geofeed" not in store.calls
        coordinator.preview_text(session, CSV)
        coordinator.commit(session)
        assert store.geofeeds[gid].is_draft is False

    def test_finalized_geofeed_rejected(self, coordinator, store, ctx):
        gid = store.seed(ctx, "done")
        with pytest.raises(InvalidRequestError):
            coordinator.continue_draft(ctx, gid)

    def test_cancel_keeps_resumed_draft(self, coordinator, store, ctx):
        gid = store.seed(ctx, "left over", is_draft=True)
        session = coordinator.continue_draft(ctx, gid)
        assert coordinator.cancel(session) is False
        assert gid in store.geofeeds


class TestAbandonDraft:
    def test_deletes_draft(self, coordinator, store, ctx):
        gid = store.seed(ctx, "left over", is_draft=True)
        assert coordinator.abandon_draft(ctx, gid) is True
        assert gid not in store.geofeeds

    def test_missing_is_noop(self, coordinator, ctx):
        assert coordinator.abandon_draft(ctx, "missing") is False

    def test_refuses_finalized(self, coordinator, store, ctx):
        gid = store.seed(ctx, "done")
        with pytest.raises(InvalidRequestError):
            coordinator.abandon_draft(ctx, gid)
        assert gid in store.geofeeds


# ---------------------------------------------------------------------------
# Session guards and sources
# ---------------------------------------------------------------------------

class TestSessionGuards:
    def test_commit_without_preview(self, coordinator, ctx):
        session = coordinator.start_new(ctx, "feed")
        with pytest.raises(NoRowsProvidedError):
            coordinator.commit(session)

    def test_commit_with_everything_deselected(self, coordinator, ctx):
        session = coordinator.start_new(ctx, "feed")
        preview = coordinator.preview_text(session, CSV)
        preview.select_all_valid(False)
        with pytest.raises(NoRowsProvidedError):
            coordinator.commit(session)

    def test_preview_after_commit_rejected(self, coordinator, ctx):
        session = coordinator.start_new(ctx, "feed")
        coordinator.preview_text(session, CSV)
        coordinator.commit(session)
        with pytest.raises(InvalidRequestError):
            coordinator.preview_text(session, CSV)

    def test_preview_file(self, coordinator, ctx, tmp_path):
        path = tmp_path / "feed.csv"
        path.write_text(CSV, encoding="utf-8")
        session = coordinator.start_new(ctx, "feed")
        assert coordinator.preview_file(session, path).summary.total == 2

    def test_preview_url(self, store, ctx):
        http = MagicMock()
        http.get.return_value = MagicMock(ok=True, status_code=200, text=CSV, encoding="utf-8")
        coordinator = DraftCoordinator(
            store, settings=ImportSettings(fetch_timeout_seconds=7), http=http,
        )
        session = coordinator.start_new(ctx, "feed")
        preview = coordinator.preview_url(session, "https://example.net/geofeed.csv")
        assert preview.summary.valid == 1
        http.get.assert_called_once_with("https://example.net/geofeed.csv", timeout=7)

    def test_preview_url_failure_leaves_session_open(self, store, ctx):
        http = MagicMock()
        http.get.return_value = MagicMock(ok=False, status_code=404)
        coordinator = DraftCoordinator(store, http=http)
        session = coordinator.start_new(ctx, "feed")
        with pytest.raises(SourceFetchError):
            coordinator.preview_url(session, "https://example.net/missing.csv")
        assert session.is_open
        assert coordinator.cancel(session) is True

    def test_extension_codes_from_settings(self, store, ctx):
        coordinator = DraftCoordinator(store, settings=ImportSettings(extension_country_codes=["ZZ"]))
        session = coordinator.start_new(ctx, "feed")
        assert coordinator.preview_text(session, CSV).summary.valid == 2


class TestListGeofeeds:
    def test_drafts_separated(self, coordinator, store, ctx, other_ctx):
        store.seed(ctx, "live")
        store.seed(ctx, "wip", is_draft=True)
        store.seed(other_ctx, "theirs")
        finalized, drafts = coordinator.list_geofeeds(ctx)
        assert [g.name for g in finalized] == ["live"]
        assert [g.name for g in drafts] == ["wip"]
