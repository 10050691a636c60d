"""
Tests for the RecommendationTracker.

Firestore reads and writes are patched at the tracker's import site so the
tests exercise loading, debounced saving and bookmark collections without a
database.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from sinak.config import settings
from sinak.schemas.recommendations import Recommendation
from sinak.services.firestore_errors import error_monitor
from sinak.services.firestore_service import WriteOutcome
from sinak.services.progress_service import RecommendationNotFoundError, start_recommendation
from sinak.services.tracking_service import (
    BookmarkCollectionError,
    BookmarkCollectionNotFoundError,
    RecommendationTracker,
)

UID = "test-user-id"


def _stored(rec_id, **fields):
    return Recommendation(
        id=rec_id, user_id=UID, title=f"Rekomendasi {rec_id}", description="Deskripsi", **fields
    ).model_dump(mode="json")


@pytest.fixture
def firestore_io():
    """Patched load/update functions, returning (load, update)."""
    load = AsyncMock(return_value={
        "recommendations": [_stored("rec-1"), _stored("rec-2"), {"title": "rusak"}],
        "bookmark_collections": [{"id": "work", "name": "Kerja"}],
    })
    update = AsyncMock(return_value=WriteOutcome("written", "Data tersimpan"))
    with patch("sinak.services.tracking_service.load_recommendation_data", load), \
         patch("sinak.services.tracking_service.update_recommendation_data", update):
        yield load, update


@pytest.fixture
def tracker(firestore_client):
    return RecommendationTracker(client_factory=lambda: firestore_client, debounce_seconds=10)


class TestLoading:

    @pytest.mark.asyncio
    async def test_loads_once_and_skips_invalid_records(self, tracker, firestore_io):
        load, _ = firestore_io

        recommendations = await tracker.list_recommendations(UID)
        await tracker.list_recommendations(UID)

        assert [r.id for r in recommendations] == ["rec-1", "rec-2"]
        load.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stored_collections_merge_with_defaults(self, tracker, firestore_io):
        collections = await tracker.list_collections(UID)
        assert [c.id for c in collections] == ["default", "priority", "later", "work"]

    @pytest.mark.asyncio
    async def test_missing_document_is_retried_later(self, tracker, firestore_io):
        load, _ = firestore_io
        load.return_value = None

        assert await tracker.list_recommendations(UID) == []
        await tracker.list_recommendations(UID)

        assert load.await_count == 2

    @pytest.mark.asyncio
    async def test_client_failure_does_not_raise(self, firestore_io):
        failing = RecommendationTracker(
            client_factory=MagicMock(side_effect=RuntimeError("no credentials")),
            debounce_seconds=10,
        )

        assert await failing.list_recommendations(UID) == []
        assert error_monitor.error_count == 1

    @pytest.mark.asyncio
    async def test_disabled_firestore_starts_empty(self, tracker, firestore_io):
        load, _ = firestore_io
        with patch.object(settings, "FIRESTORE_DISABLED", True):
            assert await tracker.list_recommendations(UID) == []
        load.assert_not_awaited()


class TestSaving:

    @pytest.mark.asyncio
    async def test_replace_saves_immediately(self, tracker, firestore_io, firestore_client):
        _, update = firestore_io
        fresh = [Recommendation(id="new-1", title="Baru", description="Deskripsi")]

        outcome = await tracker.replace_recommendations(UID, fresh)

        assert outcome.status == "written"
        client, uid, saved = update.await_args.args
        assert client is firestore_client
        assert uid == UID
        assert [r.id for r in saved] == ["new-1"]
        assert [c["id"] for c in update.await_args.kwargs["extra"]["bookmark_collections"]] == [
            "default", "priority", "later", "work"
        ]
        state = await tracker.get_state(UID)
        assert state.dirty is False

    @pytest.mark.asyncio
    async def test_mutation_schedules_debounced_save(self, tracker, firestore_io):
        _, update = firestore_io

        recommendation = await tracker.mutate(UID, "rec-1", start_recommendation)

        assert recommendation.status == "in_progress"
        state = await tracker.get_state(UID)
        assert state.dirty is True
        assert state.saver.pending is True
        update.assert_not_awaited()

        outcome = await tracker.force_save(UID)

        assert outcome.status == "written"
        update.assert_awaited_once()
        assert state.dirty is False
        assert state.saver.pending is False

    @pytest.mark.asyncio
    async def test_burst_of_mutations_is_one_write(self, firestore_io, firestore_client):
        _, update = firestore_io
        tracker = RecommendationTracker(client_factory=lambda: firestore_client, debounce_seconds=0.02)

        for _ in range(5):
            await tracker.get_recommendation(UID, "rec-1")
        await asyncio.sleep(0.1)

        update.assert_awaited_once()
        saved = update.await_args.args[2]
        assert saved[0].view_count == 5

    @pytest.mark.asyncio
    async def test_dirty_state_is_not_reloaded(self, tracker, firestore_io):
        load, update = firestore_io
        update.return_value = WriteOutcome("failed", "Akses ditolak", error_kind="permission_denied")

        await tracker.mutate(UID, "rec-1", start_recommendation)
        state = await tracker.get_state(UID)
        state.loaded = False

        await tracker.force_save(UID)
        recommendations = await tracker.list_recommendations(UID)

        assert state.dirty is True
        assert state.last_save.status == "failed"
        assert recommendations[0].status == "in_progress"
        load.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_without_state_is_skipped(self, tracker, firestore_io):
        _, update = firestore_io
        outcome = await tracker.save("unknown-user")
        assert outcome.status == "skipped"
        update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flush_all(self, tracker, firestore_io):
        _, update = firestore_io
        await tracker.mutate(UID, "rec-1", start_recommendation)
        await tracker.mutate("other-user", "rec-2", start_recommendation)

        await tracker.flush_all()

        assert update.await_count == 2

    @pytest.mark.asyncio
    async def test_forget_cancels_pending_save(self, tracker, firestore_io):
        load, update = firestore_io
        await tracker.mutate(UID, "rec-1", start_recommendation)

        tracker.forget(UID)
        await tracker.flush_all()
        await tracker.list_recommendations(UID)

        update.assert_not_awaited()
        assert load.await_count == 2


class TestRecommendationAccess:

    @pytest.mark.asyncio
    async def test_get_counts_view(self, tracker, firestore_io):
        recommendation = await tracker.get_recommendation(UID, "rec-2")
        assert recommendation.view_count == 1

        recommendation = await tracker.get_recommendation(UID, "rec-2", count_view=False)
        assert recommendation.view_count == 1

    @pytest.mark.asyncio
    async def test_unknown_recommendation(self, tracker, firestore_io):
        with pytest.raises(RecommendationNotFoundError):
            await tracker.get_recommendation(UID, "missing")

    @pytest.mark.asyncio
    async def test_failed_mutation_schedules_nothing(self, tracker, firestore_io):
        def _explode(recommendation):
            raise ValueError("not allowed")

        with pytest.raises(ValueError):
            await tracker.mutate(UID, "rec-1", _explode)

        state = await tracker.get_state(UID)
        assert state.dirty is False
        assert state.saver.pending is False


class TestBookmarkCollections:

    @pytest.mark.asyncio
    async def test_create_collection(self, tracker, firestore_io):
        collection = await tracker.create_collection(UID, "  Target Bulan Ini ", "Fokus Januari")

        assert collection.id.startswith("collection_")
        assert collection.name == "Target Bulan Ini"
        assert (await tracker.get_collection(UID, collection.id)) == collection
        assert (await tracker.get_state(UID)).dirty is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["   ", "kerja", "FAVORIT SAYA"])
    async def test_create_rejects_empty_and_duplicate_names(self, tracker, firestore_io, name):
        with pytest.raises(BookmarkCollectionError):
            await tracker.create_collection(UID, name)

    @pytest.mark.asyncio
    async def test_delete_moves_bookmarks_to_default(self, tracker, firestore_io):
        load, _ = firestore_io
        load.return_value = {
            "recommendations": [
                _stored("rec-1", is_bookmarked=True, bookmark_collection="work"),
                _stored("rec-2", is_bookmarked=True, bookmark_collection="later"),
                _stored("rec-3"),
            ],
            "bookmark_collections": [{"id": "work", "name": "Kerja"}],
        }

        moved = await tracker.delete_collection(UID, "work")

        assert moved == 1
        recommendations = await tracker.list_recommendations(UID)
        assert [r.bookmark_collection for r in recommendations] == ["default", "later", None]
        with pytest.raises(BookmarkCollectionNotFoundError):
            await tracker.get_collection(UID, "work")

    @pytest.mark.asyncio
    async def test_default_collection_cannot_be_deleted(self, tracker, firestore_io):
        with pytest.raises(BookmarkCollectionError):
            await tracker.delete_collection(UID, "default")

    @pytest.mark.asyncio
    async def test_delete_unknown_collection(self, tracker, firestore_io):
        with pytest.raises(BookmarkCollectionNotFoundError):
            await tracker.delete_collection(UID, "nope")


class TestDegradedSaves:
    """Summary-only writes keep the list pending until a full write lands"""

    DEGRADED = WriteOutcome("degraded", "Ringkasan tersimpan, daftar rekomendasi akan disimpan ulang")

    @pytest.mark.asyncio
    async def test_degraded_save_stays_dirty_and_reschedules(self, tracker, firestore_io):
        _, update = firestore_io
        update.side_effect = [self.DEGRADED, WriteOutcome("written", "Data tersimpan")]
        fresh = [Recommendation(id="new-1", title="Baru", description="Deskripsi")]

        outcome = await tracker.replace_recommendations(UID, fresh)

        assert outcome.status == "degraded"
        state = await tracker.get_state(UID)
        assert state.dirty is True
        assert state.saver.pending is True

        outcome = await tracker.force_save(UID)

        assert outcome.status == "written"
        assert update.await_count == 2
        assert [r.id for r in update.await_args.args[2]] == ["new-1"]
        assert state.dirty is False
        assert state.degraded_saves == 0

    @pytest.mark.asyncio
    async def test_full_save_waits_for_fallback_recovery(self, tracker, firestore_io):
        _, update = firestore_io
        update.side_effect = [self.DEGRADED, WriteOutcome("written", "Data tersimpan")]
        error_monitor.error_count = error_monitor.max_errors

        await tracker.mutate(UID, "rec-1", start_recommendation)
        await tracker.force_save(UID)

        state = await tracker.get_state(UID)
        assert state.dirty is True
        assert state.saver.pending is False

        error_monitor.record_success()
        await asyncio.sleep(0)

        assert state.saver.pending is True
        outcome = await tracker.force_save(UID)

        assert outcome.status == "written"
        assert state.dirty is False
        assert update.await_args.args[2][0].status == "in_progress"

    @pytest.mark.asyncio
    async def test_rescheduling_is_bounded(self, tracker, firestore_io):
        _, update = firestore_io
        update.return_value = self.DEGRADED

        await tracker.replace_recommendations(UID, [])
        state = await tracker.get_state(UID)
        while state.saver.pending:
            await tracker.force_save(UID)

        assert update.await_count == 4
        assert state.dirty is True