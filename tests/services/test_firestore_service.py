"""
Tests for the Firestore document operations.

Tests cover:
- TransactionGuard retry policy per error kind
- Resilient write outcomes (written, queued, degraded, skipped, failed)
- TransactionGuard concurrency limit and start spacing
- Recommendation payload layout (inline, split, minimal summary)
- User document create/update merging
- Reads degrading to None

The Firestore client is a MagicMock; transactions run the callback directly
with a mock transaction object.
"""

import asyncio
import threading
import time

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from sinak.config import settings
from sinak.schemas.recommendations import Recommendation
from sinak.services import firestore_service
from sinak.services.firestore_errors import error_monitor
from sinak.services.firestore_service import (
    TransactionGuard,
    create_user_document,
    get_user_document,
    load_recommendation_data,
    retry_delay,
    update_recommendation_data,
    update_user_document,
)
from sinak.services.offline_handler import offline_handler
from sinak.services.tracking_service import RecommendationTracker

UID = "test-user-id"


# =============================================================================
# FIXTURES
# =============================================================================

def _user_ref(client):
    return client.collection.return_value.document.return_value


def _snapshot(data):
    snapshot = MagicMock()
    snapshot.exists = data is not None
    snapshot.to_dict.return_value = data
    return snapshot


@pytest.fixture
def guard():
    """A fast guard with healthy connection state."""
    test_guard = TransactionGuard(min_interval=0)
    with patch("sinak.services.firestore_service.transaction_guard", test_guard), \
         patch("sinak.services.firestore_service.is_firestore_healthy", return_value=True), \
         patch("sinak.services.firestore_service.mark_firestore_healthy"), \
         patch("sinak.services.firestore_service.mark_firestore_unhealthy"), \
         patch("sinak.services.firestore_service.reset_firestore_client"):
        yield test_guard


@pytest.fixture
def no_backoff():
    with patch("sinak.services.firestore_service.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def transaction():
    """Run transactional callbacks directly against a mock transaction."""
    mock_transaction = MagicMock()
    with patch(
        "sinak.services.firestore_service._run_transaction",
        side_effect=lambda client, fn: fn(mock_transaction),
    ):
        yield mock_transaction


@pytest.fixture
def recommendations():
    return [
        Recommendation(id="rec-1", title="Audit Keuangan", description="Periksa arus kas"),
        Recommendation(id="rec-2", title="Promosi Digital", description="Gunakan media sosial"),
    ]


# =============================================================================
# TRANSACTION GUARD
# =============================================================================

class TestTransactionGuard:

    @pytest.mark.parametrize("kind,attempt,expected", [
        ("internal", 1, 1.0),
        ("internal", 3, 4.0),
        ("internal", 5, 5.0),
        ("aborted", 1, 0.5),
        ("aborted", 9, 2.0),
        ("unavailable", 2, 2.0),
        ("deadline", 5, 3.0),
        ("permission_denied", 1, None),
        ("not_found", 1, None),
        ("offline", 1, None),
        ("unknown", 1, None),
    ])
    def test_retry_delay(self, kind, attempt, expected):
        assert retry_delay(kind, attempt) == expected

    @pytest.mark.asyncio
    async def test_run_returns_result(self, guard):
        result = await guard.run(lambda: "ok", "read")

        assert result == "ok"
        assert guard.get_state()["total"] == 1
        assert guard.get_state()["active"] == 0

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, guard, no_backoff):
        operation = MagicMock(side_effect=[google_exceptions.ServiceUnavailable("down"), "ok"])

        assert await guard.run(operation) == "ok"
        assert operation.call_count == 2
        no_backoff.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_permission_denied_is_not_retried(self, guard, no_backoff):
        operation = MagicMock(side_effect=google_exceptions.PermissionDenied("denied"))

        with pytest.raises(google_exceptions.PermissionDenied):
            await guard.run(operation)

        assert operation.call_count == 1
        assert guard.failed == 1
        no_backoff.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeated_internal_errors_reset_client(self, guard, no_backoff):
        operation = MagicMock(side_effect=google_exceptions.InternalServerError("boom"))

        with pytest.raises(google_exceptions.InternalServerError):
            await guard.run(operation)

        assert operation.call_count == 3
        firestore_service.reset_firestore_client.assert_called_once()
        assert guard.consecutive_internal_errors == 0

    @pytest.mark.asyncio
    async def test_at_most_three_operations_run_at_once(self):
        guard = TransactionGuard(min_interval=0)
        release = threading.Event()
        running = []

        def operation():
            running.append(threading.get_ident())
            release.wait(timeout=5)
            return "ok"

        tasks = [asyncio.create_task(guard.run(operation, "blocking write")) for _ in range(5)]
        for _ in range(100):
            if len(running) == 3:
                break
            await asyncio.sleep(0.01)
        # Give any extra caller the chance to slip through
        await asyncio.sleep(0.05)

        assert len(running) == 3
        state = guard.get_state()
        assert state["active"] == 3
        assert state["waiting"] == 2
        assert state["total"] == 5

        release.set()
        assert await asyncio.gather(*tasks) == ["ok"] * 5
        state = guard.get_state()
        assert state["active"] == 0
        assert state["waiting"] == 0
        assert len(running) == 5

    @pytest.mark.asyncio
    async def test_operation_starts_are_spaced(self):
        guard = TransactionGuard(min_interval=0.1)
        started = []

        def operation():
            started.append(time.monotonic())
            return "ok"

        await asyncio.gather(*(guard.run(operation) for _ in range(3)))

        gaps = [later - earlier for earlier, later in zip(started, started[1:])]
        assert len(gaps) == 2
        # Thread start-up jitter is tolerated, the guard sleeps on loop time
        assert all(gap >= 0.08 for gap in gaps)


# =============================================================================
# RECOMMENDATION DATA
# =============================================================================

class TestUpdateRecommendationData:

    @pytest.mark.asyncio
    async def test_disabled_is_skipped(self, guard, firestore_client, recommendations):
        with patch.object(settings, "FIRESTORE_DISABLED", True):
            outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "skipped"
        assert outcome.ok is True
        _user_ref(firestore_client).set.assert_not_called()

    @pytest.mark.asyncio
    async def test_small_payload_written_inline(self, guard, firestore_client, recommendations):
        outcome = await update_recommendation_data(
            firestore_client, UID, recommendations, extra={"bookmark_collections": []}
        )

        assert outcome.status == "written"
        firestore_client.collection.assert_called_with("users")
        firestore_client.collection.return_value.document.assert_called_with(UID)

        data = _user_ref(firestore_client).set.call_args.args[0]
        assert _user_ref(firestore_client).set.call_args.kwargs == {"merge": True}
        assert data["recommendations_count"] == 2
        assert data["recommendations_split"] is False
        assert data["bookmark_collections"] == []
        assert [r["id"] for r in data["recommendations"]] == ["rec-1", "rec-2"]
        # Datetimes are stored as ISO strings
        assert isinstance(data["recommendations"][0]["created_at"], str)

    @pytest.mark.asyncio
    async def test_large_payload_is_split(self, guard, firestore_client, recommendations):
        with patch("sinak.services.firestore_service.LARGE_PAYLOAD_BYTES", 10):
            outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "written"
        batch = firestore_client.batch.return_value
        assert batch.set.call_count == 2
        batch.commit.assert_called_once()

        summary = batch.set.call_args_list[0].args[1]
        assert summary["recommendations_split"] is True
        assert summary["recommendations"] is firestore.DELETE_FIELD
        sub_document = batch.set.call_args_list[1].args[1]
        assert len(sub_document["recommendations"]) == 2

    @pytest.mark.asyncio
    async def test_monitor_fallback_mode_reports_degraded_summary(
        self, guard, firestore_client, recommendations
    ):
        error_monitor.error_count = error_monitor.max_errors

        outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "degraded"
        assert outcome.ok is True
        assert outcome.persisted is False
        data = _user_ref(firestore_client).set.call_args.args[0]
        assert data["recommendations_count"] == 2
        assert "recommendations" not in data

    @pytest.mark.asyncio
    async def test_internal_error_falls_back_to_degraded_summary(
        self, guard, no_backoff, firestore_client, recommendations
    ):
        user_ref = _user_ref(firestore_client)
        user_ref.set.side_effect = [google_exceptions.InternalServerError("boom")] * 3 + [None]

        outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "degraded"
        assert user_ref.set.call_count == 4
        assert "recommendations" not in user_ref.set.call_args.args[0]
        # The successful minimal write ends the error streak
        assert error_monitor.error_count == 0

    @pytest.mark.asyncio
    async def test_forced_fallback_while_offline_is_degraded(
        self, guard, firestore_client, recommendations
    ):
        offline_handler.is_offline = True

        with patch.object(settings, "FIRESTORE_FALLBACK_MODE", True):
            outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "degraded"
        assert offline_handler.is_queued(f"update_recommendation_data-{UID}")

    @pytest.mark.asyncio
    async def test_tracker_rewrites_full_list_after_fallback(
        self, guard, firestore_client, recommendations
    ):
        for _ in range(error_monitor.max_errors):
            error_monitor.record_error(google_exceptions.ServiceUnavailable("down"))
        tracker = RecommendationTracker(client_factory=lambda: firestore_client, debounce_seconds=10)
        user_ref = _user_ref(firestore_client)

        with patch(
            "sinak.services.tracking_service.load_recommendation_data",
            new_callable=AsyncMock,
            return_value=None,
        ):
            outcome = await tracker.replace_recommendations(UID, recommendations)
            state = await tracker.get_state(UID)

            assert outcome.status == "degraded"
            assert "recommendations" not in user_ref.set.call_args.args[0]
            assert state.dirty is True

            outcome = await tracker.force_save(UID)

        assert outcome.status == "written"
        assert [r["id"] for r in user_ref.set.call_args.args[0]["recommendations"]] == ["rec-1", "rec-2"]
        assert state.dirty is False

    @pytest.mark.asyncio
    async def test_offline_write_is_queued(self, guard, firestore_client, recommendations):
        offline_handler.is_offline = True

        outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "queued"
        assert offline_handler.is_queued(f"update_recommendation_data-{UID}")
        _user_ref(firestore_client).set.assert_not_called()

    @pytest.mark.asyncio
    async def test_unavailable_after_retries_goes_offline_and_queues(
        self, guard, no_backoff, firestore_client, recommendations
    ):
        _user_ref(firestore_client).set.side_effect = google_exceptions.ServiceUnavailable("down")

        outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "queued"
        assert offline_handler.is_offline is True
        assert offline_handler.queue_size == 1

    @pytest.mark.asyncio
    async def test_permission_denied_fails(self, guard, firestore_client, recommendations):
        _user_ref(firestore_client).set.side_effect = google_exceptions.PermissionDenied("denied")

        outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "failed"
        assert outcome.ok is False
        assert outcome.error_kind == "permission_denied"
        assert "Akses ditolak" in outcome.message
        assert error_monitor.error_count == 1

    @pytest.mark.asyncio
    async def test_unhealthy_client_that_cannot_reconnect_queues(
        self, guard, firestore_client, recommendations
    ):
        with patch("sinak.services.firestore_service.is_firestore_healthy", return_value=False), \
             patch("sinak.services.firestore_service.retry_firestore_connection",
                   new_callable=AsyncMock, return_value=False):
            outcome = await update_recommendation_data(firestore_client, UID, recommendations)

        assert outcome.status == "queued"
        assert offline_handler.queue_size == 1


# =============================================================================
# USER DOCUMENT
# =============================================================================

class TestUserDocument:

    @pytest.mark.asyncio
    async def test_create_new_document_with_defaults(self, guard, transaction, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot(None)

        outcome = await create_user_document(
            firestore_client, UID, {"email": "sari@example.com", "business_name": "Warung Bu Sari", "phone": None}
        )

        assert outcome.status == "written"
        ref, document = transaction.set.call_args.args
        assert ref is _user_ref(firestore_client)
        assert document["uid"] == UID
        assert document["email"] == "sari@example.com"
        assert document["business_profile"]["business_name"] == "Warung Bu Sari"
        assert document["analytics"]["total_recommendations"] == 0
        assert document["recommendations"] == []
        assert document["is_active"] is True
        assert document["created_at"] is firestore.SERVER_TIMESTAMP
        assert "phone" not in document

    @pytest.mark.asyncio
    async def test_create_existing_document_merges_analytics(self, guard, transaction, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot({
            "analytics": {"total_recommendations": 5, "registration_date": "2024-01-01"},
        })

        await create_user_document(firestore_client, UID, {"email": "sari@example.com"})

        transaction.set.assert_not_called()
        updates = transaction.update.call_args.args[1]
        assert updates["email"] == "sari@example.com"
        assert updates["analytics"]["total_recommendations"] == 5
        assert updates["analytics"]["registration_date"] == "2024-01-01"
        assert "last_login_at" in updates["analytics"]

    @pytest.mark.asyncio
    async def test_update_merges_nested_blocks(self, guard, transaction, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot({
            "business_profile": {"business_name": "Lama", "location": "Bandung"},
        })

        await update_user_document(
            firestore_client, UID, {"business_profile": {"business_name": "Baru"}, "phone": "0812"}
        )

        updates = transaction.update.call_args.args[1]
        assert updates["business_profile"] == {"business_name": "Baru", "location": "Bandung"}
        assert updates["phone"] == "0812"
        assert updates["updated_at"] is firestore.SERVER_TIMESTAMP

    @pytest.mark.asyncio
    async def test_update_creates_missing_document(self, guard, transaction, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot(None)

        await update_user_document(firestore_client, UID, {"business_name": "Toko Baru"})

        document = transaction.set.call_args.args[1]
        assert document["business_name"] == "Toko Baru"
        assert document["preferences"]["language"] == "id"

    @pytest.mark.asyncio
    async def test_get_user_document(self, guard, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot({"uid": UID})
        assert await get_user_document(firestore_client, UID) == {"uid": UID}

    @pytest.mark.asyncio
    async def test_get_missing_document(self, guard, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot(None)
        assert await get_user_document(firestore_client, UID) is None

    @pytest.mark.asyncio
    async def test_get_read_error_returns_none(self, guard, firestore_client):
        _user_ref(firestore_client).get.side_effect = google_exceptions.PermissionDenied("denied")

        assert await get_user_document(firestore_client, UID) is None
        assert error_monitor.error_count == 1

    @pytest.mark.asyncio
    async def test_get_when_disabled(self, guard, firestore_client):
        with patch.object(settings, "FIRESTORE_DISABLED", True):
            assert await get_user_document(firestore_client, UID) is None
        _user_ref(firestore_client).get.assert_not_called()


class TestLoadRecommendationData:

    @pytest.mark.asyncio
    async def test_inline_recommendations(self, guard, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot({
            "recommendations": [{"id": "rec-1"}],
            "bookmark_collections": [{"id": "work", "name": "Kerja"}],
        })

        data = await load_recommendation_data(firestore_client, UID)

        assert data == {
            "recommendations": [{"id": "rec-1"}],
            "bookmark_collections": [{"id": "work", "name": "Kerja"}],
        }

    @pytest.mark.asyncio
    async def test_split_recommendations_read_from_sub_document(self, guard, firestore_client):
        user_ref = _user_ref(firestore_client)
        user_ref.get.return_value = _snapshot({"recommendations_split": True})
        user_ref.collection.return_value.document.return_value.get.return_value = _snapshot(
            {"recommendations": [{"id": "rec-9"}]}
        )

        data = await load_recommendation_data(firestore_client, UID)

        user_ref.collection.assert_called_with("data")
        assert data["recommendations"] == [{"id": "rec-9"}]
        assert data["bookmark_collections"] == []

    @pytest.mark.asyncio
    async def test_missing_user_document(self, guard, firestore_client):
        _user_ref(firestore_client).get.return_value = _snapshot(None)
        assert await load_recommendation_data(firestore_client, UID) is None


class TestConnectivity:

    @pytest.mark.asyncio
    async def test_connected(self, guard, firestore_client):
        result = await firestore_service.test_firestore_connectivity(firestore_client)

        assert result["connected"] is True
        assert result["latency_ms"] is not None
        firestore_service.mark_firestore_healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_connectivity_failure(self, guard, firestore_client):
        _user_ref(firestore_client).get.side_effect = google_exceptions.PermissionDenied("denied")

        result = await firestore_service.test_firestore_connectivity(firestore_client)

        assert result["connected"] is False
        assert result["error_kind"] == "permission_denied"
        firestore_service.mark_firestore_unhealthy.assert_called_once()
