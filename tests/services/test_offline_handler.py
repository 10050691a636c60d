"""
Tests for the offline write queue, reconnection and error classification.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from google.api_core import exceptions as google_exceptions

from sinak.services.firestore_errors import (
    FirestoreErrorMonitor,
    classify_firestore_error,
    handle_firestore_error,
)
from sinak.services.offline_handler import OfflineHandler


@pytest.fixture
def handler():
    return OfflineHandler(reconnect_delay=0, auto_reconnect=False, probe=AsyncMock())


class TestClassification:

    @pytest.mark.parametrize("error,kind", [
        (google_exceptions.ServiceUnavailable("backend down"), "unavailable"),
        (google_exceptions.ServiceUnavailable("Failed to connect to all addresses"), "offline"),
        (google_exceptions.Aborted("contention"), "aborted"),
        (google_exceptions.InternalServerError("boom"), "internal"),
        (google_exceptions.PermissionDenied("rules"), "permission_denied"),
        (google_exceptions.NotFound("project"), "not_found"),
        (google_exceptions.DeadlineExceeded("slow"), "deadline"),
        (asyncio.TimeoutError(), "deadline"),
        (ConnectionRefusedError("refused"), "offline"),
        (RuntimeError("INTERNAL ASSERTION FAILED: Unexpected state"), "internal"),
        (RuntimeError("client is offline"), "offline"),
        (ValueError("bad"), "unknown"),
    ])
    def test_classify(self, error, kind):
        assert classify_firestore_error(error) == kind

    def test_user_messages_are_indonesian(self):
        assert handle_firestore_error(
            google_exceptions.PermissionDenied("rules")
        ).startswith("Akses ditolak")
        assert "tanpa sinkronisasi" in handle_firestore_error(ValueError("bad"))


class TestErrorMonitor:

    def test_fallback_after_consecutive_errors(self):
        monitor = FirestoreErrorMonitor(max_errors=2)

        monitor.record_error(google_exceptions.InternalServerError("boom"))
        assert monitor.fallback_mode is False
        monitor.record_error(google_exceptions.Aborted("contention"))
        assert monitor.fallback_mode is True

        stats = monitor.get_stats()
        assert stats["by_kind"] == {"internal": 1, "aborted": 1}
        assert stats["last_error_kind"] == "aborted"

    def test_success_resets_streak_but_keeps_totals(self):
        monitor = FirestoreErrorMonitor(max_errors=2)
        monitor.record_error(ValueError("x"))
        monitor.record_success()

        assert monitor.error_count == 0
        assert monitor.by_kind == {"unknown": 1}

        monitor.reset()
        assert monitor.get_stats()["by_kind"] == {}

    def test_recovery_listener_fires_when_leaving_fallback(self):
        monitor = FirestoreErrorMonitor(max_errors=2)
        listener = MagicMock()
        monitor.add_recovery_listener(listener)

        monitor.record_error(ValueError("x"))
        monitor.record_success()
        listener.assert_not_called()

        monitor.record_error(ValueError("x"))
        monitor.record_error(ValueError("y"))
        monitor.record_success()
        listener.assert_called_once()

        monitor.record_error(ValueError("x"))
        monitor.record_error(ValueError("y"))
        monitor.remove_recovery_listener(listener)
        monitor.reset()
        listener.assert_called_once()

    def test_recovery_listener_errors_are_contained(self):
        monitor = FirestoreErrorMonitor(max_errors=1)
        monitor.add_recovery_listener(MagicMock(side_effect=RuntimeError("listener bug")))
        monitor.record_error(ValueError("x"))

        monitor.record_success()

        assert monitor.fallback_mode is False


class TestQueue:

    @pytest.mark.asyncio
    async def test_same_id_replaces_earlier_operation(self, handler):
        first = AsyncMock()
        second = AsyncMock()

        handler.queue_operation(first, "update-user-1")
        handler.queue_operation(AsyncMock(), "update-user-2")
        handler.queue_operation(second, "update-user-1")

        assert handler.queue_size == 2
        counts = await handler.process_queue()

        assert counts == {"processed": 2, "requeued": 0, "failed": 0}
        first.assert_not_awaited()
        second.assert_awaited_once()
        assert handler.queue_size == 0

    @pytest.mark.asyncio
    async def test_offline_failures_are_requeued_others_dropped(self, handler):
        handler.queue_operation(
            AsyncMock(side_effect=google_exceptions.ServiceUnavailable("down")), "still-offline"
        )
        handler.queue_operation(AsyncMock(side_effect=ValueError("bad data")), "broken")

        counts = await handler.process_queue()

        assert counts == {"processed": 0, "requeued": 1, "failed": 1}
        assert handler.is_queued("still-offline")
        assert not handler.is_queued("broken")

    @pytest.mark.asyncio
    async def test_process_empty_queue(self, handler):
        assert await handler.process_queue() == {"processed": 0, "requeued": 0, "failed": 0}

    def test_clear_queue(self, handler):
        handler.queue_operation(AsyncMock(), "a")
        assert handler.clear_queue() == 1
        assert handler.queue_size == 0


class TestWithOfflineHandling:

    @pytest.mark.asyncio
    async def test_returns_result_when_online(self, handler):
        assert await handler.with_offline_handling(AsyncMock(return_value=42), "op") == 42

    @pytest.mark.asyncio
    async def test_offline_error_marks_offline_and_queues(self, handler):
        operation = AsyncMock(side_effect=ConnectionError("network is unreachable"))

        result = await handler.with_offline_handling(operation, "write-1")

        assert result is None
        assert handler.is_offline is True
        assert handler.is_queued("write-1")
        assert handler.get_status()["last_offline_at"] is not None

    @pytest.mark.asyncio
    async def test_reads_are_not_queued(self, handler):
        handler.is_offline = True
        operation = AsyncMock()

        assert await handler.with_offline_handling(operation, "read-1", queue_on_failure=False) is None
        operation.assert_not_awaited()
        assert handler.queue_size == 0

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, handler):
        with pytest.raises(google_exceptions.PermissionDenied):
            await handler.with_offline_handling(
                AsyncMock(side_effect=google_exceptions.PermissionDenied("rules")), "write-1"
            )
        assert handler.is_offline is False


class TestReconnection:

    @pytest.mark.asyncio
    async def test_reconnect_goes_online_and_replays_queue(self, handler):
        queued = AsyncMock()
        listener = MagicMock()
        handler.add_listener(listener)
        handler.mark_offline(ConnectionError("down"))
        handler.queue_operation(queued, "write-1")

        assert await handler.attempt_reconnection() is True

        assert handler.is_offline is False
        assert handler.reconnect_attempts == 0
        queued.assert_awaited_once()
        assert [c.args[0] for c in listener.call_args_list] == ["offline", "online"]

    @pytest.mark.asyncio
    async def test_reconnect_gives_up_after_max_attempts(self):
        probe = AsyncMock(side_effect=ConnectionError("down"))
        handler = OfflineHandler(
            max_reconnect_attempts=3, reconnect_delay=0, auto_reconnect=False, probe=probe
        )
        handler.mark_offline()

        assert await handler.attempt_reconnection() is False
        assert probe.await_count == 3
        assert handler.is_offline is True

    @pytest.mark.asyncio
    async def test_force_reconnection_resets_attempts(self):
        probe = AsyncMock(side_effect=[ConnectionError("down"), None])
        handler = OfflineHandler(
            max_reconnect_attempts=1, reconnect_delay=0, auto_reconnect=False, probe=probe
        )
        handler.mark_offline()

        assert await handler.attempt_reconnection() is False
        assert await handler.force_reconnection() is True
        assert handler.is_offline is False

    @pytest.mark.asyncio
    async def test_auto_reconnect_runs_in_background(self):
        handler = OfflineHandler(reconnect_delay=0, probe=AsyncMock())

        handler.mark_offline(ConnectionError("down"))
        assert handler.is_offline is True
        await asyncio.sleep(0.01)

        assert handler.is_offline is False

    @pytest.mark.asyncio
    async def test_stop_reconnecting_cancels_background_loop(self):
        handler = OfflineHandler(reconnect_delay=10, probe=AsyncMock())

        handler.mark_offline(ConnectionError("down"))
        task = handler._reconnect_task
        assert task is not None and not task.done()

        await handler.stop_reconnecting()

        assert task.cancelled()
        assert handler._reconnect_task is None
        assert handler.is_offline is True

    @pytest.mark.asyncio
    async def test_stop_reconnecting_without_loop_is_noop(self, handler):
        await handler.stop_reconnecting()
        assert handler._reconnect_task is None

    def test_listener_errors_are_contained(self, handler):
        handler.add_listener(MagicMock(side_effect=RuntimeError("listener bug")))
        handler.mark_offline()
        assert handler.is_offline is True
