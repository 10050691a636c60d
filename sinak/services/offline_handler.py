"""
Offline handling for Firestore writes.

When Firestore is unreachable, writes are not lost: they are queued under a
stable operation id and replayed once connectivity returns. A write queued
again under the same id replaces the earlier one, so the queue holds the
latest intent per document rather than a history.

Reads are never queued; callers get None and fall back to cached state.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sinak.config import settings
from sinak.db.client import get_firestore_client, probe_firestore
from sinak.services.firestore_errors import is_offline_error

logger = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY = 2.0

Operation = Callable[[], Awaitable[Any]]
Listener = Callable[[str, Dict[str, Any]], Any]


@dataclass
class QueuedOperation:
    operation_id: str
    operation: Operation
    queued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


async def _probe_connectivity() -> None:
    client = get_firestore_client()
    await asyncio.wait_for(
        asyncio.to_thread(probe_firestore, client),
        timeout=settings.FIRESTORE_READ_TIMEOUT,
    )


class OfflineHandler:
    """
    Track Firestore reachability and hold deferred writes.

    Args:
        max_reconnect_attempts: Attempts per reconnection run
        reconnect_delay: Base delay; attempt n waits reconnect_delay * n seconds
        auto_reconnect: Start a background reconnection run when going offline
        probe: Async callable that raises when Firestore is unreachable
    """

    def __init__(
        self,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_delay: float = RECONNECT_DELAY,
        auto_reconnect: bool = True,
        probe: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.auto_reconnect = auto_reconnect
        self._probe = probe or _probe_connectivity

        self.is_offline = False
        self.reconnect_attempts = 0
        self.last_online_at: Optional[datetime] = None
        self.last_offline_at: Optional[datetime] = None

        self._queue: "OrderedDict[str, QueuedOperation]" = OrderedDict()
        self._listeners: List[Listener] = []
        self._reconnect_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def is_queued(self, operation_id: str) -> bool:
        return operation_id in self._queue

    def queue_operation(self, operation: Operation, operation_id: str) -> None:
        """Queue a write for replay; an existing entry with the same id is replaced."""
        if operation_id in self._queue:
            del self._queue[operation_id]
            logger.info(f"Replacing queued offline operation: {operation_id}")
        else:
            logger.info(f"Queuing offline operation: {operation_id}")
        self._queue[operation_id] = QueuedOperation(operation_id, operation)

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        logger.info(f"Offline queue cleared ({cleared} operations)")
        return cleared

    async def process_queue(self) -> Dict[str, int]:
        """
        Replay queued operations in FIFO order.

        Operations failing with an offline-type error are queued again
        (unless a newer write with the same id arrived meanwhile). Other
        failures are logged and dropped.

        Returns:
            Counts of processed, requeued and failed operations
        """
        counts = {"processed": 0, "requeued": 0, "failed": 0}
        if not self._queue:
            return counts

        pending = list(self._queue.values())
        self._queue.clear()
        logger.info(f"Processing {len(pending)} queued operations")

        for item in pending:
            try:
                await item.operation()
            except Exception as e:
                if is_offline_error(e):
                    if item.operation_id not in self._queue:
                        self._queue[item.operation_id] = item
                    counts["requeued"] += 1
                    logger.warning(f"Queued operation {item.operation_id} still offline, requeued")
                else:
                    counts["failed"] += 1
                    logger.error(f"Failed to process queued operation {item.operation_id}: {e}")
                continue
            counts["processed"] += 1
            logger.info(f"Processed queued operation: {item.operation_id}")

        return counts

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def mark_offline(self, error: Optional[BaseException] = None) -> None:
        if self.is_offline:
            return
        self.is_offline = True
        self.last_offline_at = datetime.now(timezone.utc)
        logger.warning(f"Firestore detected as offline: {error}")
        self._notify("offline")
        if self.auto_reconnect:
            self._start_reconnect()

    def mark_online(self) -> None:
        if not self.is_offline:
            return
        self.is_offline = False
        self.reconnect_attempts = 0
        self.last_online_at = datetime.now(timezone.utc)
        logger.info("Firestore connection restored")
        self._notify("online")

    def _start_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        try:
            self._reconnect_task = asyncio.get_running_loop().create_task(self.attempt_reconnection())
        except RuntimeError:
            logger.debug("No running event loop, automatic reconnection not started")

    async def attempt_reconnection(self) -> bool:
        """
        Probe Firestore until it answers or the attempts run out.

        On success the handler goes online and the queue is replayed.
        """
        while self.reconnect_attempts < self.max_reconnect_attempts:
            self.reconnect_attempts += 1
            attempt = self.reconnect_attempts
            logger.info(f"Attempting Firestore reconnection ({attempt}/{self.max_reconnect_attempts})")
            await asyncio.sleep(self.reconnect_delay * attempt)
            try:
                await self._probe()
            except Exception as e:
                logger.warning(f"Reconnection attempt {attempt} failed: {e}")
                continue

            self.mark_online()
            await self.process_queue()
            return True

        logger.warning("Max reconnection attempts reached")
        return False

    async def force_reconnection(self) -> bool:
        """Reset the attempt counter and reconnect now, replacing any background run."""
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        self.reconnect_attempts = 0
        return await self.attempt_reconnection()

    async def stop_reconnecting(self) -> None:
        """Cancel the background reconnect loop and wait for it to finish."""
        task, self._reconnect_task = self._reconnect_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Background Firestore reconnection stopped")

    # ------------------------------------------------------------------
    # Wrapper
    # ------------------------------------------------------------------

    async def with_offline_handling(
        self,
        operation: Operation,
        operation_id: str,
        queue_on_failure: bool = True,
    ) -> Any:
        """
        Run an async Firestore operation, deferring it when offline.

        Args:
            operation: Zero-argument coroutine factory
            operation_id: Stable id used for queue de-duplication
            queue_on_failure: Queue the operation (writes) instead of dropping it (reads)

        Returns:
            The operation's result, or None when it was deferred or dropped

        Raises:
            Exception: Any non-offline failure from the operation
        """
        if self.is_offline:
            if queue_on_failure:
                self.queue_operation(operation, operation_id)
            return None

        try:
            return await operation()
        except Exception as e:
            if not is_offline_error(e):
                raise
            logger.warning(f"{operation_id} failed due to offline status")
            self.mark_offline(e)
            if queue_on_failure:
                self.queue_operation(operation, operation_id)
            return None

    # ------------------------------------------------------------------
    # Listeners and status
    # ------------------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners = [item for item in self._listeners if item is not listener]

    def _notify(self, status: str) -> None:
        snapshot = self.get_status()
        for listener in list(self._listeners):
            try:
                listener(status, snapshot)
            except Exception as e:
                logger.warning(f"Error in offline listener: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_offline": self.is_offline,
            "queued_operations": len(self._queue),
            "reconnect_attempts": self.reconnect_attempts,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "last_online_at": self.last_online_at,
            "last_offline_at": self.last_offline_at,
        }


offline_handler = OfflineHandler(auto_reconnect=settings.OFFLINE_AUTO_RECONNECT)
