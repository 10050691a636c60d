"""
Firestore document operations for the user document and recommendation data.

Every write goes through the same resilience path:

1. FIRESTORE_DISABLED        -> skipped (reported as success)
2. offline                   -> queued for replay
3. client unhealthy          -> reconnect, queue when that fails
4. TransactionGuard.run      -> bounded concurrency, timeout, kind-based retry
5. offline failure           -> queued by the OfflineHandler
6. anything else             -> failed, recorded by the error monitor

Writes return a WriteOutcome instead of raising so that callers (routes and
the tracker) can degrade: the in-memory state stays authoritative and the
next save carries the latest data.

Reads return None on any failure.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, TypeVar

from firebase_admin import firestore

from sinak.config import settings
from sinak.db.client import (
    is_firestore_healthy,
    mark_firestore_healthy,
    mark_firestore_unhealthy,
    probe_firestore,
    reset_firestore_client,
    retry_firestore_connection,
)
from sinak.schemas.profile import BusinessProfile, UserPreferences
from sinak.schemas.recommendations import Recommendation
from sinak.services.firestore_errors import (
    classify_firestore_error,
    error_monitor,
    handle_firestore_error,
)
from sinak.services.offline_handler import offline_handler
from sinak.utils.constants import (
    LARGE_PAYLOAD_BYTES,
    RECOMMENDATIONS_DOCUMENT,
    USER_DATA_SUBCOLLECTION,
    USERS_COLLECTION,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_TRANSACTION_ATTEMPTS = 3
MAX_CONCURRENT_TRANSACTIONS = 3
MIN_TRANSACTION_INTERVAL = 0.1
MAX_CONSECUTIVE_INTERNAL_ERRORS = 3

# Nested maps merged key by key on upsert instead of being replaced
_MERGED_BLOCKS = ("business_profile", "preferences", "analytics")


# =============================================================================
# TRANSACTION GUARD
# =============================================================================

def retry_delay(kind: str, attempt: int) -> Optional[float]:
    """
    Seconds to wait before retrying after a failure of the given kind.

    Returns:
        None when the kind is not retried
    """
    if kind == "internal":
        return min(1.0 * 2 ** (attempt - 1), 5.0)
    if kind == "aborted":
        return min(0.5 * attempt, 2.0)
    if kind in ("unavailable", "deadline"):
        return min(1.0 * attempt, 3.0)
    return None


class TransactionGuard:
    """
    Serialize access to blocking Firestore operations.

    - at most max_concurrent operations run at once; extra callers wait
    - operation starts are spaced at least min_interval seconds apart
    - each attempt runs in a worker thread under a timeout
    - failures are retried per retry_delay(); internal errors mark the
      client unhealthy and, after MAX_CONSECUTIVE_INTERNAL_ERRORS in a row,
      reset it
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_TRANSACTIONS,
        min_interval: float = MIN_TRANSACTION_INTERVAL,
        max_attempts: int = MAX_TRANSACTION_ATTEMPTS,
        timeout: Optional[float] = None,
    ):
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.max_attempts = max_attempts
        self.timeout = timeout

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._start_lock = asyncio.Lock()
        self._last_start = 0.0

        self.active = 0
        self.waiting = 0
        self.total = 0
        self.failed = 0
        self.consecutive_internal_errors = 0

    async def _space_start(self) -> None:
        async with self._start_lock:
            loop = asyncio.get_running_loop()
            elapsed = loop.time() - self._last_start
            if elapsed < self.min_interval:
                await asyncio.sleep(self.min_interval - elapsed)
            self._last_start = loop.time()

    def _on_internal_error(self, error: BaseException) -> None:
        self.consecutive_internal_errors += 1
        mark_firestore_unhealthy(error)
        if self.consecutive_internal_errors >= MAX_CONSECUTIVE_INTERNAL_ERRORS:
            logger.error(
                f"{self.consecutive_internal_errors} consecutive internal Firestore errors, "
                "resetting client"
            )
            reset_firestore_client()
            self.consecutive_internal_errors = 0

    async def run(self, operation: Callable[[], T], name: str = "Firestore operation") -> T:
        """
        Run a blocking operation with the guard's limits.

        Args:
            operation: Zero-argument callable doing the Firestore work
            name: Label for logs

        Returns:
            The operation's return value

        Raises:
            Exception: The last error once retries are exhausted or the
                error kind is not retried
        """
        self.total += 1
        self.waiting += 1
        async with self._semaphore:
            self.waiting -= 1
            self.active += 1
            try:
                return await self._run_with_retry(operation, name)
            finally:
                self.active -= 1

    async def _run_with_retry(self, operation: Callable[[], T], name: str) -> T:
        timeout = self.timeout or settings.FIRESTORE_OPERATION_TIMEOUT
        attempt = 0
        while True:
            attempt += 1
            await self._space_start()
            try:
                result = await asyncio.wait_for(asyncio.to_thread(operation), timeout=timeout)
            except Exception as e:
                kind = classify_firestore_error(e)
                if kind == "internal":
                    self._on_internal_error(e)

                delay = retry_delay(kind, attempt)
                if delay is None or attempt >= self.max_attempts:
                    self.failed += 1
                    logger.error(f"{name} failed after {attempt} attempt(s) ({kind}): {e}")
                    raise

                logger.warning(
                    f"{name} failed ({kind}, attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                continue

            self.consecutive_internal_errors = 0
            return result

    def get_state(self) -> Dict[str, int]:
        return {
            "active": self.active,
            "waiting": self.waiting,
            "total": self.total,
            "failed": self.failed,
            "consecutive_internal_errors": self.consecutive_internal_errors,
        }


transaction_guard = TransactionGuard()


def _run_transaction(client, fn: Callable[[Any], T]) -> T:
    """Run fn(transaction) inside a Firestore transaction (blocking)."""

    @firestore.transactional
    def _in_transaction(transaction):
        return fn(transaction)

    return _in_transaction(client.transaction())


# =============================================================================
# WRITE OUTCOME
# =============================================================================

WriteStatus = Literal["written", "queued", "degraded", "skipped", "failed"]


@dataclass
class WriteOutcome:
    """
    Result of a resilient write.

    "degraded" means only the recommendation summary reached Firestore (or
    the offline queue); the list itself still has to be written.
    """
    status: WriteStatus
    message: str = ""
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    @property
    def persisted(self) -> bool:
        """True when nothing is left to write for this data."""
        return self.status in ("written", "queued", "skipped")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _user_ref(client, uid: str):
    return client.collection(USERS_COLLECTION).document(uid)


def _recommendations_ref(client, uid: str):
    return (
        _user_ref(client, uid)
        .collection(USER_DATA_SUBCOLLECTION)
        .document(RECOMMENDATIONS_DOCUMENT)
    )


async def _resilient_write(operation_id: str, write: Callable[[], Any], name: str) -> WriteOutcome:
    if settings.FIRESTORE_DISABLED:
        logger.info(f"Firestore disabled, skipping {name}")
        return WriteOutcome("skipped", "Firestore dinonaktifkan")

    async def guarded():
        return await transaction_guard.run(write, name)

    if offline_handler.is_offline:
        logger.info(f"Offline, queuing {name}")
        offline_handler.queue_operation(guarded, operation_id)
        return WriteOutcome("queued", "Perubahan akan disimpan saat koneksi kembali")

    if not is_firestore_healthy():
        logger.warning(f"Firestore not healthy before {name}, attempting to reconnect...")
        if not await retry_firestore_connection():
            offline_handler.queue_operation(guarded, operation_id)
            return WriteOutcome("queued", "Perubahan akan disimpan saat koneksi kembali")

    try:
        result = await offline_handler.with_offline_handling(guarded, operation_id)
    except Exception as e:
        kind = error_monitor.record_error(e)
        return WriteOutcome("failed", handle_firestore_error(e, name), error_kind=kind)

    if result is None:
        return WriteOutcome("queued", "Perubahan akan disimpan saat koneksi kembali")

    error_monitor.record_success()
    mark_firestore_healthy()
    return WriteOutcome("written", "Data tersimpan")


def _merge_blocks(existing: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(updates)
    for block in _MERGED_BLOCKS:
        if isinstance(updates.get(block), dict):
            merged[block] = {**(existing.get(block) or {}), **updates[block]}
    return merged


def _new_user_document(uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now_iso = _now_iso()
    business_name = data.get("business_name") or "Bisnis Baru"
    business_profile = BusinessProfile(user_id=uid, business_name=business_name).model_dump()
    business_profile.update(data.get("business_profile") or {})

    return {
        **{key: value for key, value in data.items() if value is not None},
        "uid": uid,
        "email": data.get("email"),
        "business_name": business_name,
        "business_profile": business_profile,
        "preferences": {**UserPreferences().model_dump(), **(data.get("preferences") or {})},
        "analytics": {
            "total_recommendations": 0,
            "completed_recommendations": 0,
            "last_login_at": now_iso,
            "registration_date": now_iso,
            **(data.get("analytics") or {}),
        },
        "recommendations": [],
        "recommendations_count": 0,
        "recommendations_split": False,
        "is_active": data.get("is_active", True),
        "onboarding_completed": bool(data.get("onboarding_completed", False)),
        "created_at": firestore.SERVER_TIMESTAMP,
        "updated_at": firestore.SERVER_TIMESTAMP,
    }


# =============================================================================
# USER DOCUMENT
# =============================================================================

async def create_user_document(client, uid: str, data: Dict[str, Any]) -> WriteOutcome:
    """
    Create the user document, or merge into it when it already exists.

    New documents get default business_profile, preferences and analytics
    blocks. For existing documents those blocks are merged key by key.

    Args:
        client: Firestore client
        uid: Verified Firebase uid
        data: Fields to store (None values are ignored)

    Returns:
        WriteOutcome
    """
    logger.info(f"create_user_document called for uid={uid}")
    data = {key: value for key, value in data.items() if value is not None}

    def _upsert(transaction) -> bool:
        ref = _user_ref(client, uid)
        snapshot = ref.get(transaction=transaction)
        if not snapshot.exists:
            logger.info("Creating new user document")
            transaction.set(ref, _new_user_document(uid, data))
        else:
            logger.info("Updating existing user document")
            existing = snapshot.to_dict() or {}
            updates = _merge_blocks(existing, data)
            updates["analytics"] = {
                **(existing.get("analytics") or {}),
                **(data.get("analytics") or {}),
                "last_login_at": _now_iso(),
            }
            updates["updated_at"] = firestore.SERVER_TIMESTAMP
            transaction.update(ref, updates)
        return True

    return await _resilient_write(
        f"create_user_document-{uid}",
        lambda: _run_transaction(client, _upsert),
        "create_user_document",
    )


async def _read_document(ref, operation_id: str):
    """Read one document with the read timeout; None when unavailable."""
    try:
        snapshot = await offline_handler.with_offline_handling(
            lambda: asyncio.wait_for(
                asyncio.to_thread(ref.get), timeout=settings.FIRESTORE_READ_TIMEOUT
            ),
            operation_id,
            queue_on_failure=False,
        )
    except Exception as e:
        error_monitor.record_error(e)
        handle_firestore_error(e, operation_id)
        return None

    if snapshot is None or not snapshot.exists:
        return None
    return snapshot.to_dict()


async def get_user_document(client, uid: str) -> Optional[Dict[str, Any]]:
    """
    Fetch users/{uid}.

    Returns:
        The document data, or None when missing, disabled or unreachable
    """
    if settings.FIRESTORE_DISABLED:
        logger.info("Firestore disabled, no user document available")
        return None

    if not is_firestore_healthy():
        logger.warning("Firestore not healthy, attempting to reconnect...")
        if not await retry_firestore_connection():
            return None

    data = await _read_document(_user_ref(client, uid), f"get_user_document-{uid}")
    if data is None:
        logger.info(f"User document not available for uid={uid}")
    return data


async def update_user_document(client, uid: str, updates: Dict[str, Any]) -> WriteOutcome:
    """
    Update users/{uid}, creating it when missing.

    Nested business_profile, preferences and analytics maps are merged with
    the stored values.
    """
    logger.info(f"update_user_document called for uid={uid}, fields={sorted(updates)}")
    updates = {key: value for key, value in updates.items() if value is not None}

    def _update(transaction) -> bool:
        ref = _user_ref(client, uid)
        snapshot = ref.get(transaction=transaction)
        if not snapshot.exists:
            logger.info("User document does not exist, creating new document")
            transaction.set(ref, _new_user_document(uid, updates))
        else:
            merged = _merge_blocks(snapshot.to_dict() or {}, updates)
            merged["updated_at"] = firestore.SERVER_TIMESTAMP
            transaction.update(ref, merged)
        return True

    return await _resilient_write(
        f"update_user_document-{uid}",
        lambda: _run_transaction(client, _update),
        "update_user_document",
    )


# =============================================================================
# RECOMMENDATION DATA
# =============================================================================

def _minimal_summary(count: int) -> Dict[str, Any]:
    return {
        "recommendations_count": count,
        "recommendations_updated_at": firestore.SERVER_TIMESTAMP,
        "last_update_attempt": _now_iso(),
        "updated_at": firestore.SERVER_TIMESTAMP,
    }


def fallback_writes_active() -> bool:
    """True while recommendation writes are reduced to the minimal summary."""
    return settings.FIRESTORE_FALLBACK_MODE or error_monitor.fallback_mode


async def _write_minimal_update(client, uid: str, count: int) -> WriteOutcome:
    logger.warning(f"Writing minimal recommendation summary for uid={uid}")

    def _write() -> bool:
        _user_ref(client, uid).set(_minimal_summary(count), merge=True)
        return True

    outcome = await _resilient_write(
        f"update_recommendation_data-{uid}", _write, "update_recommendation_data (minimal)"
    )
    if outcome.status in ("written", "queued"):
        return WriteOutcome(
            "degraded",
            "Ringkasan tersimpan, daftar rekomendasi akan disimpan ulang",
            error_kind=outcome.error_kind,
        )
    return outcome


async def update_recommendation_data(
    client,
    uid: str,
    recommendations: List[Recommendation],
    extra: Optional[Dict[str, Any]] = None,
) -> WriteOutcome:
    """
    Persist the user's recommendation list.

    Payloads above LARGE_PAYLOAD_BYTES are split: the user document keeps a
    summary and the list moves to users/{uid}/data/recommendations, both in
    one batch. An internal error, FIRESTORE_FALLBACK_MODE or a monitor in
    fallback mode reduce the write to a minimal summary update, reported as
    "degraded" so the caller keeps the list for a later full write.

    Args:
        client: Firestore client
        uid: Verified Firebase uid
        recommendations: Full list (last write wins)
        extra: Other top-level fields to store alongside, e.g. bookmark_collections

    Returns:
        WriteOutcome
    """
    count = len(recommendations)
    if fallback_writes_active():
        return await _write_minimal_update(client, uid, count)

    payload = [recommendation.model_dump(mode="json") for recommendation in recommendations]
    size = len(json.dumps(payload).encode("utf-8"))
    logger.info(f"Recommendation data size for uid={uid}: {round(size / 1024)}KB ({count} items)")

    summary = {
        **(extra or {}),
        "recommendations_count": count,
        "recommendations_updated_at": firestore.SERVER_TIMESTAMP,
        "updated_at": firestore.SERVER_TIMESTAMP,
    }

    if size > LARGE_PAYLOAD_BYTES:
        logger.info("Large dataset detected, using batch approach")

        def _write() -> bool:
            batch = client.batch()
            batch.set(
                _user_ref(client, uid),
                {**summary, "recommendations": firestore.DELETE_FIELD, "recommendations_split": True},
                merge=True,
            )
            batch.set(
                _recommendations_ref(client, uid),
                {"recommendations": payload, "updated_at": firestore.SERVER_TIMESTAMP},
            )
            batch.commit()
            return True
    else:
        def _write() -> bool:
            _user_ref(client, uid).set(
                {**summary, "recommendations": payload, "recommendations_split": False},
                merge=True,
            )
            return True

    outcome = await _resilient_write(
        f"update_recommendation_data-{uid}", _write, "update_recommendation_data"
    )
    if outcome.status == "failed" and outcome.error_kind == "internal":
        logger.warning("Internal error in recommendation update, falling back to minimal update")
        return await _write_minimal_update(client, uid, count)
    return outcome


async def load_recommendation_data(client, uid: str) -> Optional[Dict[str, Any]]:
    """
    Load the stored recommendation list and bookmark collections.

    Returns:
        {"recommendations": [...], "bookmark_collections": [...]} with raw
        dicts, or None when the user document is not available
    """
    data = await get_user_document(client, uid)
    if data is None:
        return None

    recommendations = data.get("recommendations") or []
    if data.get("recommendations_split"):
        split = await _read_document(
            _recommendations_ref(client, uid), f"load_recommendation_data-{uid}"
        )
        recommendations = (split or {}).get("recommendations") or []

    return {
        "recommendations": recommendations,
        "bookmark_collections": data.get("bookmark_collections") or [],
    }


# =============================================================================
# DIAGNOSTICS
# =============================================================================

async def test_firestore_connectivity(client) -> Dict[str, Any]:
    """Probe Firestore with a single read and report latency."""
    logger.info("Testing Firestore connectivity...")
    if not is_firestore_healthy():
        await retry_firestore_connection()

    started = time.perf_counter()
    try:
        await asyncio.wait_for(
            asyncio.to_thread(probe_firestore, client),
            timeout=settings.FIRESTORE_READ_TIMEOUT,
        )
    except Exception as e:
        mark_firestore_unhealthy(e)
        return {
            "connected": False,
            "latency_ms": None,
            "error_kind": classify_firestore_error(e),
            "message": handle_firestore_error(e, "test_firestore_connectivity"),
        }

    latency_ms = round((time.perf_counter() - started) * 1000, 1)
    mark_firestore_healthy()
    logger.info(f"Firestore connectivity test passed ({latency_ms}ms)")
    return {
        "connected": True,
        "latency_ms": latency_ms,
        "error_kind": None,
        "message": "Koneksi Firestore berhasil",
    }


def get_firebase_error_stats() -> Dict[str, Any]:
    stats = error_monitor.get_stats()
    stats["fallback_mode"] = stats["fallback_mode"] or settings.FIRESTORE_FALLBACK_MODE
    return stats


def reset_firebase_error_count() -> None:
    error_monitor.reset()
