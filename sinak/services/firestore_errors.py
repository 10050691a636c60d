"""
Firestore error classification and monitoring.

Every Firestore failure is reduced to one of a small set of kinds, which
drive retry decisions (TransactionGuard), offline queueing (OfflineHandler)
and the user-facing message:

    unavailable        service unreachable, transient
    aborted            transaction contention, transient
    internal           SDK/server internal error; the client may be corrupt
    permission_denied  security rules or credentials, not retried
    not_found          project or document missing, not retried
    deadline           timeout, transient
    offline            no network path at all
    unknown            anything else
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

from google.api_core import exceptions as google_exceptions

logger = logging.getLogger(__name__)

FirestoreErrorKind = Literal[
    "unavailable",
    "aborted",
    "internal",
    "permission_denied",
    "not_found",
    "deadline",
    "offline",
    "unknown",
]

MAX_FIREBASE_ERRORS = 3

_OFFLINE_MARKERS = ("offline", "failed to connect", "network is unreachable", "connection refused")
_INTERNAL_MARKERS = ("internal assertion failed", "unexpected state")

_USER_MESSAGES: Dict[str, str] = {
    "permission_denied": "Akses ditolak. Periksa konfigurasi security rules Firestore.",
    "unavailable": "Layanan database tidak tersedia. Coba lagi nanti.",
    "not_found": "Database tidak ditemukan. Periksa konfigurasi project.",
    "offline": "Perangkat sedang offline. Perubahan akan disimpan saat koneksi kembali.",
    "deadline": "Koneksi ke database terlalu lama. Coba lagi nanti.",
}
_DEFAULT_USER_MESSAGE = (
    "Terjadi kesalahan pada database. Aplikasi akan tetap berjalan tanpa sinkronisasi data."
)


def classify_firestore_error(error: BaseException) -> FirestoreErrorKind:
    """Map an exception raised by the Firestore SDK (or our wrappers) to a kind."""
    message = str(error).lower()

    if isinstance(error, google_exceptions.ServiceUnavailable):
        return "offline" if any(marker in message for marker in _OFFLINE_MARKERS) else "unavailable"
    if isinstance(error, google_exceptions.Aborted):
        return "aborted"
    if isinstance(error, google_exceptions.InternalServerError):
        return "internal"
    if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Forbidden)):
        return "permission_denied"
    if isinstance(error, google_exceptions.NotFound):
        return "not_found"
    if isinstance(error, (google_exceptions.DeadlineExceeded, asyncio.TimeoutError, TimeoutError)):
        return "deadline"
    if isinstance(error, ConnectionError):
        return "offline"

    if any(marker in message for marker in _INTERNAL_MARKERS):
        return "internal"
    if any(marker in message for marker in _OFFLINE_MARKERS):
        return "offline"
    return "unknown"


def is_offline_error(error: BaseException) -> bool:
    """True for failures where queueing the write for later makes sense."""
    return classify_firestore_error(error) in ("offline", "unavailable")


def handle_firestore_error(error: BaseException, operation: str = "Firestore operation") -> str:
    """
    Log a Firestore failure and return an Indonesian message for the user.

    Args:
        error: The exception raised
        operation: Human-readable name of what was attempted

    Returns:
        Message safe to show in the UI
    """
    kind = classify_firestore_error(error)
    logger.error(f"{operation} failed ({kind}): {error}")
    return _USER_MESSAGES.get(kind, _DEFAULT_USER_MESSAGE)


class FirestoreErrorMonitor:
    """
    Count consecutive Firestore failures.

    After max_errors consecutive failures the monitor reports fallback mode,
    in which recommendation writes shrink to a minimal summary update. A
    successful write resets the streak; the per-kind totals are kept until
    reset() is called.
    """

    def __init__(self, max_errors: int = MAX_FIREBASE_ERRORS):
        self.max_errors = max_errors
        self.error_count = 0
        self.by_kind: Dict[str, int] = {}
        self.last_error_kind: Optional[str] = None
        self.last_error_message: Optional[str] = None
        self.last_error_at: Optional[datetime] = None
        self._recovery_listeners: List[Callable[[], None]] = []

    @property
    def fallback_mode(self) -> bool:
        return self.error_count >= self.max_errors

    def record_error(self, error: BaseException) -> FirestoreErrorKind:
        kind = classify_firestore_error(error)
        self.error_count += 1
        self.by_kind[kind] = self.by_kind.get(kind, 0) + 1
        self.last_error_kind = kind
        self.last_error_message = str(error) or type(error).__name__
        self.last_error_at = datetime.now(timezone.utc)

        logger.warning(f"Firebase error #{self.error_count} ({kind}): {self.last_error_message}")
        if self.fallback_mode:
            logger.error("Too many consecutive Firebase errors, recommendation writes use fallback mode")
        return kind

    def record_success(self) -> None:
        was_fallback = self.fallback_mode
        if self.error_count:
            logger.info(f"Firestore write succeeded after {self.error_count} consecutive errors")
        self.error_count = 0
        if was_fallback:
            self._notify_recovered()

    def reset(self) -> None:
        was_fallback = self.fallback_mode
        self.error_count = 0
        self.by_kind = {}
        self.last_error_kind = None
        self.last_error_message = None
        self.last_error_at = None
        logger.info("Firebase error count reset")
        if was_fallback:
            self._notify_recovered()

    def add_recovery_listener(self, listener: Callable[[], None]) -> None:
        """Call listener whenever the monitor leaves fallback mode."""
        self._recovery_listeners.append(listener)

    def remove_recovery_listener(self, listener: Callable[[], None]) -> None:
        self._recovery_listeners = [item for item in self._recovery_listeners if item != listener]

    def _notify_recovered(self) -> None:
        logger.info("Leaving fallback mode, full recommendation writes resume")
        for listener in list(self._recovery_listeners):
            try:
                listener()
            except Exception as e:
                logger.warning(f"Error in fallback recovery listener: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "error_count": self.error_count,
            "max_errors": self.max_errors,
            "fallback_mode": self.fallback_mode,
            "last_error_kind": self.last_error_kind,
            "last_error_message": self.last_error_message,
            "last_error_at": self.last_error_at,
            "by_kind": dict(self.by_kind),
        }


error_monitor = FirestoreErrorMonitor()
