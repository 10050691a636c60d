"""
Firestore client factory and connection state.

The backend talks to Firestore through the Firebase Admin SDK with a service
account (or application default credentials). Per-user isolation is enforced
in code: every document path is derived from the uid verified in
sinak/auth/dependencies.py, never from request bodies.

Connection state is process-wide:
- initialized: the Firebase app and Firestore client exist
- healthy: the last probe or operation did not fail at the transport level
- retry_count / max_retries: manual reconnection attempts
- last_error: message of the last connection-level failure

When FIRESTORE_EMULATOR_HOST is set the client talks to the local emulator.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, firestore

from sinak.config import settings

logger = logging.getLogger(__name__)

MAX_CONNECTION_RETRIES = 3

# Document read by connectivity probes; it does not need to exist
PROBE_COLLECTION = "_connection_test"
PROBE_DOCUMENT = "ping"


@dataclass
class FirestoreConnectionState:
    initialized: bool = False
    healthy: bool = False
    retry_count: int = 0
    max_retries: int = MAX_CONNECTION_RETRIES
    last_error: Optional[str] = None


_state = FirestoreConnectionState()
_firestore_client = None

# Serializes reconnects; recreated when a new event loop uses it
_reconnect_lock: Optional[asyncio.Lock] = None
_reconnect_lock_loop: Optional[asyncio.AbstractEventLoop] = None


def _initialize_firebase_app() -> None:
    """Initialize the default Firebase app once per process."""
    if firebase_admin._apps:
        return

    if settings.FIRESTORE_EMULATOR_HOST:
        # google-cloud-firestore reads the emulator host from the environment
        os.environ["FIRESTORE_EMULATOR_HOST"] = settings.FIRESTORE_EMULATOR_HOST
        logger.info(f"Using Firestore emulator at {settings.FIRESTORE_EMULATOR_HOST}")

    if settings.FIREBASE_CREDENTIALS_PATH:
        cred = credentials.Certificate(settings.FIREBASE_CREDENTIALS_PATH)
    else:
        cred = credentials.ApplicationDefault()

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    firebase_admin.initialize_app(cred, options)
    logger.info(f"Firebase app initialized (project={settings.FIREBASE_PROJECT_ID or 'default'})")


def get_firestore_client():
    """
    Get the process-wide Firestore client, creating it on first use.

    Returns:
        google.cloud.firestore.Client

    Raises:
        Exception: Whatever the Admin SDK raises when credentials or the
            project are misconfigured. The connection is marked unhealthy.
    """
    global _firestore_client

    if _firestore_client is not None:
        return _firestore_client

    try:
        _initialize_firebase_app()
        _firestore_client = firestore.client()
    except Exception as e:
        logger.error(f"Failed to initialize Firestore client: {e}")
        mark_firestore_unhealthy(e)
        raise

    _state.initialized = True
    _state.healthy = True
    _state.last_error = None
    logger.info("Firestore client initialized")
    return _firestore_client


def is_firestore_healthy() -> bool:
    return _state.initialized and _state.healthy


def mark_firestore_unhealthy(error: Optional[BaseException] = None) -> None:
    """Record a connection-level failure."""
    _state.healthy = False
    if error is not None:
        _state.last_error = str(error) or type(error).__name__
    logger.warning(f"Firestore marked unhealthy: {_state.last_error}")


def mark_firestore_healthy() -> None:
    if not _state.healthy:
        logger.info("Firestore connection healthy again")
    _state.healthy = True
    _state.last_error = None


def reset_firestore_client() -> None:
    """
    Drop the cached client and the Firebase app.

    The next get_firestore_client() call builds both again. Used after
    repeated internal errors, where the client state itself is suspect.
    """
    global _firestore_client

    _firestore_client = None
    _state.initialized = False
    _state.healthy = False
    if firebase_admin._apps:
        try:
            firebase_admin.delete_app(firebase_admin.get_app())
        except ValueError as e:
            logger.debug(f"Firebase app already removed: {e}")
    logger.warning("Firestore client reset")


def probe_firestore(client) -> None:
    """Blocking read of the probe document; raises on transport failure."""
    client.collection(PROBE_COLLECTION).document(PROBE_DOCUMENT).get()


def _get_reconnect_lock() -> asyncio.Lock:
    global _reconnect_lock, _reconnect_lock_loop

    loop = asyncio.get_running_loop()
    if _reconnect_lock is None or _reconnect_lock_loop is not loop:
        _reconnect_lock = asyncio.Lock()
        _reconnect_lock_loop = loop
    return _reconnect_lock


async def retry_firestore_connection() -> bool:
    """
    Rebuild the client and probe it, up to MAX_CONNECTION_RETRIES times.

    The delay between probes grows linearly (1s, 2s, ...). Only one caller
    reconnects at a time; a caller that waited behind another returns as
    soon as that reconnect left the client healthy.

    Returns:
        True when a probe succeeded
    """
    lock = _get_reconnect_lock()
    waited = lock.locked()
    async with lock:
        if waited and is_firestore_healthy():
            logger.info("Firestore reconnected by a concurrent caller")
            return True
        return await _reconnect()


async def _reconnect() -> bool:
    logger.info("Manually retrying Firestore connection...")
    _state.retry_count = 0

    for attempt in range(1, _state.max_retries + 1):
        _state.retry_count = attempt
        try:
            reset_firestore_client()
            client = get_firestore_client()
            await asyncio.wait_for(
                asyncio.to_thread(probe_firestore, client),
                timeout=settings.FIRESTORE_READ_TIMEOUT,
            )
        except Exception as e:
            mark_firestore_unhealthy(e)
            logger.warning(f"Firestore reconnection attempt {attempt}/{_state.max_retries} failed: {e}")
            if attempt < _state.max_retries:
                await asyncio.sleep(attempt)
            continue

        mark_firestore_healthy()
        logger.info(f"Firestore reconnected on attempt {attempt}")
        return True

    return False


def get_firestore_status() -> Dict[str, Any]:
    return {
        "initialized": _state.initialized,
        "healthy": is_firestore_healthy(),
        "retry_count": _state.retry_count,
        "max_retries": _state.max_retries,
        "can_retry": _state.retry_count < _state.max_retries,
        "emulator": bool(settings.FIRESTORE_EMULATOR_HOST),
        "last_error": _state.last_error,
    }
