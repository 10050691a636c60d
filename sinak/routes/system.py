"""
System diagnostics API endpoints.

Expose the Firestore connection state, the offline write queue and the error
monitor, and allow a manual reconnect. Useful when a user reports that their
progress is not being saved.

All endpoints require authentication.
"""

import logging

from fastapi import APIRouter, Depends, status

from sinak.auth.dependencies import AuthenticatedUser, get_authenticated_user
from sinak.db.client import get_firestore_client, get_firestore_status, retry_firestore_connection
from sinak.schemas.system import (
    ConnectivityResponse,
    ErrorStatsResponse,
    FirestoreStatusResponse,
    OfflineStatusResponse,
    ReconnectResponse,
)
from sinak.services.firestore_errors import classify_firestore_error, handle_firestore_error
from sinak.services.firestore_service import (
    get_firebase_error_stats,
    reset_firebase_error_count,
    test_firestore_connectivity,
    transaction_guard,
)
from sinak.services.offline_handler import offline_handler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/system", tags=["system"])


def _iso(value):
    return value.isoformat() if value is not None else None


@router.get(
    "/firestore",
    response_model=FirestoreStatusResponse,
    summary="Firestore connection state",
)
async def get_firestore_state(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> FirestoreStatusResponse:
    return FirestoreStatusResponse(
        **get_firestore_status(),
        transactions=transaction_guard.get_state(),
    )


@router.get(
    "/offline",
    response_model=OfflineStatusResponse,
    summary="Offline queue state",
)
async def get_offline_state(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> OfflineStatusResponse:
    state = offline_handler.get_status()
    state["last_online_at"] = _iso(state["last_online_at"])
    state["last_offline_at"] = _iso(state["last_offline_at"])
    return OfflineStatusResponse(**state)


@router.post(
    "/reconnect",
    response_model=ReconnectResponse,
    status_code=status.HTTP_200_OK,
    summary="Reconnect to Firestore",
    description="""
    Rebuilds the Firestore client and probes it. When the probe succeeds the
    offline handler goes online and replays its queued writes.
    """
)
async def reconnect(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> ReconnectResponse:
    logger.info(f"Manual reconnect requested by user_id={auth_user.user_id}")

    if not await retry_firestore_connection():
        return ReconnectResponse(reconnected=False)

    offline_handler.mark_online()
    replayed = await offline_handler.process_queue()
    return ReconnectResponse(reconnected=True, replayed=replayed)


@router.get(
    "/errors",
    response_model=ErrorStatsResponse,
    summary="Firestore error statistics",
)
async def get_error_stats(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> ErrorStatsResponse:
    stats = get_firebase_error_stats()
    stats["last_error_at"] = _iso(stats["last_error_at"])
    return ErrorStatsResponse(**stats)


@router.delete(
    "/errors",
    response_model=ErrorStatsResponse,
    summary="Reset Firestore error statistics",
    description="Clears the error streak, which also leaves fallback mode.",
)
async def reset_error_stats(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> ErrorStatsResponse:
    logger.info(f"Error stats reset by user_id={auth_user.user_id}")
    reset_firebase_error_count()
    stats = get_firebase_error_stats()
    stats["last_error_at"] = _iso(stats["last_error_at"])
    return ErrorStatsResponse(**stats)


@router.get(
    "/connectivity",
    response_model=ConnectivityResponse,
    summary="Probe Firestore",
)
async def check_connectivity(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
) -> ConnectivityResponse:
    try:
        client = get_firestore_client()
    except Exception as e:
        return ConnectivityResponse(
            connected=False,
            error_kind=classify_firestore_error(e),
            message=handle_firestore_error(e, "get_firestore_client"),
        )
    return ConnectivityResponse(**await test_firestore_connectivity(client))
