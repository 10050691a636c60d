"""
User document API endpoints.

Provides endpoints for the authenticated user's document at users/{uid}:
business profile, UI preferences and usage analytics.

Writes never fail just because Firestore is unreachable: they are queued and
the response reports status QUEUED. Only non-transient failures (e.g.
permission denied) are returned as errors.
"""

import logging
from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from sinak.auth.dependencies import AuthenticatedUser, get_authenticated_user
from sinak.config import settings
from sinak.db.client import get_firestore_client
from sinak.schemas.profile import (
    UserDocumentCreateRequest,
    UserDocumentResponse,
    UserDocumentUpdateRequest,
    UserDocumentWriteResponse,
)
from sinak.services.firestore_errors import handle_firestore_error
from sinak.services.firestore_service import (
    WriteOutcome,
    create_user_document,
    get_user_document,
    update_user_document,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


def get_db():
    """
    FastAPI dependency returning the Firestore client.

    Returns None when Firestore is disabled; services then skip storage.

    Raises:
        HTTPException: 503 if the client cannot be created
    """
    if settings.FIRESTORE_DISABLED:
        return None
    try:
        return get_firestore_client()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "database_unavailable",
                "details": handle_firestore_error(e, "get_firestore_client")
            }
        )


def _write_response(outcome: WriteOutcome) -> UserDocumentWriteResponse:
    if not outcome.ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "write_failed", "details": outcome.message}
        )
    return UserDocumentWriteResponse(status=outcome.status.upper(), message=outcome.message)


def _to_response(uid: str, document: Dict[str, Any]) -> UserDocumentResponse:
    return UserDocumentResponse(
        uid=document.get("uid") or uid,
        email=document.get("email"),
        business_name=document.get("business_name"),
        business_profile=document.get("business_profile") or {},
        preferences=document.get("preferences") or {},
        analytics=document.get("analytics") or {},
        is_active=document.get("is_active", True),
        onboarding_completed=bool(document.get("onboarding_completed", False)),
        recommendations_count=document.get("recommendations_count") or 0,
    )


@router.get(
    "",
    response_model=UserDocumentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get user document",
    description="""
    Retrieve the authenticated user's document.

    This endpoint:
    - Returns the business profile, preferences and analytics
    - Only reads users/{uid} for the uid in the verified token
    - Returns 404 when the document does not exist or Firestore is unreachable

    Security:
    - Requires valid Authorization Bearer token (Firebase ID token)
    """
)
async def get_profile(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    client=Depends(get_db),
) -> UserDocumentResponse:
    logger.info(f"Fetching user document for user {auth_user.user_id}")

    document = await get_user_document(client, auth_user.user_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "details": "User document not found for this user"
            }
        )

    return _to_response(auth_user.user_id, document)


@router.post(
    "",
    response_model=UserDocumentWriteResponse,
    status_code=status.HTTP_200_OK,
    summary="Create or upsert user document",
    description="""
    Create the authenticated user's document, or merge into it if it exists.

    Called by the client after sign-in. New documents get default business
    profile, preferences and analytics blocks. For existing documents the
    nested blocks are merged field by field and analytics.last_login_at is
    refreshed.

    The email defaults to the token's email claim.
    """
)
async def create_profile(
    request: UserDocumentCreateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    client=Depends(get_db),
) -> UserDocumentWriteResponse:
    logger.info(f"Upserting user document for user {auth_user.user_id}")

    data = request.model_dump(exclude_none=True)
    data.setdefault("email", auth_user.email)

    outcome = await create_user_document(client, auth_user.user_id, data)
    return _write_response(outcome)


@router.patch(
    "",
    response_model=UserDocumentWriteResponse,
    status_code=status.HTTP_200_OK,
    summary="Update user document",
    description="""
    Update the authenticated user's document.

    Only provided fields are updated; business_profile and preferences are
    merged with the stored values. The document is created if missing.
    """
)
async def update_profile(
    request: UserDocumentUpdateRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    client=Depends(get_db),
) -> UserDocumentWriteResponse:
    updates = request.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "invalid_request",
                "details": "At least one field must be provided for update"
            }
        )

    logger.info(f"Updating user document for user {auth_user.user_id}: {sorted(updates)}")
    outcome = await update_user_document(client, auth_user.user_id, updates)
    return _write_response(outcome)
