"""
FastAPI routes for the recommendation system.

This module exposes HTTP endpoints for generating recommendations and for
tracking their implementation. All endpoints require authentication via a
Firebase ID token.

Endpoints:
- POST /recommendations/generate: Generate (AI or rule-based) and store
- GET  /recommendations: List with filters and sorting
- GET  /recommendations/stats, /next-actions, /bookmarks/stats
- GET|POST /recommendations/bookmarks/collections, DELETE .../{collection_id}
- POST /recommendations/save: Flush pending changes to Firestore
- GET  /recommendations/{id} and lifecycle actions under it
- Step, checkpoint and action item actions under /recommendations/{id}

Mutations are applied to the user's in-memory state and saved to Firestore
with a short debounce, so rapid checkpoint toggles produce a single write.
"""

import logging
from typing import Callable, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from sinak.auth.dependencies import AuthenticatedUser, get_authenticated_user
from sinak.schemas.recommendations import (
    BookmarkCollection,
    BookmarkCollectionCreateRequest,
    BookmarkCollectionDeleteResponse,
    BookmarkRequest,
    BookmarkStatsResponse,
    CompleteRecommendationRequest,
    GenerateRecommendationsRequest,
    GenerateRecommendationsResponse,
    NextActionsResponse,
    Priority,
    ProgressStatsResponse,
    ProgressUpdateRequest,
    Recommendation,
    RecommendationActionResponse,
    RecommendationCategory,
    RecommendationListResponse,
    RecommendationStatus,
    SaveResponse,
    SkipRequest,
    StepCompleteRequest,
    StepNotesRequest,
)
from sinak.services import analytics_service, progress_service
from sinak.services.progress_service import (
    ProgressError,
    ProgressStepNotFoundError,
    RecommendationNotFoundError,
)
from sinak.services.recommendation_service import generate_recommendations
from sinak.services.tracking_service import (
    BookmarkCollectionError,
    BookmarkCollectionNotFoundError,
    RecommendationTracker,
    get_tracker,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/recommendations",
    tags=["recommendations"]
)

_SAVE_STATUS = {
    "written": "SAVED",
    "queued": "QUEUED",
    "degraded": "DEGRADED",
    "skipped": "SKIPPED",
    "failed": "FAILED",
}


def _not_found(error: LookupError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "not_found", "details": str(error)}
    )


async def _apply(
    tracker: RecommendationTracker,
    user_id: str,
    recommendation_id: str,
    mutation: Callable[[Recommendation], Recommendation],
    message: str,
) -> RecommendationActionResponse:
    """Run a lifecycle mutation and map domain errors to HTTP errors."""
    try:
        recommendation = await tracker.mutate(user_id, recommendation_id, mutation)
    except (RecommendationNotFoundError, ProgressStepNotFoundError) as e:
        logger.warning(f"Lookup failed for user_id={user_id}: {e}")
        raise _not_found(e)
    except ProgressError as e:
        logger.warning(f"Rejected transition for user_id={user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "invalid_transition", "details": str(e)}
        )

    return RecommendationActionResponse(recommendation=recommendation, message=message)


# ============================================================================
# GENERATION
# ============================================================================

@router.post(
    "/generate",
    response_model=GenerateRecommendationsResponse,
    status_code=200,
    summary="Generate business recommendations",
    description="""
    Generates recommendations for the authenticated user's business and
    replaces their stored list.

    **Authentication:** Required (Bearer token)

    **Frontend Flow:**
    1. User completes the self-diagnosis questionnaire
    2. POST /recommendations/generate with business_profile and diagnosis
    3. Display the returned recommendations

    **Architecture:**
    Layered generation that never fails outright:
    - bypass: canned recommendations (AI_BYPASS_MODE)
    - ai: Gemini with retries and strict JSON parsing
    - ai_fallback: one more Gemini call whose output is salvaged
    - rule_based: stage catalog plus financial literacy

    **Persistence:**
    The list is saved immediately. `saved` is false when Firestore was
    unreachable (the write is queued) or disabled.
    """
)
async def generate_recommendations_endpoint(
    request: GenerateRecommendationsRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> GenerateRecommendationsResponse:
    logger.info(
        f"POST /recommendations/generate called by user_id={auth_user.user_id}, "
        f"stage={request.diagnosis.current_stage or request.business_profile.business_stage}"
    )

    # The verified uid always wins over anything in the body
    profile = request.business_profile.model_copy(update={"user_id": auth_user.user_id})

    result = await generate_recommendations(profile, request.diagnosis)
    outcome = await tracker.replace_recommendations(auth_user.user_id, result.recommendations)

    logger.info(
        f"Returning {len(result.recommendations)} recommendations "
        f"(source={result.source}, save={outcome.status})"
    )
    return GenerateRecommendationsResponse(
        source=result.source,
        count=len(result.recommendations),
        recommendations=result.recommendations,
        saved=outcome.status == "written",
    )


# ============================================================================
# QUERIES
# ============================================================================

@router.get(
    "",
    response_model=RecommendationListResponse,
    summary="List recommendations",
    description="""
    Lists the user's recommendations.

    All filters are optional and combine with AND. `sort_by=priority` orders
    by priority weight (critical first), newest first within a priority.
    """
)
async def list_recommendations(
    category: Optional[RecommendationCategory] = Query(None),
    priority: Optional[Priority] = Query(None),
    status_filter: Optional[RecommendationStatus] = Query(None, alias="status"),
    completed: Optional[bool] = Query(None),
    bookmarked: Optional[bool] = Query(None),
    collection: Optional[str] = Query(None, max_length=100),
    sort_by: Literal["priority", "date", "category", "progress"] = Query("priority"),
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationListResponse:
    logger.info(f"GET /recommendations called by user_id={auth_user.user_id}")

    recommendations = await tracker.list_recommendations(auth_user.user_id)
    filtered = analytics_service.filter_recommendations(
        recommendations,
        category=category,
        priority=priority,
        status=status_filter,
        completed=completed,
        bookmarked=bookmarked,
        collection=collection,
    )
    ordered = analytics_service.sort_recommendations(filtered, by=sort_by)
    return RecommendationListResponse(count=len(ordered), recommendations=ordered)


@router.get(
    "/stats",
    response_model=ProgressStatsResponse,
    summary="Progress statistics",
)
async def get_progress_stats(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> ProgressStatsResponse:
    recommendations = await tracker.list_recommendations(auth_user.user_id)
    return analytics_service.progress_stats(recommendations)


@router.get(
    "/next-actions",
    response_model=NextActionsResponse,
    summary="Suggested next actions",
    description="""
    Current steps of in-progress recommendations first, then open action
    items; each group ordered by priority and then deadline.
    """
)
async def get_next_actions(
    limit: int = Query(5, ge=1, le=50),
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> NextActionsResponse:
    recommendations = await tracker.list_recommendations(auth_user.user_id)
    return NextActionsResponse(actions=analytics_service.next_actions(recommendations, limit=limit))


@router.post(
    "/save",
    response_model=SaveResponse,
    summary="Save pending changes now",
    description="Flushes the debounced save for the user's recommendations.",
)
async def save_recommendations(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> SaveResponse:
    outcome = await tracker.force_save(auth_user.user_id)
    return SaveResponse(status=_SAVE_STATUS[outcome.status], message=outcome.message)


# ============================================================================
# BOOKMARK COLLECTIONS
# ============================================================================

@router.get(
    "/bookmarks/stats",
    response_model=BookmarkStatsResponse,
    summary="Bookmark statistics",
)
async def get_bookmark_stats(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> BookmarkStatsResponse:
    recommendations = await tracker.list_recommendations(auth_user.user_id)
    collections = await tracker.list_collections(auth_user.user_id)
    return BookmarkStatsResponse(**analytics_service.bookmark_stats(recommendations, collections))


@router.get(
    "/bookmarks/collections",
    response_model=List[BookmarkCollection],
    summary="List bookmark collections",
)
async def list_bookmark_collections(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> List[BookmarkCollection]:
    return await tracker.list_collections(auth_user.user_id)


@router.post(
    "/bookmarks/collections",
    response_model=BookmarkCollection,
    status_code=status.HTTP_201_CREATED,
    summary="Create bookmark collection",
)
async def create_bookmark_collection(
    request: BookmarkCollectionCreateRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> BookmarkCollection:
    try:
        return await tracker.create_collection(auth_user.user_id, request.name, request.description)
    except BookmarkCollectionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_collection", "details": str(e)}
        )


@router.delete(
    "/bookmarks/collections/{collection_id}",
    response_model=BookmarkCollectionDeleteResponse,
    summary="Delete bookmark collection",
    description="""
    Deletes a bookmark collection. Recommendations bookmarked in it move to
    the default collection. The default collection cannot be deleted.
    """
)
async def delete_bookmark_collection(
    collection_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> BookmarkCollectionDeleteResponse:
    try:
        moved = await tracker.delete_collection(auth_user.user_id, collection_id)
    except BookmarkCollectionNotFoundError as e:
        raise _not_found(e)
    except BookmarkCollectionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_collection", "details": str(e)}
        )
    return BookmarkCollectionDeleteResponse(deleted_id=collection_id, moved_count=moved)


# ============================================================================
# SINGLE RECOMMENDATION
# ============================================================================

@router.get(
    "/{recommendation_id}",
    response_model=Recommendation,
    summary="Get recommendation",
    description="Returns one recommendation and counts the view.",
)
async def get_recommendation(
    recommendation_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> Recommendation:
    try:
        return await tracker.get_recommendation(auth_user.user_id, recommendation_id)
    except RecommendationNotFoundError as e:
        raise _not_found(e)


@router.post("/{recommendation_id}/start", response_model=RecommendationActionResponse)
async def start_recommendation(
    recommendation_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        progress_service.start_recommendation,
        "Implementasi rekomendasi dimulai",
    )


@router.post("/{recommendation_id}/progress", response_model=RecommendationActionResponse)
async def update_progress(
    recommendation_id: str,
    request: ProgressUpdateRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.update_progress(r, request.progress, request.notes),
        f"Progress diperbarui ke {request.progress}%",
    )


@router.post("/{recommendation_id}/complete", response_model=RecommendationActionResponse)
async def complete_recommendation(
    recommendation_id: str,
    request: CompleteRecommendationRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.complete_recommendation(
            r,
            notes=request.notes,
            rating=request.rating,
            feedback=request.feedback,
            implementation_difficulty=request.implementation_difficulty,
            actual_impact=request.actual_impact,
        ),
        "Selamat! Rekomendasi berhasil diselesaikan",
    )


@router.post("/{recommendation_id}/restart", response_model=RecommendationActionResponse)
async def restart_recommendation(
    recommendation_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        progress_service.restart_recommendation,
        "Rekomendasi dimulai ulang",
    )


@router.post("/{recommendation_id}/skip", response_model=RecommendationActionResponse)
async def skip_recommendation(
    recommendation_id: str,
    request: SkipRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.skip_recommendation(r, request.reason),
        "Rekomendasi dilewati",
    )


@router.post(
    "/{recommendation_id}/bookmark",
    response_model=RecommendationActionResponse,
    description="Toggles the bookmark; a new bookmark goes into the given collection.",
)
async def toggle_bookmark(
    recommendation_id: str,
    request: BookmarkRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    try:
        collection = await tracker.get_collection(auth_user.user_id, request.collection)
    except BookmarkCollectionNotFoundError as e:
        raise _not_found(e)

    response = await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.toggle_bookmark(r, collection.id, collection.name),
        "",
    )
    response.message = (
        f"Disimpan ke koleksi {collection.name}"
        if response.recommendation.is_bookmarked
        else "Dihapus dari bookmark"
    )
    return response


@router.delete("/{recommendation_id}/bookmark", response_model=RecommendationActionResponse)
async def remove_bookmark(
    recommendation_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        progress_service.remove_bookmark,
        "Dihapus dari semua bookmark",
    )


# ============================================================================
# STEPS, CHECKPOINTS AND ACTION ITEMS
# ============================================================================

@router.post("/{recommendation_id}/steps/{step_id}/start", response_model=RecommendationActionResponse)
async def start_step(
    recommendation_id: str,
    step_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.start_progress_step(r, step_id),
        "Langkah dimulai",
    )


@router.post("/{recommendation_id}/steps/{step_id}/complete", response_model=RecommendationActionResponse)
async def complete_step(
    recommendation_id: str,
    step_id: str,
    request: StepCompleteRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.complete_progress_step(r, step_id, request.notes),
        "Langkah selesai",
    )


@router.post(
    "/{recommendation_id}/steps/{step_id}/skip",
    response_model=RecommendationActionResponse,
    description="Skips an optional step. Required steps return 409.",
)
async def skip_step(
    recommendation_id: str,
    step_id: str,
    request: SkipRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.skip_progress_step(r, step_id, request.reason),
        "Langkah dilewati",
    )


@router.post("/{recommendation_id}/steps/{step_id}/notes", response_model=RecommendationActionResponse)
async def save_step_notes(
    recommendation_id: str,
    step_id: str,
    request: StepNotesRequest,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.save_step_notes(r, step_id, request.notes),
        "Catatan disimpan",
    )


@router.post(
    "/{recommendation_id}/steps/{step_id}/checkpoints/{checkpoint_id}/toggle",
    response_model=RecommendationActionResponse,
)
async def toggle_checkpoint(
    recommendation_id: str,
    step_id: str,
    checkpoint_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.toggle_step_checkpoint(r, step_id, checkpoint_id),
        "Checkpoint diperbarui",
    )


@router.post(
    "/{recommendation_id}/action-items/{item_id}/complete",
    response_model=RecommendationActionResponse,
)
async def complete_action_item(
    recommendation_id: str,
    item_id: str,
    auth_user: AuthenticatedUser = Depends(get_authenticated_user),
    tracker: RecommendationTracker = Depends(get_tracker),
) -> RecommendationActionResponse:
    return await _apply(
        tracker, auth_user.user_id, recommendation_id,
        lambda r: progress_service.complete_action_item(r, item_id),
        "Aksi selesai",
    )
