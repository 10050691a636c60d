"""
Pydantic schemas for the recommendation system.

Two groups of models live here:
- Stored records: Recommendation and its nested ProgressStep, Milestone,
  Checkpoint, ActionItem and Resource records. These are persisted on the
  user document with model_dump(mode="json").
- Request/response contracts for the /recommendations endpoints.

Nested records reference each other only by id or by position
(Milestone.required_steps holds indices into the parent's progress_steps).
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from sinak.schemas.profile import BusinessProfile, DiagnosisData

BusinessStage = Literal["existence", "survival", "success", "takeoff", "resource_maturity"]

RecommendationCategory = Literal[
    "financial_management",
    "marketing_sales",
    "operations",
    "human_resources",
    "technology",
    "legal_compliance",
    "growth_strategy",
    "financial_literacy",
]

Priority = Literal["critical", "high", "medium", "low"]

RecommendationStatus = Literal["pending", "in_progress", "completed", "skipped"]

StepStatus = Literal["pending", "in_progress", "completed", "skipped"]

ResourceType = Literal["article", "video", "tool", "course", "template", "website", "guide"]

DifficultyLevel = Literal["easy", "medium", "hard"]

GenerationSource = Literal["bypass", "ai", "ai_fallback", "rule_based"]


def new_id() -> str:
    """Generate an id for a stored record."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# STORED RECORDS
# ============================================================================

class Resource(BaseModel):
    """Learning resource attached to a recommendation, step or action item."""
    id: str = Field(default_factory=new_id)
    title: str = Field("Resource")
    description: str = Field("Deskripsi resource")
    type: ResourceType = Field("article")
    url: str = Field("#", description="Resource URL, '#' when not yet available")
    is_external: bool = Field(False)
    language: str = Field("id")
    difficulty: str = Field("beginner")


class Checkpoint(BaseModel):
    """Sub-goal inside a progress step."""
    id: str = Field(default_factory=new_id)
    step_id: Optional[str] = Field(None, description="Id of the owning progress step")
    title: str
    description: str = Field("")
    is_completed: bool = Field(False)
    completed_at: Optional[datetime] = Field(None)
    order: int = Field(0)


class ProgressStep(BaseModel):
    """One ordered implementation step of a recommendation."""
    id: str = Field(default_factory=new_id)
    title: str
    description: str = Field("")
    order: int = Field(0)
    status: StepStatus = Field("pending")
    is_required: bool = Field(True, description="Required steps cannot be skipped")
    estimated_duration: str = Field("1-2 hari")
    resources: List[Resource] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    notes: str = Field("")
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    checkpoint_progress: int = Field(0, ge=0, le=100)


class Milestone(BaseModel):
    """Achievement unlocked once the referenced steps are completed."""
    id: str = Field(default_factory=new_id)
    title: str
    description: str = Field("")
    target_date: Optional[str] = Field(None, description="Target date (YYYY-MM-DD)")
    is_completed: bool = Field(False)
    completed_at: Optional[datetime] = Field(None)
    required_steps: List[int] = Field(
        default_factory=list,
        description="Indices into the parent recommendation's progress_steps"
    )
    reward: str = Field("Pencapaian penting")
    icon: str = Field("🎯")


class ActionItem(BaseModel):
    """Concrete task derived from a recommendation."""
    id: str = Field(default_factory=new_id)
    title: str = Field("Aksi diperlukan")
    description: str = Field("")
    priority: Priority = Field("medium")
    estimated_hours: float = Field(4, ge=0)
    deadline: Optional[str] = Field(None, description="ISO date or datetime")
    is_completed: bool = Field(False)
    completed_at: Optional[datetime] = Field(None)
    resources: List[Resource] = Field(default_factory=list)


class CompletionHistoryEntry(BaseModel):
    """Append-only log entry describing a lifecycle event."""
    action: str = Field(..., examples=["started", "progress_updated", "milestone_achieved"])
    timestamp: datetime = Field(default_factory=utc_now)
    details: Dict[str, Any] = Field(default_factory=dict)


class Recommendation(BaseModel):
    """
    A business recommendation and its tracking state.

    Created by the generation layer (AI or rule-based) and mutated by user
    actions (start, progress, step completion, bookmarks). Persisted as part
    of the user's recommendation list; last write wins.
    """
    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = Field(None)
    title: str
    description: str
    category: RecommendationCategory = Field("growth_strategy")
    priority: Priority = Field("medium")
    business_stage: Optional[str] = Field(None)

    action_items: List[ActionItem] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    estimated_timeframe: str = Field("2-4 minggu")
    expected_impact: str = Field("Dampak positif pada bisnis")
    reasoning: str = Field("Rekomendasi berdasarkan analisis AI")
    estimated_cost: str = Field("Biaya akan ditentukan")
    difficulty_level: DifficultyLevel = Field("medium")
    tags: List[str] = Field(default_factory=list)

    # Lifecycle
    status: RecommendationStatus = Field("pending")
    is_completed: bool = Field(False)
    started_at: Optional[datetime] = Field(None)
    completed_at: Optional[datetime] = Field(None)
    progress: int = Field(0, ge=0, le=100)

    # Bookmarks
    is_bookmarked: bool = Field(False)
    bookmarked_at: Optional[datetime] = Field(None)
    bookmark_collection: Optional[str] = Field(None)

    # Step tracking
    progress_steps: List[ProgressStep] = Field(default_factory=list)
    current_step: int = Field(0, ge=0)
    total_steps: int = Field(0, ge=0)
    milestones: List[Milestone] = Field(default_factory=list)
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    completion_history: List[CompletionHistoryEntry] = Field(default_factory=list)

    # Feedback
    completion_notes: str = Field("")
    user_rating: Optional[int] = Field(None, ge=1, le=5)
    user_feedback: str = Field("")
    implementation_difficulty: Optional[int] = Field(None, ge=1, le=5)
    actual_impact: Optional[int] = Field(None, ge=1, le=5)

    # Analytics
    view_count: int = Field(0, ge=0)
    last_viewed_at: Optional[datetime] = Field(None)
    estimated_completion_date: Optional[str] = Field(None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class BookmarkCollection(BaseModel):
    """Named group of bookmarked recommendations."""
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("")
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# REQUEST MODELS
# ============================================================================

class GenerateRecommendationsRequest(BaseModel):
    """
    Request to generate recommendations for the authenticated user's business.

    The diagnosis result comes from the client-side questionnaire. Generation
    never fails outright: when Gemini is unavailable or its output cannot be
    salvaged, rule-based recommendations for the business stage are returned.
    """
    business_profile: BusinessProfile
    diagnosis: DiagnosisData = Field(default_factory=DiagnosisData)


class ProgressUpdateRequest(BaseModel):
    """Manual progress update (0-100)."""
    progress: int = Field(..., ge=0, le=100)
    notes: str = Field("", max_length=2000)


class CompleteRecommendationRequest(BaseModel):
    """Completion feedback; every field is optional."""
    notes: str = Field("", max_length=2000)
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: str = Field("", max_length=2000)
    implementation_difficulty: Optional[int] = Field(None, ge=1, le=5)
    actual_impact: Optional[int] = Field(None, ge=1, le=5)


class SkipRequest(BaseModel):
    """Reason for skipping a recommendation or optional step."""
    reason: str = Field("", max_length=500)


class BookmarkRequest(BaseModel):
    """Bookmark toggle target collection."""
    collection: str = Field("default", max_length=100)


class StepNotesRequest(BaseModel):
    """Notes for a progress step."""
    notes: str = Field(..., max_length=5000)


class StepCompleteRequest(BaseModel):
    notes: str = Field("", max_length=5000)


class BookmarkCollectionCreateRequest(BaseModel):
    """Request to create a bookmark collection."""
    name: str = Field(..., min_length=1, max_length=100, examples=["Target Bulan Ini"])
    description: str = Field("", max_length=500)


# ============================================================================
# RESPONSE MODELS
# ============================================================================

class GenerateRecommendationsResponse(BaseModel):
    """Response for POST /recommendations/generate."""
    status: Literal["OK"] = Field("OK")
    source: GenerationSource = Field(
        ...,
        description=(
            "Which layer produced the recommendations: bypass (canned), ai, "
            "ai_fallback (salvaged output) or rule_based"
        )
    )
    count: int
    recommendations: List[Recommendation]
    saved: bool = Field(..., description="False when persisting was deferred or failed")


class RecommendationListResponse(BaseModel):
    """Response for GET /recommendations."""
    count: int
    recommendations: List[Recommendation]


class RecommendationActionResponse(BaseModel):
    """Response for lifecycle actions on a single recommendation."""
    recommendation: Recommendation
    message: str


class ProgressStatsResponse(BaseModel):
    """Aggregate progress across all of the user's recommendations."""
    total: int
    completed: int
    in_progress: int
    pending: int
    skipped: int
    bookmarked: int
    completion_rate: int = Field(..., description="Completed / total, percent")
    average_progress: int
    total_steps: int
    completed_steps: int
    by_category: Dict[str, int] = Field(default_factory=dict)


class NextAction(BaseModel):
    """A suggested next thing to do."""
    recommendation_id: str
    recommendation_title: str
    type: Literal["step", "action_item"]
    item_id: str
    title: str
    priority: Priority
    deadline: Optional[str] = Field(None)


class NextActionsResponse(BaseModel):
    actions: List[NextAction]


class BookmarkStatsResponse(BaseModel):
    """Bookmark counts per collection."""
    total: int
    by_collection: Dict[str, int]
    collections: List[BookmarkCollection]


class SaveResponse(BaseModel):
    status: Literal["SAVED", "QUEUED", "DEGRADED", "SKIPPED", "FAILED"]
    message: str


class BookmarkCollectionDeleteResponse(BaseModel):
    """Response for DELETE /recommendations/bookmarks/collections/{id}."""
    deleted_id: str
    moved_count: int = Field(..., description="Bookmarks moved to the default collection")
