"""
Progress Service - Recommendation lifecycle mutations

Pure functions that mutate a Recommendation in place and return it. They
never touch Firestore; the RecommendationTracker persists the result.

Every mutation appends a CompletionHistoryEntry and bumps updated_at.

Status lifecycle:
    pending -> in_progress -> completed
    any     -> skipped
    any     -> pending (restart, clears step/checkpoint/milestone state)

Step progress:
- completing a step: progress = done / total steps, where done counts
  completed steps plus skipped optional steps
- skipping an optional step: progress = completed required / required steps
- reaching 100 completes the recommendation
"""

import logging
from typing import Any, List, Optional, Tuple

from sinak.schemas.recommendations import (
    CompletionHistoryEntry,
    ProgressStep,
    Recommendation,
    utc_now,
)
from sinak.utils.constants import DEFAULT_BOOKMARK_COLLECTION

logger = logging.getLogger(__name__)


class RecommendationNotFoundError(LookupError):
    """No recommendation with the given id for this user."""


class ProgressStepNotFoundError(LookupError):
    """No step, checkpoint or action item with the given id."""


class ProgressError(ValueError):
    """The requested transition is not allowed (e.g. skipping a required step)."""


# =========================================================
# Helpers
# =========================================================

def _log(recommendation: Recommendation, action: str, **details: Any) -> None:
    now = utc_now()
    recommendation.completion_history.append(
        CompletionHistoryEntry(action=action, timestamp=now, details=details)
    )
    recommendation.updated_at = now


def find_recommendation(recommendations: List[Recommendation], recommendation_id: str) -> Recommendation:
    for recommendation in recommendations:
        if recommendation.id == recommendation_id:
            return recommendation
    raise RecommendationNotFoundError(f"Recommendation {recommendation_id} not found")


def find_step(recommendation: Recommendation, step_id: str) -> Tuple[int, ProgressStep]:
    for index, step in enumerate(recommendation.progress_steps):
        if step.id == step_id:
            return index, step
    raise ProgressStepNotFoundError(f"Step {step_id} not found in recommendation {recommendation.id}")


def _mark_completed(recommendation: Recommendation) -> None:
    now = utc_now()
    recommendation.status = "completed"
    recommendation.is_completed = True
    recommendation.progress = 100
    recommendation.completed_at = recommendation.completed_at or now
    # Milestones without required steps complete with the recommendation
    for milestone in recommendation.milestones:
        if not milestone.is_completed and not milestone.required_steps:
            milestone.is_completed = True
            milestone.completed_at = now


def _next_pending_index(recommendation: Recommendation, after: int) -> Optional[int]:
    steps = recommendation.progress_steps
    for index in list(range(after + 1, len(steps))) + list(range(0, after + 1)):
        if steps[index].status in ("pending", "in_progress"):
            return index
    return None


def _ensure_started(recommendation: Recommendation) -> None:
    if recommendation.status == "pending":
        recommendation.status = "in_progress"
        recommendation.started_at = recommendation.started_at or utc_now()


# =========================================================
# Recommendation-level transitions
# =========================================================

def start_recommendation(recommendation: Recommendation) -> Recommendation:
    """Move a recommendation to in_progress and reset its progress."""
    now = utc_now()
    recommendation.status = "in_progress"
    recommendation.is_completed = False
    recommendation.started_at = now
    recommendation.progress = 0
    recommendation.view_count += 1
    recommendation.last_viewed_at = now
    _log(recommendation, "started", notes="Implementasi dimulai")
    logger.info(f"Recommendation started: {recommendation.id}")
    return recommendation


def update_progress(recommendation: Recommendation, progress: int, notes: str = "") -> Recommendation:
    """Set manual progress (clamped to 0-100); 100 completes the recommendation."""
    progress = max(0, min(100, int(progress)))
    recommendation.progress = progress
    _ensure_started(recommendation)
    _log(
        recommendation,
        "progress_updated",
        progress=progress,
        notes=notes or f"Progress diperbarui ke {progress}%",
    )
    if progress == 100 and not recommendation.is_completed:
        complete_recommendation(recommendation)
    return recommendation


def complete_recommendation(
    recommendation: Recommendation,
    notes: str = "",
    rating: Optional[int] = None,
    feedback: str = "",
    implementation_difficulty: Optional[int] = None,
    actual_impact: Optional[int] = None,
) -> Recommendation:
    """Mark completed and store the user's feedback."""
    _mark_completed(recommendation)
    if notes:
        recommendation.completion_notes = notes
    if rating is not None:
        recommendation.user_rating = rating
    if feedback:
        recommendation.user_feedback = feedback
    if implementation_difficulty is not None:
        recommendation.implementation_difficulty = implementation_difficulty
    if actual_impact is not None:
        recommendation.actual_impact = actual_impact
    _log(recommendation, "completed", notes=notes or "Rekomendasi selesai", rating=rating)
    logger.info(f"Recommendation completed: {recommendation.id}")
    return recommendation


def restart_recommendation(recommendation: Recommendation) -> Recommendation:
    """Return to pending and clear all step, checkpoint, milestone and action item state."""
    recommendation.status = "pending"
    recommendation.is_completed = False
    recommendation.progress = 0
    recommendation.started_at = None
    recommendation.completed_at = None
    recommendation.current_step = 0

    for step in recommendation.progress_steps:
        step.status = "pending"
        step.started_at = None
        step.completed_at = None
        step.checkpoint_progress = 0
        for checkpoint in step.checkpoints:
            checkpoint.is_completed = False
            checkpoint.completed_at = None
    for checkpoint in recommendation.checkpoints:
        checkpoint.is_completed = False
        checkpoint.completed_at = None
    for milestone in recommendation.milestones:
        milestone.is_completed = False
        milestone.completed_at = None
    for item in recommendation.action_items:
        item.is_completed = False
        item.completed_at = None

    _log(recommendation, "restarted", notes="Implementasi dimulai ulang")
    return recommendation


def skip_recommendation(recommendation: Recommendation, reason: str = "") -> Recommendation:
    recommendation.status = "skipped"
    _log(recommendation, "skipped", reason=reason, notes="Rekomendasi dilewati")
    return recommendation


def record_view(recommendation: Recommendation) -> Recommendation:
    """Count a detail view. Not logged in the completion history."""
    recommendation.view_count += 1
    recommendation.last_viewed_at = utc_now()
    return recommendation


# =========================================================
# Bookmarks
# =========================================================

def toggle_bookmark(
    recommendation: Recommendation,
    collection: str = DEFAULT_BOOKMARK_COLLECTION,
    collection_name: Optional[str] = None,
) -> Recommendation:
    """Bookmark into collection, or remove the bookmark if already set."""
    if recommendation.is_bookmarked:
        recommendation.is_bookmarked = False
        recommendation.bookmarked_at = None
        recommendation.bookmark_collection = None
        _log(recommendation, "unbookmarked", notes="Dihapus dari bookmark")
    else:
        recommendation.is_bookmarked = True
        recommendation.bookmarked_at = utc_now()
        recommendation.bookmark_collection = collection
        _log(
            recommendation,
            "bookmarked",
            collection_id=collection,
            notes=f"Disimpan ke koleksi: {collection_name or collection}",
        )
    return recommendation


def add_to_bookmark_collection(
    recommendation: Recommendation,
    collection: str,
    collection_name: Optional[str] = None,
) -> Recommendation:
    """Bookmark (if needed) and move into collection."""
    if not recommendation.is_bookmarked:
        recommendation.is_bookmarked = True
        recommendation.bookmarked_at = utc_now()
    recommendation.bookmark_collection = collection
    _log(
        recommendation,
        "moved_to_collection",
        collection_id=collection,
        notes=f"Dipindah ke koleksi: {collection_name or collection}",
    )
    return recommendation


def remove_bookmark(recommendation: Recommendation) -> Recommendation:
    """Remove from all bookmarks; a no-op when not bookmarked."""
    if not recommendation.is_bookmarked:
        return recommendation
    recommendation.is_bookmarked = False
    recommendation.bookmarked_at = None
    recommendation.bookmark_collection = None
    _log(recommendation, "removed_from_bookmarks", notes="Dihapus dari semua bookmark")
    return recommendation


# =========================================================
# Steps, checkpoints, milestones
# =========================================================

def start_progress_step(recommendation: Recommendation, step_id: str) -> Recommendation:
    index, step = find_step(recommendation, step_id)
    step.status = "in_progress"
    step.started_at = utc_now()
    recommendation.current_step = index
    _ensure_started(recommendation)
    _log(
        recommendation,
        "step_started",
        step_id=step.id,
        step_title=step.title,
        notes=f'Langkah "{step.title}" dimulai',
    )
    return recommendation


def complete_progress_step(recommendation: Recommendation, step_id: str, notes: str = "") -> Recommendation:
    index, step = find_step(recommendation, step_id)
    step.status = "completed"
    step.completed_at = utc_now()
    if notes:
        step.notes = notes
    _ensure_started(recommendation)

    steps = recommendation.progress_steps
    done = sum(
        1 for s in steps
        if s.status == "completed" or (s.status == "skipped" and not s.is_required)
    )
    recommendation.progress = round(done / len(steps) * 100)

    next_index = _next_pending_index(recommendation, index)
    if next_index is not None:
        recommendation.current_step = next_index

    _log(
        recommendation,
        "step_completed",
        step_id=step.id,
        step_title=step.title,
        notes=notes or f'Langkah "{step.title}" selesai',
    )
    check_milestones(recommendation)

    if recommendation.progress == 100 and not recommendation.is_completed:
        _mark_completed(recommendation)
        _log(recommendation, "completed", notes="Semua langkah selesai")
    return recommendation


def skip_progress_step(recommendation: Recommendation, step_id: str, reason: str = "") -> Recommendation:
    """
    Skip an optional step.

    Raises:
        ProgressError: If the step is required
    """
    index, step = find_step(recommendation, step_id)
    if step.is_required:
        raise ProgressError(f'Langkah wajib "{step.title}" tidak dapat dilewati')

    step.status = "skipped"
    next_index = _next_pending_index(recommendation, index)
    if next_index is not None:
        recommendation.current_step = next_index

    required = [s for s in recommendation.progress_steps if s.is_required]
    completed_required = sum(1 for s in required if s.status == "completed")
    recommendation.progress = round(completed_required / len(required) * 100) if required else 100

    _log(
        recommendation,
        "step_skipped",
        step_id=step.id,
        step_title=step.title,
        reason=reason,
        notes=f'Langkah "{step.title}" dilewati',
    )

    if recommendation.progress == 100 and not recommendation.is_completed:
        _mark_completed(recommendation)
        _log(recommendation, "completed", notes="Semua langkah wajib selesai")
    return recommendation


def toggle_step_checkpoint(recommendation: Recommendation, step_id: str, checkpoint_id: str) -> Recommendation:
    _, step = find_step(recommendation, step_id)
    for checkpoint in step.checkpoints:
        if checkpoint.id == checkpoint_id:
            break
    else:
        raise ProgressStepNotFoundError(f"Checkpoint {checkpoint_id} not found in step {step_id}")

    checkpoint.is_completed = not checkpoint.is_completed
    checkpoint.completed_at = utc_now() if checkpoint.is_completed else None

    completed = sum(1 for c in step.checkpoints if c.is_completed)
    step.checkpoint_progress = round(completed / len(step.checkpoints) * 100)

    _log(
        recommendation,
        "checkpoint_toggled",
        step_id=step.id,
        checkpoint_id=checkpoint.id,
        is_completed=checkpoint.is_completed,
    )
    return recommendation


def save_step_notes(recommendation: Recommendation, step_id: str, notes: str) -> Recommendation:
    _, step = find_step(recommendation, step_id)
    step.notes = notes
    _log(recommendation, "step_notes_saved", step_id=step.id)
    return recommendation


def check_milestones(recommendation: Recommendation) -> List[str]:
    """
    Complete milestones whose required steps are all completed.

    Milestones with no required steps are left for the recommendation's
    completion. Indices outside the step list never match.

    Returns:
        Ids of milestones achieved by this call
    """
    steps = recommendation.progress_steps
    achieved = []
    for milestone in recommendation.milestones:
        if milestone.is_completed or not milestone.required_steps:
            continue
        if all(0 <= i < len(steps) and steps[i].status == "completed" for i in milestone.required_steps):
            milestone.is_completed = True
            milestone.completed_at = utc_now()
            achieved.append(milestone.id)
            _log(
                recommendation,
                "milestone_achieved",
                milestone_id=milestone.id,
                milestone_title=milestone.title,
                notes=f'Milestone "{milestone.title}" tercapai! {milestone.reward}',
            )
            logger.info(f"Milestone achieved: {milestone.title}")
    return achieved


# =========================================================
# Action items
# =========================================================

def complete_action_item(recommendation: Recommendation, item_id: str) -> Recommendation:
    """Complete an action item; completing the last one completes the recommendation."""
    for item in recommendation.action_items:
        if item.id == item_id:
            break
    else:
        raise ProgressStepNotFoundError(f"Action item {item_id} not found in recommendation {recommendation.id}")

    item.is_completed = True
    item.completed_at = item.completed_at or utc_now()
    _log(recommendation, "action_item_completed", action_item_id=item.id, title=item.title)

    if all(i.is_completed for i in recommendation.action_items) and not recommendation.is_completed:
        complete_recommendation(recommendation, notes="Semua aksi selesai")
    return recommendation
