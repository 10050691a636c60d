"""
Analytics Service - Queries over a user's recommendations

Read-only helpers behind the list, stats and next-actions endpoints.
Nothing here mutates recommendations.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sinak.schemas.recommendations import (
    BookmarkCollection,
    NextAction,
    ProgressStatsResponse,
    Recommendation,
)
from sinak.utils.constants import DEFAULT_BOOKMARK_COLLECTION, PRIORITY_WEIGHTS

logger = logging.getLogger(__name__)

SORT_KEYS = ("priority", "date", "category", "progress")

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def filter_recommendations(
    recommendations: List[Recommendation],
    category: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    completed: Optional[bool] = None,
    bookmarked: Optional[bool] = None,
    collection: Optional[str] = None,
) -> List[Recommendation]:
    """Return recommendations matching every given filter (None means any)."""
    result = []
    for recommendation in recommendations:
        if category and recommendation.category != category:
            continue
        if priority and recommendation.priority != priority:
            continue
        if status and recommendation.status != status:
            continue
        if completed is not None and recommendation.is_completed != completed:
            continue
        if bookmarked is not None and recommendation.is_bookmarked != bookmarked:
            continue
        if collection and recommendation.bookmark_collection != collection:
            continue
        result.append(recommendation)
    return result


def sort_recommendations(recommendations: List[Recommendation], by: str = "priority") -> List[Recommendation]:
    """
    Sort recommendations.

    - priority: highest weight first, newest first within a weight
    - date: newest first
    - category: alphabetical
    - progress: most progressed first
    """
    if by == "date":
        return sorted(recommendations, key=lambda r: r.created_at, reverse=True)
    if by == "category":
        return sorted(recommendations, key=lambda r: r.category)
    if by == "progress":
        return sorted(recommendations, key=lambda r: r.progress, reverse=True)
    return sorted(
        recommendations,
        key=lambda r: (PRIORITY_WEIGHTS.get(r.priority, 0), r.created_at),
        reverse=True,
    )


def category_breakdown(recommendations: List[Recommendation]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for recommendation in recommendations:
        counts[recommendation.category] = counts.get(recommendation.category, 0) + 1
    return counts


def progress_stats(recommendations: List[Recommendation]) -> ProgressStatsResponse:
    """Aggregate status counts, completion rate and step totals."""
    total = len(recommendations)
    by_status = {"completed": 0, "in_progress": 0, "pending": 0, "skipped": 0}
    for recommendation in recommendations:
        by_status[recommendation.status] += 1

    total_steps = sum(len(r.progress_steps) for r in recommendations)
    completed_steps = sum(
        1 for r in recommendations for step in r.progress_steps if step.status == "completed"
    )

    return ProgressStatsResponse(
        total=total,
        completed=by_status["completed"],
        in_progress=by_status["in_progress"],
        pending=by_status["pending"],
        skipped=by_status["skipped"],
        bookmarked=sum(1 for r in recommendations if r.is_bookmarked),
        completion_rate=round(by_status["completed"] / total * 100) if total else 0,
        average_progress=round(sum(r.progress for r in recommendations) / total) if total else 0,
        total_steps=total_steps,
        completed_steps=completed_steps,
        by_category=category_breakdown(recommendations),
    )


def _deadline_key(deadline: Optional[str]) -> datetime:
    if not deadline:
        return _FAR_FUTURE
    try:
        parsed = datetime.fromisoformat(deadline)
    except ValueError:
        return _FAR_FUTURE
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def next_actions(recommendations: List[Recommendation], limit: int = 5) -> List[NextAction]:
    """
    Suggest what to do next.

    Candidates are the current pending step of each in-progress
    recommendation, then every undone action item of recommendations that
    are not completed or skipped. Steps come before action items; within
    each group higher priority comes first, then the earlier deadline.
    """
    steps: List[NextAction] = []
    items: List[NextAction] = []

    for recommendation in recommendations:
        if recommendation.status in ("completed", "skipped"):
            continue

        if recommendation.status == "in_progress":
            pending = [
                s for s in recommendation.progress_steps if s.status in ("pending", "in_progress")
            ]
            if pending:
                step = min(pending, key=lambda s: s.order)
                steps.append(NextAction(
                    recommendation_id=recommendation.id,
                    recommendation_title=recommendation.title,
                    type="step",
                    item_id=step.id,
                    title=step.title,
                    priority=recommendation.priority,
                ))

        for item in recommendation.action_items:
            if item.is_completed:
                continue
            items.append(NextAction(
                recommendation_id=recommendation.id,
                recommendation_title=recommendation.title,
                type="action_item",
                item_id=item.id,
                title=item.title,
                priority=recommendation.priority,
                deadline=item.deadline,
            ))

    def _order(action: NextAction):
        return (-PRIORITY_WEIGHTS.get(action.priority, 0), _deadline_key(action.deadline))

    return (sorted(steps, key=_order) + sorted(items, key=_order))[:max(limit, 0)]


def bookmark_stats(
    recommendations: List[Recommendation],
    collections: List[BookmarkCollection],
) -> Dict[str, object]:
    """Bookmark counts per collection; every known collection appears, even when empty."""
    by_collection: Dict[str, int] = {collection.id: 0 for collection in collections}
    total = 0
    for recommendation in recommendations:
        if not recommendation.is_bookmarked:
            continue
        total += 1
        key = recommendation.bookmark_collection or DEFAULT_BOOKMARK_COLLECTION
        by_collection[key] = by_collection.get(key, 0) + 1
    return {"total": total, "by_collection": by_collection, "collections": collections}
