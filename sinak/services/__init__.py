"""
Service layer for the SiNaK Backend.

Contains business logic orchestration that:
- Generates recommendations (Gemini with layered fallback)
- Applies recommendation lifecycle mutations
- Persists user documents and recommendation lists to Firestore with
  offline queueing and error monitoring
- Computes list, stats and next-action views

Services act as the glue between routes (HTTP layer) and agents/database.
"""

from .analytics_service import (
    bookmark_stats,
    category_breakdown,
    filter_recommendations,
    next_actions,
    progress_stats,
    sort_recommendations,
)
from .firestore_service import (
    WriteOutcome,
    create_user_document,
    get_user_document,
    load_recommendation_data,
    update_recommendation_data,
    update_user_document,
)
from .recommendation_service import GenerationResult, generate_recommendations
from .tracking_service import RecommendationTracker, get_tracker

__all__ = [
    "bookmark_stats",
    "category_breakdown",
    "filter_recommendations",
    "next_actions",
    "progress_stats",
    "sort_recommendations",
    "WriteOutcome",
    "create_user_document",
    "get_user_document",
    "load_recommendation_data",
    "update_recommendation_data",
    "update_user_document",
    "GenerationResult",
    "generate_recommendations",
    "RecommendationTracker",
    "get_tracker",
]
