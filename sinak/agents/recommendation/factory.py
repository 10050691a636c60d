"""
Build typed Recommendation records from loosely-shaped model output.

Gemini returns camelCase keys following the schema in the prompt, but
salvaged output can miss any field or carry values outside the enums.
Every builder fills the Indonesian placeholder defaults and coerces
unknown enum values instead of rejecting the record.
"""

import logging
from typing import Any, Dict, List, Optional

from sinak.schemas.recommendations import (
    ActionItem,
    Checkpoint,
    Milestone,
    ProgressStep,
    Recommendation,
    Resource,
)
from sinak.utils.constants import (
    BUSINESS_STAGES,
    DEFAULT_CATEGORY,
    DEFAULT_PRIORITY,
    DIFFICULTY_LEVELS,
    PRIORITY_WEIGHTS,
    RECOMMENDATION_CATEGORIES,
    RESOURCE_TYPES,
)

logger = logging.getLogger(__name__)


def _pick(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present, non-empty value among camelCase/snake_case aliases."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", []):
            return value
    return default


def _as_text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _as_optional_text(value: Any) -> Optional[str]:
    """Dates and other free-form fields: any scalar becomes text, containers are dropped."""
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _as_number(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 0 else default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _coerce_choice(value: Any, choices: tuple | dict, default: str) -> str:
    text = str(value).strip().lower() if value is not None else ""
    return text if text in choices else default


def build_resource(raw: Dict[str, Any]) -> Resource:
    url = _as_text(raw.get("url"), "#")
    return Resource(
        title=_as_text(raw.get("title"), "Resource"),
        description=_as_text(raw.get("description"), "Deskripsi resource"),
        type=_coerce_choice(raw.get("type"), RESOURCE_TYPES, "article"),
        url=url,
        is_external=url.startswith("http"),
    )


def build_checkpoint(raw: Dict[str, Any], index: int, step_id: Optional[str] = None) -> Checkpoint:
    return Checkpoint(
        step_id=step_id,
        title=_as_text(raw.get("title"), f"Checkpoint {index + 1}"),
        description=_as_text(raw.get("description"), "Deskripsi checkpoint"),
        order=_as_int(raw.get("order"), index),
    )


def build_progress_step(raw: Dict[str, Any], index: int) -> ProgressStep:
    step = ProgressStep(
        title=_as_text(raw.get("title"), f"Langkah {index + 1}"),
        description=_as_text(raw.get("description"), "Deskripsi langkah"),
        order=_as_int(raw.get("order"), index),
        # Only an explicit false makes a step optional
        is_required=_pick(raw, "isRequired", "is_required", default=True) is not False,
        estimated_duration=_as_text(
            _pick(raw, "estimatedDuration", "estimated_duration"), "1-2 hari"
        ),
        resources=[build_resource(r) for r in _as_list(raw.get("resources")) if isinstance(r, dict)],
        tips=[str(tip) for tip in _as_list(raw.get("tips")) if tip],
    )
    step.checkpoints = [
        build_checkpoint(cp, cp_index, step.id)
        for cp_index, cp in enumerate(_as_list(raw.get("checkpoints")))
        if isinstance(cp, dict)
    ]
    return step


def build_milestone(raw: Dict[str, Any], index: int, total_steps: int) -> Milestone:
    required = [
        _as_int(step, -1) for step in _as_list(_pick(raw, "requiredSteps", "required_steps"))
    ]
    return Milestone(
        title=_as_text(raw.get("title"), f"Milestone {index + 1}"),
        description=_as_text(raw.get("description"), "Deskripsi milestone"),
        target_date=_as_optional_text(_pick(raw, "targetDate", "target_date")),
        reward=_as_text(raw.get("reward"), "Pencapaian penting"),
        icon=_as_text(raw.get("icon"), "🎯"),
        required_steps=[step for step in required if 0 <= step < total_steps],
    )


def build_action_item(raw: Dict[str, Any]) -> ActionItem:
    return ActionItem(
        title=_as_text(raw.get("title"), "Aksi diperlukan"),
        description=_as_text(raw.get("description"), "Detail akan ditentukan"),
        priority=_coerce_choice(raw.get("priority"), PRIORITY_WEIGHTS, DEFAULT_PRIORITY),
        estimated_hours=_as_number(_pick(raw, "estimatedHours", "estimated_hours"), 4),
        deadline=_as_optional_text(_pick(raw, "deadline")),
        resources=[build_resource(r) for r in _as_list(raw.get("resources")) if isinstance(r, dict)],
    )


def build_recommendation(
    raw: Dict[str, Any],
    user_id: Optional[str],
    index: int = 0,
    business_stage: Optional[str] = None,
) -> Recommendation:
    """
    Convert one raw recommendation dict into a Recommendation.

    Args:
        raw: Recommendation object from the model (camelCase or snake_case keys)
        user_id: Owner uid
        index: Position in the response, used for placeholder titles
        business_stage: Stage to use when the model did not name one

    Returns:
        Recommendation with defaults filled and enums coerced
    """
    category = _coerce_choice(raw.get("category"), RECOMMENDATION_CATEGORIES, DEFAULT_CATEGORY)
    if raw.get("category") and category != str(raw.get("category")).strip().lower():
        logger.debug(f"Unknown category '{raw.get('category')}' coerced to {category}")

    progress_steps = [
        build_progress_step(step, step_index)
        for step_index, step in enumerate(_as_list(_pick(raw, "progressSteps", "progress_steps")))
        if isinstance(step, dict)
    ]
    milestones = [
        build_milestone(milestone, milestone_index, len(progress_steps))
        for milestone_index, milestone in enumerate(_as_list(raw.get("milestones")))
        if isinstance(milestone, dict)
    ]

    return Recommendation(
        user_id=user_id,
        title=_as_text(raw.get("title"), f"Rekomendasi {index + 1}"),
        description=_as_text(raw.get("description"), "Deskripsi tidak tersedia"),
        category=category,
        priority=_coerce_choice(raw.get("priority"), PRIORITY_WEIGHTS, DEFAULT_PRIORITY),
        business_stage=_coerce_choice(
            _pick(raw, "businessStage", "business_stage"), BUSINESS_STAGES, business_stage
        ),
        estimated_timeframe=_as_text(
            _pick(raw, "estimatedTimeframe", "estimated_timeframe"), "2-4 minggu"
        ),
        expected_impact=_as_text(
            _pick(raw, "expectedImpact", "expected_impact"), "Dampak positif pada bisnis"
        ),
        reasoning=_as_text(raw.get("reasoning"), "Rekomendasi berdasarkan analisis AI"),
        estimated_cost=_as_text(
            _pick(raw, "estimatedCost", "estimated_cost"), "Biaya akan ditentukan"
        ),
        difficulty_level=_coerce_choice(
            _pick(raw, "difficultyLevel", "difficulty_level"), DIFFICULTY_LEVELS, "medium"
        ),
        tags=[str(tag) for tag in _as_list(raw.get("tags")) if tag],
        progress_steps=progress_steps,
        total_steps=len(progress_steps),
        milestones=milestones,
        action_items=[
            build_action_item(item)
            for item in _as_list(_pick(raw, "actionItems", "action_items"))
            if isinstance(item, dict)
        ],
        resources=[build_resource(r) for r in _as_list(raw.get("resources")) if isinstance(r, dict)],
    )
