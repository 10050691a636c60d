"""
Parsers that turn a Gemini completion into Recommendation records.

- parse_enhanced_response: used by the primary (retried) AI attempt. Applies
  only light repairs and rejects anything without a usable recommendations
  array, so that a bad completion triggers a retry instead of placeholder
  content.
- parse_salvaged_response: used by the single fallback attempt. Runs the full
  salvage pipeline and, when even that fails, extracts titles/descriptions
  with regexes. It always returns at least one recommendation.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from sinak.agents.recommendation.factory import (
    build_action_item,
    build_recommendation,
    build_resource,
)
from sinak.agents.recommendation.json_repair import (
    JSONSalvageError,
    quote_bare_keys,
    remove_trailing_commas,
    replace_single_quotes,
    salvage_json,
    strip_code_fences,
    trim_to_outer_braces,
)
from sinak.schemas.recommendations import Recommendation

logger = logging.getLogger(__name__)

MAX_MANUAL_RECOMMENDATIONS = 5

_MANUAL_TITLE_PATTERNS = [
    re.compile(r'"title"\s*:\s*"([^"]+)"'),
    re.compile(r'(?<!")\btitle\s*:\s*"([^"]+)"'),
    re.compile(r'(?<!")\bTitle\s*:\s*"([^"]+)"'),
    re.compile(r'"judul"\s*:\s*"([^"]+)"'),
]

_MANUAL_DESCRIPTION_PATTERNS = [
    re.compile(r'"description"\s*:\s*"([^"]+)"'),
    re.compile(r'(?<!")\bdescription\s*:\s*"([^"]+)"'),
    re.compile(r'(?<!")\bDescription\s*:\s*"([^"]+)"'),
    re.compile(r'"deskripsi"\s*:\s*"([^"]+)"'),
]


class RecommendationParseError(ValueError):
    """Raised when a completion does not contain usable recommendations."""


def _recommendation_dicts(parsed: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = parsed.get("recommendations")
    if not isinstance(items, list):
        raise RecommendationParseError("Response is missing the recommendations array")
    return [item for item in items if isinstance(item, dict)]


def _build_valid(
    items: List[Dict[str, Any]],
    user_id: Optional[str],
    business_stage: Optional[str],
) -> List[Recommendation]:
    """Build every item, dropping the ones that still fail model validation."""
    recommendations = []
    for index, item in enumerate(items):
        try:
            recommendations.append(build_recommendation(item, user_id, index, business_stage))
        except ValidationError as e:
            logger.warning(
                f"Skipping recommendation {index + 1}: "
                f"{e.error_count()} validation error(s) in model output"
            )
    return recommendations


def parse_enhanced_response(
    text: str,
    user_id: Optional[str],
    business_stage: Optional[str] = None,
) -> List[Recommendation]:
    """
    Strictly parse a completion from the primary AI attempt.

    Raises:
        RecommendationParseError: If no JSON object, no recommendations array,
            or no recommendation with both title and description is found.
    """
    if not text or not text.strip():
        raise RecommendationParseError("Empty completion")

    cleaned = trim_to_outer_braces(strip_code_fences(text))
    if not cleaned.startswith("{"):
        raise RecommendationParseError("No JSON structure found in completion")

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.info("Initial JSON parse failed, applying light repairs")
        repaired = replace_single_quotes(quote_bare_keys(remove_trailing_commas(cleaned)))
        repaired = re.sub(r"[\r\n\t]+", " ", repaired)
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise RecommendationParseError(f"Failed to parse completion as JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise RecommendationParseError("Completion is not a JSON object")

    items = _recommendation_dicts(parsed)
    if not items:
        raise RecommendationParseError("No recommendations found in completion")

    complete = []
    for index, item in enumerate(items):
        if not item.get("title") or not item.get("description"):
            logger.warning(f"Skipping recommendation {index + 1}: missing title or description")
            continue
        complete.append(item)

    recommendations = _build_valid(complete, user_id, business_stage)
    if not recommendations:
        raise RecommendationParseError("No valid recommendations in completion")

    logger.info(f"Parsed {len(recommendations)} recommendations from completion")
    return recommendations


def _clean_manual_text(value: str, limit: int, allowed: str) -> str:
    value = re.sub(rf"[^\w\s{allowed}]", "", value[:limit])
    return re.sub(r"\s+", " ", value).strip()


def manual_extraction(text: str, user_id: Optional[str]) -> List[Recommendation]:
    """
    Extract up to five recommendations from titles/descriptions found anywhere in the text.

    Always returns at least one recommendation.
    """
    titles: List[str] = []
    descriptions: List[str] = []
    for pattern in _MANUAL_TITLE_PATTERNS:
        titles.extend(pattern.findall(text or ""))
    for pattern in _MANUAL_DESCRIPTION_PATTERNS:
        descriptions.extend(pattern.findall(text or ""))

    logger.info(f"Manual extraction found {len(titles)} titles and {len(descriptions)} descriptions")

    recommendations = []
    if titles or descriptions:
        count = min(max(len(titles), len(descriptions)), MAX_MANUAL_RECOMMENDATIONS)
        for index in range(count):
            title = titles[index] if index < len(titles) else ""
            description = descriptions[index] if index < len(descriptions) else ""
            recommendations.append(build_recommendation(
                {
                    "title": _clean_manual_text(title, 100, "-")
                    or f"Rekomendasi Bisnis {index + 1}",
                    "description": _clean_manual_text(description, 500, ".,!?-")
                    or "Rekomendasi berdasarkan analisis AI untuk meningkatkan performa bisnis Anda.",
                },
                user_id,
                index,
            ))
            recommendations[-1].action_items = [build_action_item({
                "title": "Implementasi rekomendasi",
                "description": "Terapkan rekomendasi ini sesuai dengan kondisi bisnis Anda",
                "estimatedHours": 8,
            })]
            recommendations[-1].resources = [build_resource({
                "title": "Panduan Implementasi",
                "description": "Panduan umum untuk implementasi rekomendasi bisnis",
                "type": "guide",
            })]

    if not recommendations:
        fallback = build_recommendation(
            {
                "title": "Evaluasi dan Optimasi Bisnis",
                "description": (
                    "Lakukan evaluasi menyeluruh terhadap operasional bisnis dan identifikasi "
                    "area yang dapat dioptimalkan untuk meningkatkan efisiensi dan profitabilitas."
                ),
                "priority": "high",
                "expectedImpact": "Peningkatan efisiensi operasional dan profitabilitas",
                "reasoning": "Rekomendasi fallback berdasarkan best practices bisnis",
                "actionItems": [{
                    "title": "Audit operasional",
                    "description": "Lakukan audit menyeluruh terhadap proses bisnis saat ini",
                    "estimatedHours": 16,
                }],
                "resources": [{
                    "title": "Panduan Audit Bisnis",
                    "description": "Panduan lengkap untuk melakukan audit bisnis",
                    "type": "guide",
                }],
            },
            user_id,
        )
        recommendations.append(fallback)

    return recommendations


def parse_salvaged_response(
    text: str,
    user_id: Optional[str],
    business_stage: Optional[str] = None,
) -> List[Recommendation]:
    """
    Parse a completion with the full salvage pipeline.

    Degrades silently: salvage failure or an empty recommendations array falls
    through to manual extraction, which always yields something.
    """
    try:
        result = salvage_json(text)
    except JSONSalvageError as e:
        logger.warning(f"Salvage pipeline failed ({e}), using manual extraction")
        return manual_extraction(text, user_id)

    try:
        items = _recommendation_dicts(result.data)
    except RecommendationParseError as e:
        logger.warning(f"{e}, using manual extraction")
        return manual_extraction(text, user_id)

    recommendations = _build_valid(items, user_id, business_stage)
    if not recommendations:
        return manual_extraction(text, user_id)

    logger.info(f"Salvaged {len(recommendations)} recommendations (stage={result.stage})")
    return recommendations
