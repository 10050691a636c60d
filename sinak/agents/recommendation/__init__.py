"""
Recommendation System - Single-Shot LLM with layered fallback

This package holds everything between the Gemini completion and typed
Recommendation records.

Architecture:
- Pattern: Single LLM call, JSON requested in the prompt
- Model: Gemini 2.0 Flash
- Temperature: 0.7
- Output: JSON parsed from text, salvaged when malformed

The service layer is in:
- sinak/services/recommendation_service.py

Modules:
- prompts.py: system prompt and user prompt builder
- json_repair.py: staged JSON salvage pipeline
- parser.py: strict and salvaging parsers
- factory.py: Recommendation builders with Indonesian defaults
- rule_based.py: static per-stage catalog used when AI is unavailable
"""

from sinak.agents.recommendation.json_repair import (
    JSONSalvageError,
    SalvageResult,
    salvage_json,
)
from sinak.agents.recommendation.parser import (
    RecommendationParseError,
    manual_extraction,
    parse_enhanced_response,
    parse_salvaged_response,
)
from sinak.agents.recommendation.prompts import (
    RECOMMENDATION_SYSTEM_PROMPT,
    build_recommendation_user_prompt,
)
from sinak.agents.recommendation.rule_based import (
    create_simple_recommendations,
    generate_rule_based_recommendations,
)

__all__ = [
    "JSONSalvageError",
    "SalvageResult",
    "salvage_json",
    "RecommendationParseError",
    "manual_extraction",
    "parse_enhanced_response",
    "parse_salvaged_response",
    "RECOMMENDATION_SYSTEM_PROMPT",
    "build_recommendation_user_prompt",
    "create_simple_recommendations",
    "generate_rule_based_recommendations",
]
