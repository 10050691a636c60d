"""
AI Components for the SiNaK Backend.

Recommendation System (Single-Shot LLM with layered fallback)
   - Uses Gemini to generate business recommendations in Bahasa Indonesia
   - NOT an ADK agent - uses the Google Gen AI SDK directly
   - Malformed completions are repaired by a fixed salvage pipeline
   - Service layer is in: sinak/services/recommendation_service.py
"""

from sinak.agents.recommendation import (
    RECOMMENDATION_SYSTEM_PROMPT,
    build_recommendation_user_prompt,
    salvage_json,
)

__all__ = [
    "RECOMMENDATION_SYSTEM_PROMPT",
    "build_recommendation_user_prompt",
    "salvage_json",
]
