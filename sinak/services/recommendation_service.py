"""
Recommendation Service - Gemini with layered fallback

Generates business recommendations for a UMKM from its profile and
diagnosis results.

Architecture:
- Pattern: Single LLM call per attempt, JSON requested in the prompt
- Model: Gemini 2.0 Flash (GEMINI_MODEL)
- API: Google Gen AI Python SDK (google-genai), async client
- Temperature: 0.7, top_p 0.8, top_k 40, 8192 output tokens
- Output: JSON parsed from text, salvaged by json_repair when malformed

Layers (first one that yields recommendations wins):
1. bypass       AI_BYPASS_MODE, three canned recommendations
2. ai           AI_MAX_RETRIES attempts, strict parsing, exponential backoff
3. ai_fallback  one more attempt parsed by the full salvage pipeline
4. rule_based   static recommendations for the business stage

generate_recommendations() never raises: every failure degrades to the next
layer, and the rule-based layer cannot fail.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from google import genai
from google.genai import types

from sinak.agents.recommendation.parser import (
    RecommendationParseError,
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
from sinak.config import settings
from sinak.schemas.profile import BusinessProfile, DiagnosisData
from sinak.schemas.recommendations import GenerationSource, Recommendation

logger = logging.getLogger(__name__)

# Initialize Gemini client (lazy initialization)
_gemini_client = None

_SAFETY_CATEGORIES = [
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
]


class RecommendationGenerationError(Exception):
    """Raised inside the AI layers when a Gemini call yields nothing usable."""


@dataclass
class GenerationResult:
    """Recommendations and the layer that produced them."""
    recommendations: List[Recommendation]
    source: GenerationSource
    attempts: int = 0


def _get_gemini_client():
    """
    Lazy initialization of Gemini client.
    Uses the Google Gen AI SDK.
    """
    global _gemini_client

    if _gemini_client is not None:
        return _gemini_client

    if not settings.GOOGLE_API_KEY:
        logger.warning(
            "GOOGLE_API_KEY not configured. Recommendations will use the rule-based catalog. "
            "Please set GOOGLE_API_KEY in your .env file."
        )
        return None

    try:
        _gemini_client = genai.Client(api_key=settings.GOOGLE_API_KEY)
        logger.info("Gemini client initialized successfully for recommendations")
        return _gemini_client
    except Exception as e:
        logger.error(f"Failed to initialize Gemini client: {e}")
        return None


def _build_generation_config() -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        system_instruction=RECOMMENDATION_SYSTEM_PROMPT,
        temperature=0.7,
        top_p=0.8,
        top_k=40,
        max_output_tokens=8192,
        candidate_count=1,
        safety_settings=[
            types.SafetySetting(
                category=category,
                threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
            )
            for category in _SAFETY_CATEGORIES
        ],
    )


def _extract_text(response) -> str:
    """Get the completion text, preferring the parts of the first candidate."""
    if not response.candidates or not response.candidates[0].content:
        raise RecommendationGenerationError("Empty response from Gemini API")

    # The response.text property can sometimes be None even when parts have text
    content = None
    candidate = response.candidates[0]
    if candidate.content.parts:
        for part in candidate.content.parts:
            if getattr(part, "text", None):
                content = part.text
                break

    if not content:
        content = response.text

    if not content:
        raise RecommendationGenerationError("Empty text in Gemini response")
    return content


async def _call_gemini(client, prompt: str) -> str:
    """Make one bounded Gemini call and return its text."""
    try:
        response = await asyncio.wait_for(
            client.aio.models.generate_content(
                model=settings.GEMINI_MODEL,
                contents=prompt,
                config=_build_generation_config(),
            ),
            timeout=settings.AI_TIMEOUT,
        )
    except asyncio.TimeoutError as e:
        raise RecommendationGenerationError(
            f"Gemini call timed out after {settings.AI_TIMEOUT}s"
        ) from e
    except RecommendationGenerationError:
        raise
    except Exception as e:
        raise RecommendationGenerationError(f"Error calling Gemini API: {e}") from e

    return _extract_text(response)


async def _attempt_enhanced_ai(
    client,
    prompt: str,
    user_id: Optional[str],
    business_stage: Optional[str],
) -> tuple[List[Recommendation], int]:
    """
    Primary AI layer: retried calls with strict parsing.

    Returns:
        (recommendations, attempts used)

    Raises:
        RecommendationGenerationError: When every attempt failed
    """
    max_attempts = max(settings.AI_MAX_RETRIES, 1)
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            logger.info(f"Calling Gemini for recommendations (attempt {attempt}/{max_attempts})")
            text = await _call_gemini(client, prompt)
            logger.debug(f"Completion preview: {text[:200]}")
            return parse_enhanced_response(text, user_id, business_stage), attempt
        except (RecommendationGenerationError, RecommendationParseError) as e:
            last_error = e
            logger.warning(f"Recommendation attempt {attempt} failed: {e}")

        if attempt < max_attempts:
            delay = settings.AI_RETRY_DELAY * (2 ** (attempt - 1))
            logger.info(f"Retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    raise RecommendationGenerationError(
        f"All {max_attempts} recommendation attempts failed: {last_error}"
    )


async def _attempt_fallback_ai(
    client,
    prompt: str,
    user_id: Optional[str],
    business_stage: Optional[str],
) -> List[Recommendation]:
    """Single call whose output goes through the full salvage pipeline."""
    logger.info("Calling Gemini once more with salvage parsing")
    text = await _call_gemini(client, prompt)
    return parse_salvaged_response(text, user_id, business_stage)


async def generate_recommendations(
    profile: BusinessProfile,
    diagnosis: Optional[DiagnosisData] = None,
) -> GenerationResult:
    """
    Generate recommendations for a business.

    This function:
    1. Returns canned recommendations in bypass mode
    2. Builds the Indonesian prompt from profile and diagnosis
    3. Calls Gemini with retries and strict parsing
    4. Falls back to one salvaged Gemini call
    5. Falls back to the rule-based catalog

    Args:
        profile: Business profile (user_id is stamped on every recommendation)
        diagnosis: Diagnosis results from the client questionnaire

    Returns:
        GenerationResult with at least one recommendation
    """
    diagnosis = diagnosis or DiagnosisData()
    stage = diagnosis.current_stage or profile.business_stage
    logger.info(f"generate_recommendations called for user_id={profile.user_id}, stage={stage}")

    if settings.AI_BYPASS_MODE:
        logger.info("AI bypass mode enabled, returning canned recommendations")
        return GenerationResult(create_simple_recommendations(profile.user_id), "bypass")

    client = _get_gemini_client() if settings.ai_enabled else None
    attempts = 0

    if client is not None:
        prompt = build_recommendation_user_prompt(profile, diagnosis)

        try:
            recommendations, attempts = await _attempt_enhanced_ai(
                client, prompt, profile.user_id, stage
            )
            logger.info(f"Returning {len(recommendations)} AI recommendations")
            return GenerationResult(recommendations, "ai", attempts)
        except RecommendationGenerationError as e:
            attempts = max(settings.AI_MAX_RETRIES, 1)
            logger.error(f"Primary AI generation failed: {e}")

        if settings.AI_FALLBACK_ENABLED:
            try:
                recommendations = await _attempt_fallback_ai(client, prompt, profile.user_id, stage)
                logger.info(f"Returning {len(recommendations)} salvaged AI recommendations")
                return GenerationResult(recommendations, "ai_fallback", attempts + 1)
            except RecommendationGenerationError as e:
                attempts += 1
                logger.error(f"Fallback AI generation failed: {e}")
    else:
        logger.info("Gemini not configured, using rule-based recommendations")

    recommendations = generate_rule_based_recommendations(profile, stage)
    return GenerationResult(recommendations, "rule_based", attempts)
