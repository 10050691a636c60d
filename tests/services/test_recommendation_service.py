"""
Tests for the Recommendation Service.

These tests verify the layered generation behaviour:
- Bypass mode
- Primary AI attempt with retries and exponential backoff
- Salvaging fallback attempt
- Rule-based fallback when Gemini is missing or keeps failing

Note: These tests use mocked Gemini responses to avoid actual API calls
and ensure deterministic test behavior.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, call, patch

from sinak.config import settings
from sinak.services.recommendation_service import (
    RecommendationGenerationError,
    _extract_text,
    generate_recommendations,
)


# =============================================================================
# FIXTURES
# =============================================================================

def _gemini_response(text):
    """Build a response object shaped like google.genai's GenerateContentResponse."""
    part = MagicMock()
    part.text = text
    candidate = MagicMock()
    candidate.content.parts = [part]
    response = MagicMock()
    response.candidates = [candidate]
    response.text = text
    return response


@pytest.fixture
def valid_completion():
    return json.dumps({
        "recommendations": [
            {
                "title": "Pisahkan Keuangan Pribadi dan Usaha",
                "description": "Buka rekening khusus usaha dan catat semua transaksi.",
                "category": "financial_management",
                "priority": "critical",
            },
            {
                "title": "Daftarkan Usaha di Google Maps",
                "description": "Tingkatkan visibilitas warung untuk pelanggan sekitar.",
                "category": "marketing_sales",
                "priority": "high",
            },
        ]
    })


@pytest.fixture
def gemini_client():
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def ai_settings(gemini_client):
    """Enable the AI layers with a mocked Gemini client and no real backoff."""
    with patch.object(settings, "GOOGLE_API_KEY", "test-google-api-key"), \
         patch.object(settings, "AI_BYPASS_MODE", False), \
         patch.object(settings, "AI_FALLBACK_ENABLED", True), \
         patch.object(settings, "AI_MAX_RETRIES", 3), \
         patch.object(settings, "AI_RETRY_DELAY", 1.0), \
         patch("sinak.services.recommendation_service._get_gemini_client", return_value=gemini_client), \
         patch("sinak.services.recommendation_service.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# =============================================================================
# TESTS
# =============================================================================

class TestBypassAndRuleBased:

    @pytest.mark.asyncio
    async def test_bypass_mode_returns_canned_recommendations(self, survival_profile):
        with patch.object(settings, "AI_BYPASS_MODE", True):
            result = await generate_recommendations(survival_profile)

        assert result.source == "bypass"
        assert len(result.recommendations) == 3
        assert all(r.user_id == "test-user-id" for r in result.recommendations)

    @pytest.mark.asyncio
    async def test_without_api_key_uses_rule_based(self, survival_profile, survival_diagnosis):
        with patch.object(settings, "AI_BYPASS_MODE", False), \
             patch.object(settings, "GOOGLE_API_KEY", ""):
            result = await generate_recommendations(survival_profile, survival_diagnosis)

        assert result.source == "rule_based"
        assert result.attempts == 0
        assert result.recommendations[0].title == "Implementasi Sistem Keuangan Dasar"

    @pytest.mark.asyncio
    async def test_diagnosis_stage_selects_catalog(self, survival_profile):
        from sinak.schemas.profile import DiagnosisData

        with patch.object(settings, "AI_BYPASS_MODE", False), \
             patch.object(settings, "GOOGLE_API_KEY", ""):
            result = await generate_recommendations(
                survival_profile, DiagnosisData(current_stage="takeoff")
            )

        assert result.recommendations[0].title == "Pengembangan Struktur Organisasi"


class TestAILayers:

    @pytest.mark.asyncio
    async def test_first_attempt_success(
        self, ai_settings, gemini_client, valid_completion, survival_profile, survival_diagnosis
    ):
        gemini_client.aio.models.generate_content.return_value = _gemini_response(valid_completion)

        result = await generate_recommendations(survival_profile, survival_diagnosis)

        assert result.source == "ai"
        assert result.attempts == 1
        assert [r.priority for r in result.recommendations] == ["critical", "high"]
        assert all(r.business_stage == "survival" for r in result.recommendations)
        ai_settings.assert_not_called()

        kwargs = gemini_client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == settings.GEMINI_MODEL
        assert kwargs["config"].temperature == 0.7
        assert kwargs["config"].max_output_tokens == 8192
        assert "Warung Makan Bu Sari" in kwargs["contents"]

    @pytest.mark.asyncio
    async def test_non_string_fields_in_completion(self, ai_settings, gemini_client, survival_profile):
        completion = json.dumps({"recommendations": [{
            "title": "Catat Keuangan",
            "description": "Catat pemasukan dan pengeluaran harian.",
            "businessStage": 2,
            "milestones": [{"title": "Sebulan tercatat", "targetDate": 20250301}],
            "actionItems": [{"title": "Buka buku kas", "deadline": 7}],
        }]})
        gemini_client.aio.models.generate_content.return_value = _gemini_response(completion)

        result = await generate_recommendations(survival_profile)

        assert result.source == "ai"
        recommendation = result.recommendations[0]
        assert recommendation.business_stage == "survival"
        assert recommendation.action_items[0].deadline == "7"
        assert recommendation.milestones[0].target_date == "20250301"

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(
        self, ai_settings, gemini_client, valid_completion, survival_profile
    ):
        gemini_client.aio.models.generate_content.side_effect = [
            RuntimeError("503 Service Unavailable"),
            _gemini_response("Maaf, saya tidak bisa menjawab."),
            _gemini_response(valid_completion),
        ]

        result = await generate_recommendations(survival_profile)

        assert result.source == "ai"
        assert result.attempts == 3
        assert ai_settings.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_salvage_fallback_after_primary_fails(
        self, ai_settings, gemini_client, survival_profile
    ):
        truncated = '{"recommendations": [{"title": "Audit Stok", "description": "Hitung stok'
        gemini_client.aio.models.generate_content.return_value = _gemini_response(truncated)

        result = await generate_recommendations(survival_profile)

        assert result.source == "ai_fallback"
        assert result.attempts == 4
        assert gemini_client.aio.models.generate_content.await_count == 4
        assert result.recommendations[0].title == "Audit Stok"

    @pytest.mark.asyncio
    async def test_fallback_disabled_goes_to_rule_based(
        self, ai_settings, gemini_client, survival_profile
    ):
        gemini_client.aio.models.generate_content.side_effect = RuntimeError("boom")

        with patch.object(settings, "AI_FALLBACK_ENABLED", False):
            result = await generate_recommendations(survival_profile)

        assert result.source == "rule_based"
        assert gemini_client.aio.models.generate_content.await_count == 3

    @pytest.mark.asyncio
    async def test_every_layer_failing_never_raises(self, ai_settings, gemini_client, survival_profile):
        gemini_client.aio.models.generate_content.side_effect = RuntimeError("network down")

        result = await generate_recommendations(survival_profile)

        assert result.source == "rule_based"
        assert result.attempts == 4
        assert result.recommendations


class TestExtractText:

    def test_prefers_candidate_parts(self):
        response = _gemini_response("dari parts")
        response.text = None
        assert _extract_text(response) == "dari parts"

    def test_empty_candidates_raise(self):
        response = MagicMock()
        response.candidates = []
        with pytest.raises(RecommendationGenerationError):
            _extract_text(response)
