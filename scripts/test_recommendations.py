#!/usr/bin/env python3
"""
Recommendation Generation Test Script

Runs the recommendation generator locally without the API, Firebase Auth or
Firestore. Useful for checking prompt changes against the live Gemini model
and for inspecting the rule-based catalog.

Without GOOGLE_API_KEY (or with --rule-based) the rule-based catalog is used.

Usage:
    python scripts/test_recommendations.py
    python scripts/test_recommendations.py --stage survival --name "Warung Bu Sari"
    python scripts/test_recommendations.py --all-stages --rule-based
"""

import argparse
import asyncio
import logging
import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()
os.environ.setdefault("VALIDATE_CONFIG", "false")

from sinak.config import settings
from sinak.schemas.profile import BusinessProfile, DiagnosisData
from sinak.services.recommendation_service import GenerationResult, generate_recommendations
from sinak.utils.constants import BUSINESS_STAGES

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def print_result(result: GenerationResult) -> None:
    """Pretty print the generated recommendations."""
    print("\n" + "=" * 60)
    print(f"SOURCE: {result.source}  (Gemini attempts: {result.attempts})")
    print("=" * 60)

    for i, rec in enumerate(result.recommendations, 1):
        print(f"\n--- Rekomendasi #{i} ---")
        print(f"  Judul:      {rec.title}")
        print(f"  Kategori:   {rec.category}")
        print(f"  Prioritas:  {rec.priority}")
        print(f"  Waktu:      {rec.estimated_timeframe}")
        print(f"  Biaya:      {rec.estimated_cost}")
        print(f"  Langkah:    {len(rec.progress_steps)}")
        for step in rec.progress_steps:
            print(f"     {step.order + 1}. {step.title} ({len(step.checkpoints)} checkpoint)")
        print(f"  Milestone:  {', '.join(m.title for m in rec.milestones) or '-'}")
        print(f"  Aksi:       {', '.join(a.title for a in rec.action_items) or '-'}")
    print()


async def run_test(stage: str, name: str, category: str, challenges: list[str]) -> GenerationResult:
    profile = BusinessProfile(
        user_id="test-user-123",
        business_name=name,
        business_category=category,
        business_stage=stage,
        challenges=challenges,
    )
    diagnosis = DiagnosisData(current_stage=stage)

    print("\n" + "=" * 60)
    print("RECOMMENDATION GENERATION TEST")
    print("=" * 60)
    print(f"\nBisnis:   {name}")
    print(f"Kategori: {category}")
    print(f"Tahap:    {stage}")
    print(f"Gemini:   {'enabled' if settings.ai_enabled else 'disabled (rule-based)'}")

    result = await generate_recommendations(profile, diagnosis)
    print_result(result)
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Test recommendation generation locally",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--stage", "-s", choices=BUSINESS_STAGES, default="survival")
    parser.add_argument("--name", "-n", default="Warung Makan Bu Sari")
    parser.add_argument("--category", "-c", default="food_beverage")
    parser.add_argument(
        "--challenge",
        action="append",
        default=[],
        help="Business challenge (repeatable)",
    )
    parser.add_argument("--all-stages", action="store_true", help="Run once per business stage")
    parser.add_argument("--rule-based", action="store_true", help="Ignore GOOGLE_API_KEY")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.rule_based:
        settings.GOOGLE_API_KEY = ""

    challenges = args.challenge or ["Pencatatan keuangan belum rapi"]
    stages = BUSINESS_STAGES if args.all_stages else [args.stage]

    async def _run_all():
        for stage in stages:
            await run_test(stage, args.name, args.category, challenges)

    asyncio.run(_run_all())


if __name__ == "__main__":
    main()
