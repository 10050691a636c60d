"""
Pytest configuration for SiNaK backend tests.

Sets up test environment and global fixtures.
"""
import os

import pytest
from unittest.mock import MagicMock

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("FIREBASE_PROJECT_ID", "sinak-test")
os.environ.setdefault("OFFLINE_AUTO_RECONNECT", "false")
# No Gemini key: tests that need the AI layers patch the client explicitly
os.environ["GOOGLE_API_KEY"] = ""

from sinak.schemas.profile import BusinessProfile, DiagnosisData  # noqa: E402
from sinak.services.firestore_errors import error_monitor  # noqa: E402
from sinak.services.offline_handler import offline_handler  # noqa: E402


@pytest.fixture
def firestore_client():
    """
    Mock Firestore client.
    Returns a MagicMock that simulates the google-cloud-firestore client.
    """
    return MagicMock()


@pytest.fixture(autouse=True)
def reset_firestore_state():
    """Module-level resilience singletons must not leak between tests."""
    error_monitor.reset()
    offline_handler.is_offline = False
    offline_handler.auto_reconnect = False
    offline_handler.reconnect_attempts = 0
    offline_handler.clear_queue()
    yield
    error_monitor.reset()
    offline_handler.is_offline = False
    offline_handler.clear_queue()


@pytest.fixture
def survival_profile():
    return BusinessProfile(
        user_id="test-user-id",
        business_name="Warung Makan Bu Sari",
        business_category="food_beverage",
        business_stage="survival",
        employee_count=3,
        monthly_revenue=15000000,
        location="Bandung, Jawa Barat",
        challenges=["Pencatatan keuangan belum rapi"],
        goals=["Membuka cabang kedua"],
    )


@pytest.fixture
def survival_diagnosis():
    return DiagnosisData(
        current_stage="survival",
        strengths=["Pelanggan setia"],
        weaknesses=["Arus kas tidak tercatat"],
        opportunities=["Pesan antar online"],
    )
