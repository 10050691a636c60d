"""
Configuration module for the SiNaK backend.

Loads environment variables and validates required settings.
"""
import os
from typing import List
from dotenv import load_dotenv

# Load .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    # Firebase Configuration
    FIREBASE_PROJECT_ID: str = os.getenv("FIREBASE_PROJECT_ID", "")
    # Path to a service-account JSON file; empty means application default credentials
    FIREBASE_CREDENTIALS_PATH: str = os.getenv("FIREBASE_CREDENTIALS_PATH", "")
    FIRESTORE_EMULATOR_HOST: str = os.getenv("FIRESTORE_EMULATOR_HOST", "")

    # Firebase ID tokens are signed by the securetoken service account.
    # The JWKS endpoint is the same for every project.
    FIREBASE_JWKS_URL: str = os.getenv(
        "FIREBASE_JWKS_URL",
        "https://www.googleapis.com/service_accounts/v1/jwk/"
        "securetoken@system.gserviceaccount.com",
    )

    @property
    def FIREBASE_TOKEN_ISSUER(self) -> str:
        """Get the expected 'iss' claim for Firebase ID tokens."""
        if not self.FIREBASE_PROJECT_ID:
            return ""
        return f"https://securetoken.google.com/{self.FIREBASE_PROJECT_ID}"

    # Firestore resilience
    FIRESTORE_DISABLED: bool = _env_bool("FIRESTORE_DISABLED")
    FIRESTORE_FALLBACK_MODE: bool = _env_bool("FIRESTORE_FALLBACK_MODE")
    FIRESTORE_READ_TIMEOUT: float = float(os.getenv("FIRESTORE_READ_TIMEOUT", "15"))
    FIRESTORE_OPERATION_TIMEOUT: float = float(os.getenv("FIRESTORE_OPERATION_TIMEOUT", "30"))
    OFFLINE_AUTO_RECONNECT: bool = _env_bool("OFFLINE_AUTO_RECONNECT", "true")

    # Google Gemini API
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

    # Recommendation generation
    AI_BYPASS_MODE: bool = _env_bool("AI_BYPASS_MODE")
    AI_FALLBACK_ENABLED: bool = _env_bool("AI_FALLBACK_ENABLED", "true")
    AI_MAX_RETRIES: int = int(os.getenv("AI_MAX_RETRIES", "3"))
    AI_RETRY_DELAY: float = float(os.getenv("AI_RETRY_DELAY", "1.0"))
    AI_TIMEOUT: float = float(os.getenv("AI_TIMEOUT", "45"))

    # Recommendation tracking
    SAVE_DEBOUNCE_SECONDS: float = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "1.0"))

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS Settings
    CORS_ALLOWED_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]

    @property
    def ai_enabled(self) -> bool:
        """Gemini is only called when an API key is configured."""
        return bool(self.GOOGLE_API_KEY)

    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required settings are configured.

        Raises:
            ValueError: If any required setting is missing.
        """
        required_settings = {
            "FIREBASE_PROJECT_ID": cls.FIREBASE_PROJECT_ID,
        }

        missing = [key for key, value in required_settings.items() if not value]

        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Please check your .env file."
            )

    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment."""
        return cls.ENVIRONMENT.lower() == "production"

    @classmethod
    def is_staging(cls) -> bool:
        """Check if running in staging environment."""
        return cls.ENVIRONMENT.lower() == "staging"

    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment."""
        return cls.ENVIRONMENT.lower() == "development"


# Create a singleton instance
settings = Settings()

# Validate settings on module import (will fail fast if misconfigured)
# Skip validation during tests or when importing for introspection
if os.getenv("VALIDATE_CONFIG", "true").lower() == "true":
    try:
        settings.validate()
    except ValueError as e:
        # In development, warn but don't crash
        if settings.is_development():
            print(f"⚠️  Warning: {e}")
            print("   The app may not work correctly until you configure your .env file.")
        else:
            # In production or staging, fail immediately
            raise
