"""
Logging utilities for the SiNaK backend.

Provides standardized logger configuration following the privacy rules below.

PRIVACY RULES:
- NEVER log Firebase ID tokens, service-account keys or the Gemini API key
- NEVER log full LLM completions (log the length and a short preview only)
- NEVER log monthly revenue or other financial figures from business profiles
- NEVER log diagnosis answers verbatim

Acceptable logging:
- High-level events (e.g., "Generating recommendations", "Offline queue replayed")
- Non-sensitive metadata (e.g., "stage='survival'", "count=7")
- Fallback decisions (e.g., "Enhanced AI failed, using rule-based recommendations")
- Error kinds and sanitized error messages
"""

import logging
from typing import Optional


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to INFO)

    Returns:
        Configured logger instance

    Usage:
        >>> from sinak.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("High-level event occurred")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.INFO

    logger.setLevel(level)

    # Add handler if not already configured (avoid duplicate handlers)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
