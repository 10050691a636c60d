"""
Database access layer for the SiNaK Backend.

All user data lives under users/{uid} in Cloud Firestore:
- users/{uid}: profile, preferences, analytics, recommendations (inline)
- users/{uid}/data/recommendations: recommendation list when the inline
  payload would exceed the size threshold

Every document path MUST be built from the verified Firebase uid.

Includes:
- Firebase Admin initialization (service account, ADC or emulator)
- Process-wide connection state used by health and system endpoints
"""

from .client import (
    get_firestore_client,
    get_firestore_status,
    is_firestore_healthy,
    mark_firestore_healthy,
    mark_firestore_unhealthy,
    reset_firestore_client,
    retry_firestore_connection,
)

__all__ = [
    "get_firestore_client",
    "get_firestore_status",
    "is_firestore_healthy",
    "mark_firestore_healthy",
    "mark_firestore_unhealthy",
    "reset_firestore_client",
    "retry_firestore_connection",
]
