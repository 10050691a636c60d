"""
Pydantic schemas for the /system diagnostics endpoints.

These expose the Firestore connection state, the offline queue and the
error monitor so that support staff can see why writes are being deferred.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class FirestoreStatusResponse(BaseModel):
    """Firestore client connection state and transaction guard counters."""
    initialized: bool
    healthy: bool
    retry_count: int
    max_retries: int
    can_retry: bool
    emulator: bool = Field(False, description="True when connected to the Firestore emulator")
    last_error: Optional[str] = Field(None)
    transactions: Dict[str, Any] = Field(default_factory=dict)


class OfflineStatusResponse(BaseModel):
    """Offline handler state."""
    is_offline: bool
    queued_operations: int
    reconnect_attempts: int
    max_reconnect_attempts: int
    last_online_at: Optional[str] = Field(None)
    last_offline_at: Optional[str] = Field(None)


class ReconnectResponse(BaseModel):
    reconnected: bool
    replayed: Dict[str, int] = Field(
        default_factory=dict,
        description="Offline queue replay counts (processed, requeued, failed)"
    )


class ErrorStatsResponse(BaseModel):
    """Firestore error monitor counters."""
    error_count: int
    max_errors: int
    fallback_mode: bool
    last_error_kind: Optional[str] = Field(None)
    last_error_message: Optional[str] = Field(None)
    last_error_at: Optional[str] = Field(None)
    by_kind: Dict[str, int] = Field(default_factory=dict)


class ConnectivityResponse(BaseModel):
    """Result of a live read probe against Firestore."""
    connected: bool
    latency_ms: Optional[float] = Field(None)
    error_kind: Optional[str] = Field(None)
    message: str
