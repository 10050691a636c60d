"""
Pydantic schemas for the user document and business profile endpoints.

The user document lives at users/{uid} in Firestore and holds the business
profile, UI preferences and usage analytics. The diagnosis questionnaire that
produces DiagnosisData runs on the client; the backend only consumes its result.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# --- Business profile and diagnosis input ---

class BusinessProfile(BaseModel):
    """
    Descriptive record of a UMKM business.

    No invariants beyond presence defaults; every field except the name may be
    unknown when the user has not completed onboarding.
    """
    user_id: Optional[str] = Field(None, description="Firebase uid of the owner")
    business_name: str = Field(
        "Bisnis Baru",
        description="Business name",
        max_length=200,
        examples=["Warung Makan Bu Sari"]
    )
    business_category: Optional[str] = Field(
        None,
        description="Business category",
        examples=["food_beverage", "retail", "services"]
    )
    business_stage: Optional[str] = Field(
        None,
        description="Churchill & Lewis growth stage",
        examples=["existence", "survival", "success", "takeoff", "resource_maturity"]
    )
    employee_count: Optional[int] = Field(None, ge=0, description="Number of employees")
    monthly_revenue: Optional[float] = Field(None, ge=0, description="Monthly revenue in Rupiah")
    business_age: Optional[float] = Field(None, ge=0, description="Business age in years")
    location: Optional[str] = Field(None, max_length=200, examples=["Bandung, Jawa Barat"])
    challenges: List[str] = Field(default_factory=list, description="Main challenges")
    goals: List[str] = Field(default_factory=list, description="Business goals")


class DiagnosisData(BaseModel):
    """Result of the client-side self-diagnosis questionnaire."""
    current_stage: Optional[str] = Field(
        None,
        description="Stage determined by the diagnosis",
        examples=["survival"]
    )
    answers: Dict[str, Any] = Field(default_factory=dict, description="Raw questionnaire answers")
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    opportunities: List[str] = Field(default_factory=list)


# --- User document models ---

class UserPreferences(BaseModel):
    """UI preferences stored on the user document."""
    language: str = Field("id", description="Interface language")
    notifications: bool = Field(True, description="Whether notifications are enabled")
    theme: str = Field("light", description="UI theme", examples=["light", "dark"])


class UserDocumentCreateRequest(BaseModel):
    """
    Request to create (or upsert) the authenticated user's document.

    Existing documents are merged: nested blocks keep fields that are not sent.
    """
    email: Optional[str] = Field(None, description="Account email")
    business_name: Optional[str] = Field(None, max_length=200, description="Business name")
    business_profile: Optional[Dict[str, Any]] = Field(None, description="Partial business profile")
    preferences: Optional[Dict[str, Any]] = Field(None, description="Partial preferences")
    onboarding_completed: Optional[bool] = Field(None)


class UserDocumentUpdateRequest(BaseModel):
    """
    Request to update the user document.

    All fields are optional - only provided fields will be updated.
    At least one field must be provided.
    """
    business_name: Optional[str] = Field(None, min_length=1, max_length=200)
    business_profile: Optional[Dict[str, Any]] = Field(None, description="Business profile fields to overwrite")
    preferences: Optional[Dict[str, Any]] = Field(None, description="Preference fields to overwrite")
    onboarding_completed: Optional[bool] = Field(None)


class UserDocumentResponse(BaseModel):
    """Response for GET /profile - the stored user document."""
    uid: str = Field(..., description="Firebase uid")
    email: Optional[str] = Field(None)
    business_name: Optional[str] = Field(None)
    business_profile: Dict[str, Any] = Field(default_factory=dict)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    analytics: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = Field(True)
    onboarding_completed: bool = Field(False)
    recommendations_count: int = Field(0, description="Number of stored recommendations")


class UserDocumentWriteResponse(BaseModel):
    """Response for POST/PATCH /profile."""
    status: str = Field(..., description="WRITTEN when stored, QUEUED when deferred until reconnect")
    message: str = Field(..., description="Human-readable result")
