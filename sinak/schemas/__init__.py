"""
Pydantic schemas for API request and response validation.

All FastAPI endpoints MUST use strict Pydantic models with explicit types.
Stored recommendation records are validated with the same models on load.
"""
