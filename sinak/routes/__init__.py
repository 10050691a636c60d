"""
FastAPI routers for all API endpoints.

Each module defines a router for a specific area (profile, recommendations,
system diagnostics). Route handlers only authenticate, validate and map
domain errors to HTTP errors; the work happens in sinak/services.
"""
