"""
FastAPI dependency functions for authentication.

These functions are used as FastAPI dependencies to verify Firebase ID tokens
and extract the authenticated uid.

Firebase ID tokens are RS256 JWTs signed by Google's securetoken service.
Verification follows the Firebase Admin rules:
- signature checked against the public keys published at FIREBASE_JWKS_URL
- 'aud' must equal the Firebase project id
- 'iss' must equal https://securetoken.google.com/<project id>
- 'sub' (the uid) must be a non-empty string
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Dict

from fastapi import Header, HTTPException, status
from jwt import PyJWKClient, decode
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, PyJWKClientError

from sinak.config import settings

logger = logging.getLogger(__name__)

# Initialize JWKS client for fetching and caching Google's public keys
# The client automatically handles caching and key rotation (cache_keys=True by default)
_jwks_client: PyJWKClient | None = None


@dataclass
class AuthenticatedUser:
    """
    Represents an authenticated Firebase user.

    Attributes:
        user_id: The Firebase uid from the token's 'sub' claim
        email: Email claim, when the sign-in provider supplies one
        access_token: The raw ID token
    """
    user_id: str
    email: str | None
    access_token: str


def get_jwks_client() -> PyJWKClient:
    """
    Get or create the JWKS client instance.

    Lazy initialization ensures we only create the client when needed.
    The client caches JWKS responses to minimize network calls.

    Returns:
        PyJWKClient: Configured JWKS client for Firebase ID tokens

    Raises:
        ValueError: If FIREBASE_JWKS_URL is not configured
    """
    global _jwks_client

    if _jwks_client is None:
        jwks_url = settings.FIREBASE_JWKS_URL
        if not jwks_url:
            raise ValueError(
                "FIREBASE_JWKS_URL is not configured. "
                "Cannot verify Firebase ID tokens."
            )

        logger.info(f"Initializing JWKS client with URL: {jwks_url}")
        _jwks_client = PyJWKClient(
            jwks_url,
            cache_keys=True,  # Enable caching (default TTL is 300 seconds)
            max_cached_keys=16,  # Google rotates its securetoken keys regularly
        )

    return _jwks_client


def _unauthorized(error: str, details: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "details": details}
    )


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        logger.warning("Missing Authorization header")
        raise _unauthorized("unauthorized", "Missing Authorization header")

    # Extract token from "Bearer <token>" format
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Invalid Authorization header format")
        raise _unauthorized("unauthorized", "Invalid Authorization header format")

    return parts[1]


def decode_firebase_token(token: str) -> Dict[str, Any]:
    """
    Verify a Firebase ID token and return its claims.

    Raises:
        HTTPException: 401 if the token is invalid, expired or not for this project
    """
    if not settings.FIREBASE_PROJECT_ID:
        logger.error("FIREBASE_PROJECT_ID is not configured, cannot verify tokens")
        raise _unauthorized("unauthorized", "Authentication is not configured")

    try:
        jwks_client = get_jwks_client()

        # Fetch the signing key from JWKS based on the token's 'kid' header
        signing_key = jwks_client.get_signing_key_from_jwt(token)

        payload = decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.FIREBASE_PROJECT_ID,
            issuer=settings.FIREBASE_TOKEN_ISSUER,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": True,
                "verify_iss": True,
                "require": ["exp", "iat", "sub"],
            }
        )

    except ExpiredSignatureError:
        logger.warning("Token has expired")
        raise _unauthorized("token_expired", "Authentication token has expired")

    except PyJWKClientError as e:
        # JWKS fetch or key resolution errors
        logger.error(f"JWKS client error: {str(e)}")
        raise _unauthorized("jwks_error", "Unable to verify token signature")

    except InvalidTokenError as e:
        logger.warning(f"Invalid token: {str(e)}")
        raise _unauthorized("invalid_token", "Invalid authentication token")

    except Exception as e:
        # Catch-all for unexpected errors (should be rare)
        logger.error(f"Unexpected error during token verification: {str(e)}")
        raise _unauthorized("unauthorized", "Token verification failed")

    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        logger.error("Token payload missing 'sub' claim")
        raise _unauthorized("unauthorized", "Invalid token: missing user ID")

    return payload


async def verify_token(authorization: Annotated[str | None, Header()] = None) -> str:
    """
    Verify the Firebase ID token and return the uid.

    Security:
        - This is the ONLY source of truth for the uid
        - Any user id sent in a request body is ignored
        - Firestore paths are always built from this value

    Usage:
        @app.get("/protected")
        async def protected_route(user_id: str = Depends(verify_token)):
            pass
    """
    payload = decode_firebase_token(_extract_bearer_token(authorization))
    logger.info(f"Token verified successfully for user_id={payload['sub']}")
    return payload["sub"]


async def get_authenticated_user(
    authorization: Annotated[str | None, Header()] = None
) -> AuthenticatedUser:
    """
    Verify the Firebase ID token and return the authenticated user.

    Like verify_token(), but also carries the email claim (used when creating
    the user document) and the raw token.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired
    """
    token = _extract_bearer_token(authorization)
    payload = decode_firebase_token(token)
    user_id = payload["sub"]

    logger.info(f"Token verified successfully for user_id={user_id}")
    return AuthenticatedUser(user_id=user_id, email=payload.get("email"), access_token=token)
