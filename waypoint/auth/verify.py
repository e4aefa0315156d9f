"""
verify.py
---------
Purpose:
    Bearer JWT verification for the public and admin APIs.

Notes:
    - Asymmetric tokens (ES256/RS256) are verified against the identity
      provider's JWKS; keys are fetched and cached by PyJWKClient.
    - When AUTH_JWT_SECRET is set, HS256 tokens signed with it are accepted.
    - `auth_dependency` -> 401 when the credential is missing or invalid.
    - `admin_dependency` -> 403 when a valid credential lacks the admin claim.
"""

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from waypoint.config import settings
from waypoint.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ASYMMETRIC_ALGORITHMS = ["ES256", "RS256"]

_jwk_client = PyJWKClient(settings.AUTH_JWKS_URL)
_security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    options = {"verify_exp": True, "verify_aud": settings.AUTH_AUDIENCE is not None}
    try:
        header = jwt.get_unverified_header(token)
        if header.get("alg") == "HS256" and settings.AUTH_JWT_SECRET:
            return jwt.decode(
                token,
                settings.AUTH_JWT_SECRET,
                algorithms=["HS256"],
                audience=settings.AUTH_AUDIENCE,
                options=options,
            )

        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=ASYMMETRIC_ALGORITHMS,
            audience=settings.AUTH_AUDIENCE,
            options=options,
        )
    except jwt.PyJWTError as e:
        raise _unauthorized(f"Invalid authentication token: {e}") from e


def is_admin(claims: dict) -> bool:
    """True if the claims carry the administrator capability."""
    if claims.get(settings.AUTH_ADMIN_CLAIM) is True:
        return True
    app_metadata = claims.get("app_metadata") or {}
    return app_metadata.get("role") == "admin"


def auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")

    claims = verify_jwt(credentials.credentials)
    if not claims.get("sub"):
        raise _unauthorized("Invalid token: missing user ID")
    return claims


def admin_dependency(claims: dict = Depends(auth_dependency)) -> dict:
    if not is_admin(claims):
        logger.warning("Admin access denied", user_id=claims.get("sub"))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return claims
