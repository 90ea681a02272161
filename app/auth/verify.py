"""
verify.py
---------
Purpose:
    JWT verification using Supabase JWKS (ES256), plus the admin and Pro
    entitlement checks layered on top of it.

Notes:
    - Fetches JWKS from Supabase and caches keys.
    - `auth_dependency` for any signed-in user.
    - `admin_dependency` accepts the X-Admin-Token header (or development mode).
    - `pro_dependency` requires profiles.is_pro or the admin role.
"""

import hmac

import jwt
from fastapi import Depends, Header, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.middleware.error_handlers import ApiError
from app.repositories.profile_repository import ProfileRepository

logger = get_logger(__name__)

SUPABASE_AUDIENCE = "authenticated"
SUPABASE_ALGORITHMS = ["ES256"]

_jwk_client = PyJWKClient(settings.jwks_url())
_security = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        status.HTTP_401_UNAUTHORIZED,
        message,
        "unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_jwt(token: str) -> dict:
    """Decode a Supabase access token, checking signature, audience and expiry."""
    try:
        signing_key = _jwk_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=SUPABASE_ALGORITHMS,
            audience=SUPABASE_AUDIENCE,
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError as e:
        raise _unauthorized("Authentication token has expired") from e
    except (jwt.PyJWTError, jwt.PyJWKClientError) as e:
        logger.info("Rejected bearer token", error=str(e), error_type=type(e).__name__)
        raise _unauthorized(f"Invalid authentication token: {e}") from e


def auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Missing bearer token")
    return verify_jwt(credentials.credentials)


def get_user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        logger.error("No user ID in JWT claims")
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED, "Invalid token: missing user ID", "unauthorized"
        )
    return user_id


async def pro_dependency(claims: dict = Depends(auth_dependency)) -> dict:
    user_id = get_user_id(claims)

    profile = await ProfileRepository.get(user_id)
    if profile is None or not profile.has_pro_access:
        logger.info("Pro feature requested without subscription", user_id=user_id)
        raise ApiError(status.HTTP_403_FORBIDDEN, "Pro subscription required", "pro_required")

    return claims


def admin_dependency(x_admin_token: str | None = Header(default=None)) -> dict:
    if settings.environment == "development":
        return {"admin": True, "via": "development"}

    if not x_admin_token:
        raise ApiError(status.HTTP_401_UNAUTHORIZED, "Admin credentials required", "unauthorized")

    expected = settings.ADMIN_SECRET_KEY or ""
    if not expected or not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning("Rejected admin request with invalid token")
        raise ApiError(status.HTTP_403_FORBIDDEN, "Invalid admin credentials", "forbidden")

    return {"admin": True, "via": "token"}
