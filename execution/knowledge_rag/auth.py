"""
Bearer token verification

Access tokens are issued by the dashboard's auth provider as HS256 JWTs
signed with a shared secret. The `sub` claim is the owner id used to scope
every knowledge base operation.
"""

import os
import logging
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_AUDIENCE = "authenticated"


def _get_jwt_secret() -> str:
    val = os.getenv("JWT_SECRET", "")
    if not val:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Set it to the auth provider's signing secret in .env or as an environment variable."
        )
    return val


def _get_jwt_audience() -> str:
    return os.getenv("JWT_AUDIENCE", DEFAULT_AUDIENCE)


def verify_access_token(token: str) -> Optional[dict]:
    """
    Verify an access token and extract the caller.

    Returns:
        Dict with user_id and email if valid; None if invalid/expired
    """
    if not token:
        return None
    try:
        payload = jwt.decode(
            token,
            _get_jwt_secret(),
            algorithms=[JWT_ALGORITHM],
            audience=_get_jwt_audience(),
        )
    except jwt.ExpiredSignatureError:
        logger.debug("JWT expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"JWT invalid: {e}")
        return None

    user_id = payload.get("sub")
    if not user_id:
        logger.debug("JWT has no subject")
        return None
    return {
        "user_id": str(user_id),
        "email": payload.get("email", ""),
    }


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
