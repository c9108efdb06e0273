"""
Security utilities for identifying the acting user

Tokens are issued by the hosted backend's auth service; this service only
verifies them and reads the subject claim. Login, refresh and sign-up flows
live with the hosted backend.
"""
from typing import Optional, Dict, Any

import jwt

from app.core.settings import settings


# ============================================================================
# JWT TOKEN VALIDATION
# ============================================================================

def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a bearer token from the hosted backend

    Args:
        token: JWT token string to decode

    Returns:
        Token payload dict if valid, None if invalid/expired
    """
    options = {"require": ["exp", "sub"]}
    if not settings.JWT_AUDIENCE:
        options["verify_aud"] = False

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options=options,
        )
        return payload
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        # Tampered, malformed, wrong audience, missing claims
        return None


def get_user_from_token(token: str) -> Optional[str]:
    """
    Extract the acting user ID from a bearer token

    User IDs in the hosted backend are UUID strings, so the subject claim is
    returned as-is.

    Args:
        token: JWT token string

    Returns:
        User ID if token is valid, None otherwise
    """
    payload = decode_token(token)

    if payload is None:
        return None

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id.strip():
        return None

    return user_id
