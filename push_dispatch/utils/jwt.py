"""JWT utilities for identifying the caller of a dispatch request"""
from typing import Optional
import jwt
import logging

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class TokenError(Exception):
    """Custom exception for token-related errors"""
    pass


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Pull the token out of an Authorization header value.

    Example:
        >>> extract_bearer_token("Bearer abc.def.ghi")
        'abc.def.ghi'
        >>> extract_bearer_token("Basic xyz") is None
        True
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


def decode_subject(token: str) -> str:
    """
    Read the ``sub`` claim of a session JWT.

    The signature is not verified: session tokens are issued and verified
    by the identity service in front of this one, and only the subject is
    trusted here.

    Args:
        token: JWT string

    Returns:
        Subject (caller user ID)

    Raises:
        TokenError: If the token is malformed or has no string subject
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug(f"Undecodable bearer token: {e}")
        raise TokenError("Invalid token") from e

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenError("Token has no subject")
    return subject


def get_caller_id(authorization: Optional[str]) -> Optional[str]:
    """Caller identity from an Authorization header, or None if not derivable."""
    token = extract_bearer_token(authorization)
    if token is None:
        return None
    try:
        return decode_subject(token)
    except TokenError:
        return None
