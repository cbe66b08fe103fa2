"""
JWT access token verification.

Tokens are issued by the external auth service. HS256 tokens are checked
against the shared secret; with ``jwt_algorithm=RS256`` the public key at
``jwt_public_key_path`` is used instead.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from tilawa.config import get_settings

_public_key: str | None = None


def _verification_key() -> str:
    """Key used to verify signatures (cached after first read)."""
    global _public_key  # noqa: PLW0603
    settings = get_settings()
    if settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_secret
    if _public_key is None:
        if not settings.jwt_public_key_path:
            msg = f"jwt_public_key_path is required for {settings.jwt_algorithm}"
            raise RuntimeError(msg)
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset the cached public key (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def create_access_token(user_id: int, role: str = "child") -> str:
    """
    Create a short-lived HS256 access token.

    Only used by tooling and tests; production tokens come from the auth service.

    Args:
        user_id: The user's database ID.
        role: The user's role claim.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _verification_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload
