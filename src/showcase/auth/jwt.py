"""
Identity provider token verification.

The identity provider signs ID tokens (RS256 by default). This service only
verifies them; it never issues tokens. Claims are mapped to the fields the
social core needs: ``sub`` -> uid, plus display name, photo, email and role.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jwt

from showcase.config import get_settings

_public_key: str | None = None


@dataclass(frozen=True)
class IdentityClaims:
    uid: str
    display_name: str | None = None
    photo_url: str | None = None
    email: str | None = None
    role: str = "user"


def _load_key() -> str:
    """Verification key: the shared secret for HS* algorithms, else the public key file (cached)."""
    global _public_key  # noqa: PLW0603
    settings = get_settings()
    if settings.auth_jwt_algorithm.upper().startswith("HS"):
        return settings.auth_jwt_secret
    if _public_key is None:
        _public_key = Path(settings.auth_jwt_public_key_path).read_text()
    return _public_key


def reset_keys() -> None:
    """Reset the cached key (useful for testing)."""
    global _public_key  # noqa: PLW0603
    _public_key = None


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an identity token.

    Returns:
        Decoded payload dictionary.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    options = {"require": ["exp", "sub"]}
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _load_key(),
            algorithms=[settings.auth_jwt_algorithm],
            issuer=settings.auth_jwt_issuer,
            audience=settings.auth_jwt_audience,
            options={**options, "verify_aud": settings.auth_jwt_audience is not None},
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if not str(payload.get("sub", "")).strip():
        msg = "Token has no subject"
        raise jwt.InvalidTokenError(msg)
    return payload


def claims_from_payload(payload: dict[str, Any]) -> IdentityClaims:
    """Map identity provider claims to ``IdentityClaims``."""
    role = payload.get("role")
    if role is None and payload.get("admin") is True:
        role = "admin"
    return IdentityClaims(
        uid=str(payload["sub"]),
        display_name=payload.get("name") or payload.get("display_name"),
        photo_url=payload.get("picture"),
        email=payload.get("email"),
        role=role or "user",
    )
