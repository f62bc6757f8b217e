from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, cast

import jwt

from revision_api.config.settings import Settings


class InvalidTokenError(ValueError):
    """Raised when a bearer token cannot be verified or carries no subject."""


def create_access_token(
    *,
    subject: str,
    settings: Settings,
    claims: Mapping[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT access token.

    Tokens are normally minted by the identity service; this helper exists for
    local tooling and tests that need a token the API will accept.
    """

    now = datetime.now(tz=timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "iat": int(now.timestamp()),
    }
    if expires_delta is None:
        expires_delta = timedelta(minutes=15)
    payload["exp"] = int((now + expires_delta).timestamp())
    if claims:
        payload.update(claims)

    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """Decode and validate a JWT, returning the payload."""

    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    return cast(dict[str, Any], payload)


def subject_from_token(token: str, settings: Settings) -> str:
    """Return the user id carried in the ``sub`` claim of a verified token."""

    try:
        payload = decode_token(token, settings)
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Invalid or expired access token") from exc
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidTokenError("Access token has no subject")
    return subject


__all__ = [
    "InvalidTokenError",
    "create_access_token",
    "decode_token",
    "subject_from_token",
]
