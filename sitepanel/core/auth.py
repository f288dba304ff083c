"""Validation of the panel's bearer session tokens."""

from __future__ import annotations

import os
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

__all__ = [
    "SessionTokenConfigurationError",
    "SessionTokenPayload",
    "SessionTokenValidationError",
    "decode_session_token",
    "get_session_claims",
]


class SessionTokenConfigurationError(RuntimeError):
    """Raised when session token configuration is invalid."""


class SessionTokenValidationError(ValueError):
    """Raised when the provided session token cannot be validated."""


class _SessionTokenRequiredClaims(TypedDict):
    user_id: str
    org_id: str


class SessionTokenPayload(_SessionTokenRequiredClaims, total=False):
    """Decoded JWT payload identifying a panel user and organisation."""

    aud: str | list[str]
    banned: bool
    exp: int
    iat: int
    iss: str
    roles: list[str]
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    """Fetch an environment variable with optional requirement enforcement.

    Raises:
        SessionTokenConfigurationError: If ``required`` is ``True`` and the
            variable is missing or blank.
    """

    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise SessionTokenConfigurationError(
            f"Environment variable '{name}' must be set for session token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def decode_session_token(token: str) -> SessionTokenPayload:
    """Decode and validate a panel access token.

    Args:
        token: Encoded JWT token string from the ``Authorization`` header.

    Returns:
        SessionTokenPayload: Parsed payload containing user and organisation ids.

    Raises:
        SessionTokenConfigurationError: If mandatory environment configuration is missing.
        SessionTokenValidationError: If token signature, claims, or expiry are invalid.
    """

    secret_key = _get_env("PANEL_TOKEN_SECRET")
    audience = _get_env("PANEL_TOKEN_AUDIENCE")
    issuer = _get_env("PANEL_TOKEN_ISSUER")
    algorithm = _get_env("PANEL_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise SessionTokenValidationError("Session token has expired.") from exc
    except InvalidTokenError as exc:
        raise SessionTokenValidationError("Session token is invalid.") from exc

    if not payload.get("user_id") or not payload.get("org_id"):
        raise SessionTokenValidationError(
            "Session token payload must include 'user_id' and 'org_id'.",
        )
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise SessionTokenValidationError("Session token must be an access token.")

    return cast(SessionTokenPayload, payload)


async def get_session_claims(request: Request) -> SessionTokenPayload:
    """Extract the caller's session claims from the ``Authorization`` header.

    Raises:
        HTTPException: With status ``401`` when the header is missing or invalid,
            or ``500`` if the token configuration is incorrect.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_session_token(credentials.strip())
    except SessionTokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except SessionTokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
