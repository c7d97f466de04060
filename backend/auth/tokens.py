"""Caller identity tokens.

Login happens in the platform's identity layer; what reaches the credential
authority is an HS256 JWT carrying user_id + env. This module only answers
"who is asking" for a request. generate_token() exists for dev fixtures.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, ValidationError

from config.settings import get_settings
from core.exceptions import AuthError

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_SECONDS = 3600


class TokenClaims(BaseModel):
    user_id: str
    env: str
    iat: float
    exp: float


def _signing_key() -> str:
    # Fail closed: an empty key would accept tokens signed with ""
    secret = get_settings().JWT_SECRET
    if not secret:
        raise AuthError("JWT secret is not configured")
    return secret


def generate_token(
    user_id: str,
    env: Optional[str] = None,
    expires_in_s: int = DEFAULT_EXPIRY_SECONDS,
) -> str:
    settings = get_settings()
    issued = datetime.now(timezone.utc)
    claims = TokenClaims(
        user_id=user_id,
        env=env or settings.ENV,
        iat=issued.timestamp(),
        exp=(issued + timedelta(seconds=expires_in_s)).timestamp(),
    )
    return jwt.encode(claims.model_dump(), _signing_key(), algorithm=settings.JWT_ALGORITHM)


def validate_token(token: str) -> TokenClaims:
    """Decode a caller JWT and check it belongs to this environment. Raises AuthError."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, _signing_key(), algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Caller token expired")
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid caller token: %s", str(e))
        raise AuthError(f"Invalid token: {str(e)}")

    try:
        claims = TokenClaims(**payload)
    except ValidationError as e:
        raise AuthError(f"Invalid token claims: {e.error_count()} missing or malformed")

    if claims.env != settings.ENV:
        logger.warning("Cross-env token rejected: user=%s token_env=%s", claims.user_id, claims.env)
        raise AuthError(f"Token env={claims.env} does not match server env={settings.ENV}")
    return claims


def bearer_token(authorization: Optional[str]) -> str:
    """Token part of an `Authorization: Bearer <token>` header."""
    if not authorization:
        raise AuthError("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Invalid authorization header")
    return token.strip()
