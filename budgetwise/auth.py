"""Password hashing and bearer-token helpers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError
from passlib.context import CryptContext

from .config import Settings
from .errors import AuthError
from .models import MAX_ID

LOG = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(user_id: int, settings: Settings, now: datetime | None = None) -> str:
    issued = now or datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(days=settings.token_expiry_days),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str, settings: Settings) -> int:
    """Return the user id carried by ``token``.

    Raises:
        AuthError: If the token is malformed, expired or lacks a subject.
    """

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except InvalidTokenError as exc:
        LOG.debug("Token verification failed: %s", exc)
        raise AuthError("Invalid or expired token.") from exc
    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid or expired token.") from exc
    if not 0 < user_id <= MAX_ID:
        raise AuthError("Invalid or expired token.")
    return user_id


def current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> int:
    """FastAPI dependency resolving the authenticated user id."""

    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Authorization token required.")
    settings: Settings = request.app.state.settings
    return decode_token(credentials.credentials, settings)
