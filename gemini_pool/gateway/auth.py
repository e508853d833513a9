from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Request
from jwt import InvalidTokenError

from gemini_pool.config.settings import Settings
from gemini_pool.errors import AuthenticationError
from gemini_pool.storage.repository import ApiKeyRepository

logger = logging.getLogger("uvicorn.error")

ADMIN_TOKEN_ALGORITHM = "HS256"


@dataclass(slots=True)
class AuthResult:
    method: str
    principal: str
    api_key_id: str | None = None
    claims: dict[str, Any] | None = None


def parse_bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing Bearer token.")
    return token.strip()


class CallerAuthenticator:
    """Checks inbound ``/v1`` bearer keys against the credential directory."""

    def __init__(self, repository: ApiKeyRepository, *, required: bool = True) -> None:
        self.repository = repository
        self.required = required

    async def authenticate_request(self, request: Request) -> AuthResult | None:
        if not self.required:
            request.state.auth = None
            return None

        bearer_token = parse_bearer_token(request)
        record = await asyncio.to_thread(self.repository.find_by_secret, bearer_token)
        if record is None or not record.is_active:
            raise AuthenticationError("Invalid API key.")

        result = AuthResult(
            method="api_key",
            principal=record.key_name,
            api_key_id=record.id,
        )
        request.state.auth = result
        return result


class AdminSessionManager:
    """Issues and verifies stateless, time-limited admin session tokens."""

    def __init__(
        self,
        *,
        username: str,
        password: str | None,
        secret: str,
        ttl_seconds: int = 24 * 60 * 60,
    ) -> None:
        self.username = username
        self.password = password
        self.secret = secret
        self.ttl = timedelta(seconds=max(1, int(ttl_seconds)))

    @classmethod
    def from_settings(cls, settings: Settings) -> AdminSessionManager:
        secret = settings.admin_jwt_secret
        if not secret:
            secret = secrets.token_urlsafe(48)
            logger.warning(
                "admin_jwt_secret_missing generated=true "
                "note=admin sessions will not survive a restart"
            )
        if not settings.admin_password:
            logger.warning("admin_password_missing admin_login_disabled=true")
        return cls(
            username=settings.admin_username,
            password=settings.admin_password,
            secret=secret,
            ttl_seconds=settings.admin_token_ttl_seconds,
        )

    def login(self, username: str, password: str) -> str:
        if not self.password:
            raise AuthenticationError("Invalid username or password")
        username_ok = secrets.compare_digest(
            username.encode("utf-8"), self.username.encode("utf-8")
        )
        password_ok = secrets.compare_digest(
            password.encode("utf-8"), self.password.encode("utf-8")
        )
        if not (username_ok and password_ok):
            raise AuthenticationError("Invalid username or password")
        return self.issue_token(username)

    def issue_token(self, subject: str, *, now: datetime | None = None) -> str:
        issued_at = now or datetime.now(UTC)
        claims = {
            "sub": subject,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=ADMIN_TOKEN_ALGORITHM)

    def verify(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[ADMIN_TOKEN_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except InvalidTokenError as exc:
            raise AuthenticationError("Invalid or expired token") from exc

    def authenticate_request(self, request: Request) -> AuthResult:
        claims = self.verify(parse_bearer_token(request))
        result = AuthResult(method="admin", principal=str(claims["sub"]), claims=claims)
        request.state.auth = result
        return result
