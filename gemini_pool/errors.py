from __future__ import annotations

from fastapi import status

INTERNAL_ERROR_MESSAGE = "Internal server error"


class GatewayError(Exception):
    """Base class for errors that are rendered as ``{"error": ...}`` responses."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    expose_message: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        if self.expose_message:
            return self.message
        return INTERNAL_ERROR_MESSAGE


class InvalidRequestError(GatewayError):
    """Caller input violates the chat protocol (bad role, turn order, body)."""

    status_code = status.HTTP_400_BAD_REQUEST
    expose_message = True


class AuthenticationError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    expose_message = True


class NotFoundError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    expose_message = True


class UpstreamError(GatewayError):
    """Gemini failed, timed out, or answered with something unusable.

    ``status`` and ``body`` are kept for server-side logging only.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class TranslationError(UpstreamError):
    pass


class StorageError(GatewayError):
    pass


class PoolConfigurationError(RuntimeError):
    """Raised at startup when the upstream key pool is empty or malformed."""
