from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from gemini_pool.errors import UpstreamError
from gemini_pool.gateway.schemas import GeminiModelList, GeminiRequest, GeminiResponse
from gemini_pool.runtime.key_pool import key_suffix

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T", bound=BaseModel)


def _request_error_details(exc: httpx.RequestError) -> dict[str, Any]:
    error_type = exc.__class__.__name__.strip() or "RequestError"
    details: dict[str, Any] = {
        "error": str(exc).strip() or repr(exc),
        "error_type": error_type,
        "is_timeout": isinstance(exc, httpx.TimeoutException),
    }
    request = getattr(exc, "_request", None)
    if isinstance(request, httpx.Request):
        details["request_method"] = request.method
        details["request_path"] = request.url.path
    return details


class GeminiClient:
    """Thin async client for the two Gemini endpoints the gateway uses.

    Every failure mode (transport error, timeout, non-2xx status, body that
    does not parse) is raised as :class:`UpstreamError` with the upstream
    status and body attached for logging.
    """

    def __init__(
        self,
        base_url: str,
        api_version: str = "v1beta",
        timeout_seconds: float = 60.0,
        connect_timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version.strip("/")
        read_timeout = max(0.1, float(timeout_seconds))
        connect_timeout = (
            max(0.1, float(connect_timeout_seconds))
            if connect_timeout_seconds is not None
            else max(0.1, min(5.0, read_timeout))
        )
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout=read_timeout,
                connect=connect_timeout,
            ),
            limits=httpx.Limits(max_connections=256, max_keepalive_connections=64),
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.api_version}/{path}"

    async def generate_content(
        self,
        *,
        model: str,
        api_key: str,
        request: GeminiRequest,
    ) -> GeminiResponse:
        url = self._url(f"models/{quote(model, safe='.-_')}:generateContent")
        upstream = await self._send(
            "POST",
            url,
            api_key=api_key,
            operation="generate_content",
            json=request.to_payload(),
        )
        return self._parse(upstream, GeminiResponse, operation="generate_content")

    async def list_models(self, *, api_key: str) -> GeminiModelList:
        upstream = await self._send(
            "GET",
            self._url("models"),
            api_key=api_key,
            operation="list_models",
        )
        return self._parse(upstream, GeminiModelList, operation="list_models")

    async def _send(
        self,
        method: str,
        url: str,
        *,
        api_key: str,
        operation: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            upstream = await self.client.request(
                method, url, params={"key": api_key}, json=json
            )
        except httpx.RequestError as exc:
            details = _request_error_details(exc)
            logger.error(
                "gemini_request_error operation=%s key_suffix=%s error_type=%s "
                "is_timeout=%s error=%s",
                operation,
                key_suffix(api_key),
                details["error_type"],
                details["is_timeout"],
                details["error"],
            )
            raise UpstreamError(
                f"Could not reach Gemini ({details['error_type']}): {details['error']}"
            ) from exc

        if upstream.is_success:
            return upstream

        body = upstream.text
        logger.error(
            "gemini_error_status operation=%s key_suffix=%s status=%d body=%s",
            operation,
            key_suffix(api_key),
            upstream.status_code,
            body,
        )
        raise UpstreamError(
            f"Upstream Gemini API error: {upstream.status_code}",
            status=upstream.status_code,
            body=body,
        )

    @staticmethod
    def _parse(
        upstream: httpx.Response, schema: type[T], *, operation: str
    ) -> T:
        body = upstream.text
        try:
            return schema.model_validate_json(body)
        except ValidationError as exc:
            logger.error(
                "gemini_invalid_body operation=%s status=%d error=%s body=%s",
                operation,
                upstream.status_code,
                exc.errors(include_url=False),
                body,
            )
            raise UpstreamError(
                "Failed to deserialize upstream Gemini response",
                status=upstream.status_code,
                body=body,
            ) from exc
