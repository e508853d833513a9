from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from gemini_pool.config.settings import get_settings
from gemini_pool.errors import GatewayError, InvalidRequestError, UpstreamError
from gemini_pool.gateway.auth import (
    AdminSessionManager,
    AuthResult,
    CallerAuthenticator,
)
from gemini_pool.gateway.handler import ChatGateway
from gemini_pool.gateway.upstream import GeminiClient
from gemini_pool.runtime.key_pool import KeyPool
from gemini_pool.server import admin
from gemini_pool.storage.repository import ApiKeyRepository

logger = logging.getLogger("uvicorn.error")

ENDPOINTS = [
    {
        "path": "/",
        "methods": ["GET"],
        "description": "Lists all available endpoints.",
    },
    {
        "path": "/v1/chat/completions",
        "methods": ["POST"],
        "description": "OpenAI-compatible chat completions endpoint.",
    },
    {
        "path": "/v1/models",
        "methods": ["GET"],
        "description": "Lists all available models.",
    },
]


@asynccontextmanager
async def lifespan(app_obj: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    pool = KeyPool(settings.load_rotation_keys())
    repository = ApiKeyRepository(
        settings.database_path, api_key_prefix=settings.api_key_prefix
    )
    await asyncio.to_thread(repository.initialize)
    client = GeminiClient(
        base_url=settings.gemini_base_url,
        api_version=settings.gemini_api_version,
        timeout_seconds=settings.upstream_timeout_seconds,
        connect_timeout_seconds=settings.upstream_connect_timeout_seconds,
    )

    app_obj.state.settings = settings
    app_obj.state.repository = repository
    app_obj.state.caller_authenticator = CallerAuthenticator(
        repository, required=settings.caller_auth_required
    )
    app_obj.state.admin_sessions = AdminSessionManager.from_settings(settings)
    app_obj.state.gemini_client = client
    app_obj.state.gateway = ChatGateway(pool=pool, client=client, repository=repository)
    logger.info(
        "startup complete pool_keys=%d database_path=%s gemini_base_url=%s "
        "caller_auth_required=%s",
        len(pool),
        settings.database_path,
        settings.gemini_base_url,
        settings.caller_auth_required,
    )
    try:
        yield
    finally:
        await client.close()
        logger.info("shutdown complete")


app = FastAPI(
    title="Gemini Pool",
    description="OpenAI-compatible gateway in front of a rotating pool of Gemini API keys.",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(admin.router)


def _error_response(exc: GatewayError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.middleware("http")
async def auth_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    path = request.url.path
    try:
        if path.startswith("/v1"):
            authenticator: CallerAuthenticator = app.state.caller_authenticator
            await authenticator.authenticate_request(request)
        elif path.startswith("/admin/api") and path != admin.ADMIN_LOGIN_PATH:
            sessions: AdminSessionManager = app.state.admin_sessions
            sessions.authenticate_request(request)
    except GatewayError as exc:
        logger.info(
            "auth_rejected path=%s error_type=%s reason=%s",
            path,
            exc.__class__.__name__,
            exc.message,
        )
        return _error_response(exc)

    return await call_next(request)


@app.get("/")
async def root() -> dict[str, Any]:
    return {"message": "Welcome to the Gemini API Pool!", "endpoints": ENDPOINTS}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/v1/models")
async def models() -> dict[str, Any]:
    gateway: ChatGateway = app.state.gateway
    model_list = await gateway.list_models()
    return model_list.model_dump()


@app.post("/v1/chat/completions")
async def chat_completions(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequestError(f"Expected JSON body: {exc}") from exc

    auth: AuthResult | None = getattr(request.state, "auth", None)
    request_id = (
        request.headers.get("x-request-id")
        or request.headers.get("x-correlation-id")
        or uuid4().hex[:12]
    )
    gateway: ChatGateway = app.state.gateway
    response = await gateway.chat_completion(
        payload,
        caller_key_id=auth.api_key_id if auth is not None else None,
        request_id=request_id,
    )
    return response.model_dump()


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error(
            "upstream_failure path=%s error_type=%s status=%s error=%s",
            request.url.path,
            exc.__class__.__name__,
            exc.status,
            exc.message,
        )
    elif exc.status_code >= 500:
        logger.error(
            "internal_error path=%s error_type=%s error=%s",
            request.url.path,
            exc.__class__.__name__,
            exc.message,
        )
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request body."
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid request body: {location}: {first.get('msg', 'invalid value')}"
    return JSONResponse(status_code=400, content={"error": message})


def run() -> None:
    import uvicorn

    host, port = get_settings().listen_host_port
    uvicorn.run("gemini_pool.server.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    run()
