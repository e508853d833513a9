from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from gemini_pool.errors import InvalidRequestError
from gemini_pool.gateway.auth import AdminSessionManager
from gemini_pool.storage.repository import ApiKeyRepository

logger = logging.getLogger("uvicorn.error")

ADMIN_LOGIN_PATH = "/admin/api/auth/login"

router = APIRouter(prefix="/admin/api")


class LoginRequest(BaseModel):
    username: str
    password: str


class CreateApiKeyRequest(BaseModel):
    key_name: str
    api_key: str | None = None


class UpdateApiKeyRequest(BaseModel):
    key_name: str | None = None
    is_active: bool | None = None


def _repository(request: Request) -> ApiKeyRepository:
    return request.app.state.repository


def _sessions(request: Request) -> AdminSessionManager:
    return request.app.state.admin_sessions


def _required_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise InvalidRequestError("API key name is required")
    return name


@router.post("/auth/login")
async def login(body: LoginRequest, request: Request) -> dict[str, str]:
    token = _sessions(request).login(body.username, body.password)
    logger.info("admin_login username=%s", body.username)
    return {"token": token}


@router.get("/auth/verify")
async def verify() -> dict[str, str]:
    # The admin middleware has already checked the token by the time we get here.
    return {"status": "valid"}


@router.get("/dashboard")
async def dashboard(request: Request) -> dict[str, int]:
    stats = await asyncio.to_thread(_repository(request).dashboard_stats)
    return stats.to_dict()


@router.get("/api-keys")
async def list_api_keys(request: Request) -> list[dict[str, Any]]:
    records = await asyncio.to_thread(_repository(request).list_keys)
    return [record.to_dict() for record in records]


@router.post("/api-keys")
async def create_api_key(body: CreateApiKeyRequest, request: Request) -> dict[str, str]:
    key_name = _required_name(body.key_name)
    custom_key = body.api_key.strip() if body.api_key else None
    record = await asyncio.to_thread(
        _repository(request).create_key, key_name, custom_key or None
    )
    logger.info("admin_api_key_created id=%s key_name=%s", record.id, record.key_name)
    return {"id": record.id, "api_key": record.api_key}


@router.get("/api-keys/{key_id}")
async def get_api_key(key_id: str, request: Request) -> dict[str, Any]:
    record = await asyncio.to_thread(_repository(request).get_key, key_id)
    return record.to_dict()


@router.put("/api-keys/{key_id}")
async def update_api_key(
    key_id: str, body: UpdateApiKeyRequest, request: Request
) -> dict[str, str]:
    key_name = _required_name(body.key_name) if body.key_name is not None else None
    await asyncio.to_thread(
        _repository(request).update_key,
        key_id,
        key_name=key_name,
        is_active=body.is_active,
    )
    logger.info(
        "admin_api_key_updated id=%s key_name=%s is_active=%s",
        key_id,
        key_name,
        body.is_active,
    )
    return {"message": "API key updated"}


@router.delete("/api-keys/{key_id}")
async def delete_api_key(key_id: str, request: Request) -> dict[str, str]:
    await asyncio.to_thread(_repository(request).delete_key, key_id)
    logger.info("admin_api_key_deleted id=%s", key_id)
    return {"message": "API key deleted"}


@router.get("/api-keys/{key_id}/usage")
async def api_key_usage(
    key_id: str,
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[dict[str, Any]]:
    entries = await asyncio.to_thread(_repository(request).usage_entries, key_id, limit)
    return [entry.to_dict() for entry in entries]
