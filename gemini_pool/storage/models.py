from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(slots=True)
class ApiKeyRecord:
    id: str
    key_name: str
    api_key: str
    is_active: bool
    created_at: str
    total_requests: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ApiKeyRecord:
        return cls(
            id=row["id"],
            key_name=row["key_name"],
            api_key=row["api_key"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            total_requests=int(row["total_requests"]),
            total_input_tokens=int(row["total_input_tokens"]),
            total_output_tokens=int(row["total_output_tokens"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class UsageLogEntry:
    """One gateway call. Rows are append-only and only go away with their key."""

    id: str
    api_key_id: str
    created_at: str
    endpoint: str
    model: str
    input_tokens: int
    output_tokens: int
    success: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> UsageLogEntry:
        return cls(
            id=row["id"],
            api_key_id=row["api_key_id"],
            created_at=row["created_at"],
            endpoint=row["endpoint"],
            model=row["model"],
            input_tokens=int(row["input_tokens"]),
            output_tokens=int(row["output_tokens"]),
            success=bool(row["success"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DashboardStats:
    total_api_keys: int
    total_requests: int
    total_tokens: int
    active_keys: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
