"""
Credential directory and usage ledger.

All methods are synchronous; the HTTP layer runs them in worker threads.
Counter updates are expressed as ``col = col + ?`` so concurrent calls are
serialized by SQLite rather than by the application.
"""

from __future__ import annotations

import secrets
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from uuid import uuid4

from gemini_pool.errors import InvalidRequestError, NotFoundError, StorageError
from gemini_pool.storage.db import get_connection, initialize_schema
from gemini_pool.storage.models import ApiKeyRecord, DashboardStats, UsageLogEntry

_KEY_COLUMNS = (
    "id, key_name, api_key, is_active, created_at, "
    "total_requests, total_input_tokens, total_output_tokens"
)
_USAGE_COLUMNS = (
    "id, api_key_id, created_at, endpoint, model, "
    "input_tokens, output_tokens, success"
)


def generate_api_key(prefix: str = "sk-") -> str:
    return f"{prefix}{secrets.token_hex(24)}"


def auto_key_name(api_key: str) -> str:
    return f"auto-{api_key[-4:]}"


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


class ApiKeyRepository:
    def __init__(self, db_path: str, *, api_key_prefix: str = "sk-") -> None:
        self.db_path = db_path
        self.api_key_prefix = api_key_prefix

    def initialize(self) -> None:
        try:
            initialize_schema(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not initialize database: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open database: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def list_keys(self) -> list[ApiKeyRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_keys ORDER BY created_at, id"
            ).fetchall()
        return [ApiKeyRecord.from_row(row) for row in rows]

    def get_key(self, key_id: str) -> ApiKeyRecord:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_keys WHERE id = ?", (key_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError("API key not found")
        return ApiKeyRecord.from_row(row)

    def find_by_secret(self, api_key: str) -> ApiKeyRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_keys WHERE api_key = ?", (api_key,)
            ).fetchone()
        return ApiKeyRecord.from_row(row) if row is not None else None

    def create_key(self, key_name: str, api_key: str | None = None) -> ApiKeyRecord:
        secret = api_key if api_key else generate_api_key(self.api_key_prefix)
        record = ApiKeyRecord(
            id=uuid4().hex,
            key_name=key_name,
            api_key=secret,
            is_active=True,
            created_at=_utc_now(),
        )
        with self._transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO api_keys (id, key_name, api_key, is_active, created_at) "
                    "VALUES (?, ?, ?, 1, ?)",
                    (record.id, record.key_name, record.api_key, record.created_at),
                )
            except sqlite3.IntegrityError as exc:
                raise InvalidRequestError("API key already exists") from exc
        return record

    def update_key(
        self,
        key_id: str,
        *,
        key_name: str | None = None,
        is_active: bool | None = None,
    ) -> ApiKeyRecord:
        assignments: list[str] = []
        params: list[object] = []
        if key_name is not None:
            assignments.append("key_name = ?")
            params.append(key_name)
        if is_active is not None:
            assignments.append("is_active = ?")
            params.append(1 if is_active else 0)

        with self._transaction() as conn:
            if assignments:
                cursor = conn.execute(
                    f"UPDATE api_keys SET {', '.join(assignments)} WHERE id = ?",
                    (*params, key_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError("API key not found")
            row = conn.execute(
                f"SELECT {_KEY_COLUMNS} FROM api_keys WHERE id = ?", (key_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError("API key not found")
        return ApiKeyRecord.from_row(row)

    def delete_key(self, key_id: str) -> None:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM api_keys WHERE id = ?", (key_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("API key not found")

    def record_usage(
        self,
        key_id: str,
        *,
        endpoint: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        success: bool = True,
    ) -> UsageLogEntry:
        """Bump a directory key's counters and append one usage row in one transaction.

        The key is addressed by id. A key deleted while its call was in flight
        stays deleted; the write fails with ``StorageError`` instead.
        """
        with self._transaction() as conn:
            return self._append_usage(
                conn,
                key_id,
                endpoint=endpoint,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                success=success,
            )

    def record_pool_usage(
        self,
        api_key: str,
        *,
        endpoint: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        success: bool = True,
    ) -> UsageLogEntry:
        """Record usage against an upstream pool secret.

        Used when callers are not authenticated. A secret seen for the first
        time is registered under an ``auto-`` name and left inactive, so it
        never works as a caller bearer token.
        """
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO api_keys (id, key_name, api_key, is_active, created_at) "
                "VALUES (?, ?, ?, 0, ?)",
                (uuid4().hex, auto_key_name(api_key), api_key, _utc_now()),
            )
            row = conn.execute(
                "SELECT id FROM api_keys WHERE api_key = ?", (api_key,)
            ).fetchone()
            return self._append_usage(
                conn,
                row["id"],
                endpoint=endpoint,
                model=model,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                success=success,
            )

    @staticmethod
    def _append_usage(
        conn: sqlite3.Connection,
        key_id: str,
        *,
        endpoint: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        success: bool,
    ) -> UsageLogEntry:
        cursor = conn.execute(
            "UPDATE api_keys SET total_requests = total_requests + 1, "
            "total_input_tokens = total_input_tokens + ?, "
            "total_output_tokens = total_output_tokens + ? WHERE id = ?",
            (input_tokens, output_tokens, key_id),
        )
        if cursor.rowcount == 0:
            raise StorageError(f"API key {key_id} no longer exists; usage not recorded")
        entry = UsageLogEntry(
            id=uuid4().hex,
            api_key_id=key_id,
            created_at=_utc_now(),
            endpoint=endpoint,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            success=success,
        )
        conn.execute(
            f"INSERT INTO usage_logs ({_USAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.api_key_id,
                entry.created_at,
                entry.endpoint,
                entry.model,
                entry.input_tokens,
                entry.output_tokens,
                1 if entry.success else 0,
            ),
        )
        return entry

    def usage_entries(self, key_id: str, limit: int = 100) -> list[UsageLogEntry]:
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM api_keys WHERE id = ?", (key_id,)
            ).fetchone()
            if exists is None:
                raise NotFoundError("API key not found")
            rows = conn.execute(
                f"SELECT {_USAGE_COLUMNS} FROM usage_logs WHERE api_key_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (key_id, max(1, limit)),
            ).fetchall()
        return [UsageLogEntry.from_row(row) for row in rows]

    def dashboard_stats(self) -> DashboardStats:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_api_keys,
                    SUM(total_requests) AS total_requests,
                    SUM(total_input_tokens + total_output_tokens) AS total_tokens,
                    SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END) AS active_keys
                FROM api_keys
                """
            ).fetchone()
        return DashboardStats(
            total_api_keys=int(row["total_api_keys"] or 0),
            total_requests=int(row["total_requests"] or 0),
            total_tokens=int(row["total_tokens"] or 0),
            active_keys=int(row["active_keys"] or 0),
        )
