from __future__ import annotations

import itertools
from collections.abc import Iterable
from threading import Lock

from gemini_pool.errors import PoolConfigurationError


class KeyPool:
    """Round-robin rotation over a fixed set of upstream Gemini keys.

    The shared counter only ever moves forward; ``next_key`` maps it onto the
    pool modulo its size, so any ``len(pool)`` consecutive calls hand out every
    key exactly once. The lock covers the increment alone.
    """

    def __init__(self, api_keys: Iterable[str]) -> None:
        keys = tuple(api_keys)
        if not keys:
            raise PoolConfigurationError(
                "GEMINI_API_KEYS must contain at least one non-empty key."
            )
        for key in keys:
            if not isinstance(key, str) or not key.strip():
                raise PoolConfigurationError(
                    "GEMINI_API_KEYS must not contain empty keys."
                )
        self._keys = keys
        self._counter = itertools.count()
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    def next_key(self) -> str:
        with self._lock:
            index = next(self._counter)
        return self._keys[index % len(self._keys)]


def key_suffix(api_key: str) -> str:
    return api_key[-4:]
