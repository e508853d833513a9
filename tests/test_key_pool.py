from __future__ import annotations

from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from gemini_pool.errors import PoolConfigurationError
from gemini_pool.runtime.key_pool import KeyPool, key_suffix


@pytest.mark.parametrize("size", [1, 2, 3, 5, 8])
def test_each_window_of_pool_size_returns_every_key_once(size: int) -> None:
    keys = [f"key-{index}" for index in range(size)]
    pool = KeyPool(keys)

    for _ in range(3):
        window = [pool.next_key() for _ in range(size)]
        assert sorted(window) == sorted(keys)


def test_rotation_follows_configured_order() -> None:
    pool = KeyPool(["a", "b", "c"])
    assert [pool.next_key() for _ in range(7)] == ["a", "b", "c", "a", "b", "c", "a"]


def test_concurrent_callers_share_one_counter() -> None:
    keys = ["k1", "k2", "k3", "k4"]
    pool = KeyPool(keys)

    def take(_: int) -> list[str]:
        return [pool.next_key() for _ in range(100)]

    with ThreadPoolExecutor(max_workers=8) as executor:
        batches = list(executor.map(take, range(8)))

    counts = Counter(key for batch in batches for key in batch)
    assert counts == {key: 200 for key in keys}


def test_empty_pool_is_rejected_at_construction() -> None:
    with pytest.raises(PoolConfigurationError):
        KeyPool([])


def test_blank_key_is_rejected_at_construction() -> None:
    with pytest.raises(PoolConfigurationError):
        KeyPool(["good-key", "  "])


def test_pool_exposes_keys_and_size() -> None:
    pool = KeyPool(("x", "y"))
    assert len(pool) == 2
    assert pool.keys == ("x", "y")
    assert key_suffix("abcdefgh") == "efgh"
