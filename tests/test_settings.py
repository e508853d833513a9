from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from gemini_pool.config.settings import Settings, get_settings
from gemini_pool.errors import PoolConfigurationError
from gemini_pool.runtime.key_pool import KeyPool


def test_rotation_keys_come_from_env_csv(monkeypatch: Any) -> None:
    monkeypatch.delenv("GEMINI_POOL_FILE", raising=False)
    monkeypatch.setenv("GEMINI_API_KEYS", " key-a , key-b ")
    get_settings.cache_clear()

    assert get_settings().load_rotation_keys() == ["key-a", "key-b"]


def test_blank_csv_entry_fails_pool_construction() -> None:
    settings = Settings(gemini_api_keys="key-a,,key-b")
    with pytest.raises(PoolConfigurationError):
        KeyPool(settings.load_rotation_keys())


def test_rotation_keys_come_from_yaml_pool_file(tmp_path: Path) -> None:
    pool_file = tmp_path / "pool.yaml"
    pool_file.write_text(
        yaml.safe_dump({"api_keys": ["file-key-1", "file-key-2"]}), encoding="utf-8"
    )
    settings = Settings(gemini_api_keys="ignored", gemini_pool_file=str(pool_file))

    assert settings.load_rotation_keys() == ["file-key-1", "file-key-2"]


def test_yaml_pool_file_without_key_list_is_rejected(tmp_path: Path) -> None:
    pool_file = tmp_path / "pool.yaml"
    pool_file.write_text(yaml.safe_dump({"keys": "nope"}), encoding="utf-8")
    settings = Settings(gemini_pool_file=str(pool_file))

    with pytest.raises(PoolConfigurationError):
        settings.load_rotation_keys()


def test_listen_addr_is_split_into_host_and_port() -> None:
    assert Settings(listen_addr="127.0.0.1:9000").listen_host_port == ("127.0.0.1", 9000)
    assert Settings().listen_host_port == ("0.0.0.0", 8080)


def test_missing_or_non_mapping_pool_file_is_rejected(tmp_path: Path) -> None:
    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- just-a-key\n", encoding="utf-8")

    with pytest.raises(PoolConfigurationError):
        Settings(gemini_pool_file=str(tmp_path / "absent.yaml")).load_rotation_keys()
    with pytest.raises(PoolConfigurationError):
        Settings(gemini_pool_file=str(not_mapping)).load_rotation_keys()
