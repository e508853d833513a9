from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from gemini_pool.errors import PoolConfigurationError
from gemini_pool.utils.yaml_utils import load_yaml_dict


class Settings(BaseSettings):
    gemini_api_keys: str = ""
    gemini_pool_file: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    gemini_api_version: str = "v1beta"
    upstream_timeout_seconds: float = 60.0
    upstream_connect_timeout_seconds: float = 5.0
    database_path: str = "gemini_pool.db"
    caller_auth_required: bool = True
    admin_username: str = "admin"
    admin_password: str | None = None
    admin_jwt_secret: str | None = None
    admin_token_ttl_seconds: int = 24 * 60 * 60
    api_key_prefix: str = "sk-"
    listen_addr: str = "0.0.0.0:8080"

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def gemini_api_keys_list(self) -> list[str]:
        return _split_csv(self.gemini_api_keys)

    @property
    def listen_host_port(self) -> tuple[str, int]:
        host, _, port = self.listen_addr.rpartition(":")
        return host or "0.0.0.0", int(port or 8080)

    def load_rotation_keys(self) -> list[str]:
        """Upstream keys for the rotation pool, from the YAML pool file or env."""
        if not self.gemini_pool_file:
            return self.gemini_api_keys_list

        payload = load_yaml_dict(
            self.gemini_pool_file,
            error_message=f"Pool file '{self.gemini_pool_file}' must be a YAML mapping.",
        )
        raw_keys = payload.get("api_keys")
        if not isinstance(raw_keys, list):
            raise PoolConfigurationError(
                f"Pool file '{self.gemini_pool_file}' must define an 'api_keys' list."
            )
        keys: list[str] = []
        for item in raw_keys:
            if not isinstance(item, str):
                raise PoolConfigurationError(
                    f"Pool file '{self.gemini_pool_file}' contains a non-string key."
                )
            keys.append(item.strip())
        return keys


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",")]


@lru_cache
def get_settings() -> Settings:
    return Settings()
