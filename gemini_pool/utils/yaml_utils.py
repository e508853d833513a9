from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from gemini_pool.errors import PoolConfigurationError


def load_yaml_dict(
    path: str | Path,
    *,
    error_message: str | None = None,
) -> dict[str, Any]:
    """Read a YAML mapping, raising ``PoolConfigurationError`` on anything else."""
    resolved = Path(path)
    try:
        with resolved.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
    except OSError as exc:
        raise PoolConfigurationError(f"Could not read '{resolved}': {exc}") from exc
    except yaml.YAMLError as exc:
        raise PoolConfigurationError(f"Invalid YAML in '{resolved}': {exc}") from exc
    if isinstance(payload, dict):
        return payload
    raise PoolConfigurationError(
        error_message or f"Expected YAML mapping in '{resolved}'."
    )
