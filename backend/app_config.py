"""
Server configuration for pointstream.

Settings are resolved in this order (later wins):
1. Dataclass defaults
2. JSON settings file named by the POINTSTREAM_CONFIG environment variable
3. Individual POINTSTREAM_* environment variables
4. Explicit overrides passed by the caller (the CLI in main.py)
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logger import get_logger

logger = get_logger(__name__)

_ENV_PREFIX = "POINTSTREAM_"
_CONFIG_ENV_VAR = "POINTSTREAM_CONFIG"


@dataclass
class ServerConfig:
    """Settings for the streaming server."""
    host: str = "127.0.0.1"
    port: int = 8000
    dataset: Optional[str] = None
    x_col: str = "x"
    y_col: str = "y"
    color_col: Optional[str] = None
    id_col: str = "index"
    # Upper bound on rows returned by a single query, whatever the client asks
    max_limit: int = 1_000_000
    max_exclude_ids: int = 50_000
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        config = cls()
        for key, value in data.items():
            if key in known:
                setattr(config, key, _coerce(key, value))
        return config


def _coerce(key: str, value: Any) -> Any:
    """Cast raw (possibly string) values to the dataclass field types."""
    if value is None:
        return None
    if key in ("port", "max_limit", "max_exclude_ids"):
        return int(value)
    return str(value)


def _read_settings_file(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("Config file not found: %s", path)
        return {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def load_server_config(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ServerConfig:
    """Resolve the server configuration.

    Args:
        overrides: Values that take precedence over file and environment
            (``None`` values are ignored).
        environ: Environment mapping, defaults to ``os.environ``.
    """
    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {}

    config_file = env.get(_CONFIG_ENV_VAR)
    if config_file:
        data.update(_read_settings_file(Path(config_file)))

    for f in fields(ServerConfig):
        env_value = env.get(f"{_ENV_PREFIX}{f.name.upper()}")
        if env_value:
            data[f.name] = env_value

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    return ServerConfig.from_dict(data)
