"""
Typed configuration for the store directory service.

Values come from ``config/store-directory.yaml`` (or the path in
``STORE_DIRECTORY_CONFIG``) after env expansion and local override merge.
A missing file means defaults: in-memory record store, local call endpoint.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from .loaders import load_yaml_with_local_override, resolve_config_path

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/store-directory.yaml"
CONFIG_PATH_ENV = "STORE_DIRECTORY_CONFIG"

_BACKENDS = ("memory", "postgrest")
_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _as_int(value: Any, key: str, minimum: int) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if result < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {result}")
    return result


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return value


@dataclass(frozen=True)
class RecordStoreConfig:
    backend: str = "memory"
    url: str = ""
    api_key: str = ""
    table: str = "voice agent"
    timeout_ms: int = 10000


@dataclass(frozen=True)
class CallDispatchConfig:
    url: str = "http://localhost:3001/call-store"
    timeout_ms: int = 30000


@dataclass(frozen=True)
class CallAllConfig:
    max_concurrent: int = 1
    mark_only_successful: bool = False


@dataclass(frozen=True)
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass(frozen=True)
class DirectoryConfig:
    record_store: RecordStoreConfig = field(default_factory=RecordStoreConfig)
    call_dispatch: CallDispatchConfig = field(default_factory=CallDispatchConfig)
    call_all: CallAllConfig = field(default_factory=CallAllConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DirectoryConfig":
        rs = _section(data, "record_store")
        backend = str(rs.get("backend", "memory")).strip().lower()
        if backend not in _BACKENDS:
            raise ValueError(f"record_store.backend must be one of {_BACKENDS}, got {backend!r}")
        url = str(rs.get("url") or "").strip()
        if backend == "postgrest" and not url:
            raise ValueError("record_store.url is required for the postgrest backend")

        cd = _section(data, "call_dispatch")
        ca = _section(data, "call_all")
        api = _section(data, "api")
        lg = _section(data, "logging")

        return cls(
            record_store=RecordStoreConfig(
                backend=backend,
                url=url,
                api_key=str(rs.get("api_key") or ""),
                table=str(rs.get("table") or "voice agent"),
                timeout_ms=_as_int(rs.get("timeout_ms", 10000), "record_store.timeout_ms", 1),
            ),
            call_dispatch=CallDispatchConfig(
                url=str(cd.get("url") or "http://localhost:3001/call-store"),
                timeout_ms=_as_int(cd.get("timeout_ms", 30000), "call_dispatch.timeout_ms", 1),
            ),
            call_all=CallAllConfig(
                max_concurrent=_as_int(ca.get("max_concurrent", 1), "call_all.max_concurrent", 1),
                mark_only_successful=_as_bool(ca.get("mark_only_successful", False),
                                              "call_all.mark_only_successful"),
            ),
            api=ApiConfig(
                host=str(api.get("host") or "127.0.0.1"),
                port=_as_int(api.get("port", 8080), "api.port", 1),
            ),
            logging=LoggingConfig(
                level=str(lg.get("level") or "INFO").upper(),
                json=_as_bool(lg.get("json", False), "logging.json"),
            ),
        )


def load_config(path: Optional[str] = None) -> DirectoryConfig:
    """Load and validate configuration. Raises ValueError on invalid values."""
    config_path = resolve_config_path(path or os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    if not os.path.isfile(config_path):
        logger.info("No configuration file found; using defaults", config_path=config_path)
        return DirectoryConfig()
    data = load_yaml_with_local_override(config_path)
    logger.info("Configuration loaded", config_path=config_path)
    return DirectoryConfig.from_dict(data)
