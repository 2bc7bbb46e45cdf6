"""
Configuration file loading.

- Path resolution relative to the project root
- YAML loading with shell-style environment expansion
- Optional ``*.local.yaml`` override deep-merged over the base file
"""

import os
import re
from pathlib import Path
from typing import Any, Dict

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Project root directory (parent of src/)
_PROJ_DIR = Path(__file__).parent.parent.parent.resolve()

# ${VAR}, ${VAR:-default}, ${VAR:=default}
_ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(:-|:=)?([^}]*)?\}')


def expand_env_vars(text: str) -> str:
    """
    Expand ``${VAR}`` references, honouring ``:-``/``:=`` defaults.

    With a default operator the default is used when VAR is unset or empty.
    A bare ``${VAR}`` that is unset is left untouched.
    """
    def _replace(match):
        name, operator, default = match.group(1), match.group(2), match.group(3) or ""
        value = os.environ.get(name)
        if operator in (":-", ":="):
            return default if not value else value
        return value if value is not None else match.group(0)

    return _ENV_VAR_PATTERN.sub(_replace, text)


def resolve_config_path(path: str) -> str:
    """Absolute paths pass through; relative ones resolve against the project root."""
    if os.path.isabs(path):
        return path
    return str(_PROJ_DIR / path)


def load_yaml_with_env_expansion(path: str) -> Dict[str, Any]:
    """
    Read a YAML mapping after environment expansion.

    Raises:
        FileNotFoundError: the file does not exist
        ValueError: the document is not a mapping or fails to parse
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()
    try:
        data = yaml.safe_load(expand_env_vars(raw))
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML configuration {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration {path} must be a mapping")
    return data


def deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge *override* into a copy of *base*.

    Nested mappings merge recursively, an explicit ``None`` deletes the key,
    anything else replaces the base value. Neither input is mutated.
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            merged.pop(key, None)
        elif isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_yaml_with_local_override(path: str) -> Dict[str, Any]:
    """
    Load ``config/x.yaml`` and, when present, deep-merge ``config/x.local.yaml`` over it.

    A broken local file is logged and ignored so the base config still loads.
    """
    base = load_yaml_with_env_expansion(path)

    stem, ext = os.path.splitext(path)
    local_path = f"{stem}.local{ext}"
    if not os.path.isfile(local_path):
        return base

    try:
        local = load_yaml_with_env_expansion(local_path)
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring unreadable local config override", local_path=local_path, error=str(exc))
        return base

    logger.info("Merging local config override", local_path=local_path)
    return deep_merge_dicts(base, local)
