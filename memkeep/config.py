from __future__ import annotations

import json
import math
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .db import DEFAULT_DB_PATH

DEFAULT_CONFIG_PATH = Path("~/.config/memkeep/config.json").expanduser()
DEFAULT_PROJECTS_ROOT = Path("~/.claude/projects").expanduser()
DEFAULT_MANIFEST_PATH = Path("~/.claude.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "MEMKEEP_DB",
    "projects_root": "MEMKEEP_PROJECTS_ROOT",
    "manifest_path": "MEMKEEP_MANIFEST",
    "decay_threshold": "MEMKEEP_DECAY_THRESHOLD",
    "search_limit_max": "MEMKEEP_SEARCH_LIMIT_MAX",
    "context_limit_max": "MEMKEEP_CONTEXT_LIMIT_MAX",
    "log_level": "MEMKEEP_LOG_LEVEL",
}

_INT_KEYS = {"search_limit_max", "context_limit_max"}
_FLOAT_KEYS = {"decay_threshold"}
_PATH_KEYS = {"db_path", "projects_root", "manifest_path"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MEMKEEP_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class MemkeepConfig:
    db_path: Path = DEFAULT_DB_PATH
    projects_root: Path = DEFAULT_PROJECTS_ROOT
    manifest_path: Path = DEFAULT_MANIFEST_PATH
    decay_threshold: float = 0.1
    search_limit_max: int = 200
    context_limit_max: int = 50
    log_level: str = "WARNING"


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed < 1:
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if not math.isfinite(parsed) or parsed < 0:
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce(cfg: MemkeepConfig, key: str, value: object) -> None:
    if key in _INT_KEYS:
        setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
    elif key in _PATH_KEYS:
        if isinstance(value, str) and value.strip():
            setattr(cfg, key, Path(value.strip()).expanduser())
        else:
            warnings.warn(f"Invalid path for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    elif key == "log_level":
        if isinstance(value, str) and value.strip():
            cfg.log_level = value.strip().upper()


def load_config(path: Path | None = None) -> MemkeepConfig:
    cfg = MemkeepConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: MemkeepConfig, data: dict[str, Any]) -> MemkeepConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        _coerce(cfg, key, value)
    return cfg


def _apply_env(cfg: MemkeepConfig) -> MemkeepConfig:
    for key, value in get_env_overrides().items():
        _coerce(cfg, key, value)
    return cfg
