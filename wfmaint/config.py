"""Global configuration management for wfmaint."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from .errors import InvalidArgument
from .resources import (
    DEFAULT_CPU_LIMIT_PERCENT,
    DEFAULT_MAX_SYSTEM_PARALLEL_JOBS,
    DEFAULT_MEMORY_LIMIT_PERCENT,
    DEFAULT_MIN_PARALLEL_JOBS,
)
from .text import Messages

ENV_CONFIG_DIR = "WFMAINT_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".wfmaint"
CONFIG_DIR = Path(os.environ[ENV_CONFIG_DIR]).expanduser() if os.environ.get(ENV_CONFIG_DIR) else DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "wfmaint_config_dir_override",
    default=None,
)
DEFAULT_MAX_PARALLEL_JOBS = 4
DEFAULT_CACHE_TTL_SECONDS = 1800
MIN_CACHE_TTL_SECONDS = 60
DEFAULT_RATE_LIMIT_PER_MINUTE = 60
DEFAULT_BURST_SIZE = 10
DEFAULT_RATE_LIMIT_DELAY_SECONDS = 1.0
DEFAULT_QUOTA_LOW_WATER = 100
DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
DEFAULT_REMOTE_COMMAND = "gh"
DEFAULT_WORKFLOW_DIR = ".github/workflows"


@dataclass
class Config:
    max_parallel_jobs: int = DEFAULT_MAX_PARALLEL_JOBS
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    memory_limit_percent: float = DEFAULT_MEMORY_LIMIT_PERCENT
    cpu_limit_percent: float = DEFAULT_CPU_LIMIT_PERCENT
    min_parallel_jobs: int = DEFAULT_MIN_PARALLEL_JOBS
    max_system_parallel_jobs: int = DEFAULT_MAX_SYSTEM_PARALLEL_JOBS
    rate_limit_per_minute: int = DEFAULT_RATE_LIMIT_PER_MINUTE
    burst_size: int = DEFAULT_BURST_SIZE
    rate_limit_delay_seconds: float = DEFAULT_RATE_LIMIT_DELAY_SECONDS
    enable_cache: bool = True
    quota_low_water: int = DEFAULT_QUOTA_LOW_WATER
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    remote_command: str = DEFAULT_REMOTE_COMMAND
    workflow_dir: str = DEFAULT_WORKFLOW_DIR
    cache_dir: str | None = None


_INT_FIELDS = {
    "max_parallel_jobs",
    "cache_ttl_seconds",
    "min_parallel_jobs",
    "max_system_parallel_jobs",
    "rate_limit_per_minute",
    "burst_size",
    "quota_low_water",
}
_FLOAT_FIELDS = {
    "memory_limit_percent",
    "cpu_limit_percent",
    "rate_limit_delay_seconds",
    "lock_timeout_seconds",
}
_BOOL_FIELDS = {"enable_cache"}
_STR_FIELDS = {"remote_command", "workflow_dir"}
_OPTIONAL_STR_FIELDS = {"cache_dir"}
CONFIG_KEYS: tuple[str, ...] = tuple(f.name for f in fields(Config))


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def set_config_dir(path: Path | str | None) -> None:
    global CONFIG_DIR, CONFIG_FILE
    if path is None:
        CONFIG_DIR = DEFAULT_CONFIG_DIR
    else:
        dir_path = Path(path).expanduser().resolve()
        if dir_path.exists() and not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        CONFIG_DIR = dir_path
    CONFIG_FILE = CONFIG_DIR / "config.json"


def config_file_path() -> Path:
    return _resolve_config_file()


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    try:
        raw = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidArgument(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    return config_from_json(raw)


def save_config(config: Config) -> Path:
    validate_config(config)
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: dict[str, Any] = {
        key: value for key, value in asdict(config).items() if value is not None
    }
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return config_file


def validate_config(config: Config) -> Config:
    """Reject values the framework cannot run with."""

    if config.max_parallel_jobs < 1:
        raise InvalidArgument(
            Messages.ERROR_CONFIG_RANGE.format(field="max_parallel_jobs", value=config.max_parallel_jobs, rule=">= 1")
        )
    if config.cache_ttl_seconds < MIN_CACHE_TTL_SECONDS:
        raise InvalidArgument(
            Messages.ERROR_CONFIG_RANGE.format(
                field="cache_ttl_seconds",
                value=config.cache_ttl_seconds,
                rule=f">= {MIN_CACHE_TTL_SECONDS}",
            )
        )
    if config.min_parallel_jobs < 1:
        raise InvalidArgument(
            Messages.ERROR_CONFIG_RANGE.format(field="min_parallel_jobs", value=config.min_parallel_jobs, rule=">= 1")
        )
    if config.max_system_parallel_jobs < config.min_parallel_jobs:
        raise InvalidArgument(
            Messages.ERROR_CONFIG_RANGE.format(
                field="max_system_parallel_jobs",
                value=config.max_system_parallel_jobs,
                rule=">= min_parallel_jobs",
            )
        )
    for name in ("memory_limit_percent", "cpu_limit_percent"):
        value = getattr(config, name)
        if not 0 < value <= 100:
            raise InvalidArgument(Messages.ERROR_CONFIG_RANGE.format(field=name, value=value, rule="within (0, 100]"))
    if config.rate_limit_per_minute < 1:
        raise InvalidArgument(
            Messages.ERROR_CONFIG_RANGE.format(
                field="rate_limit_per_minute", value=config.rate_limit_per_minute, rule=">= 1"
            )
        )
    for name in ("burst_size", "quota_low_water"):
        value = getattr(config, name)
        if value < 0:
            raise InvalidArgument(Messages.ERROR_CONFIG_RANGE.format(field=name, value=value, rule=">= 0"))
    for name in ("rate_limit_delay_seconds", "lock_timeout_seconds"):
        value = getattr(config, name)
        if value < 0:
            raise InvalidArgument(Messages.ERROR_CONFIG_RANGE.format(field=name, value=value, rule=">= 0"))
    if not config.remote_command.strip():
        raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="remote_command"))
    return config


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""

    data = _coerce_config_payload(payload)
    config = Config() if base is None else replace(base)
    _apply_config_payload(config, data)
    return validate_config(config)


def update_config_from_json(
    payload: str | Mapping[str, object], *, replace_all: bool = False
) -> Config:
    """Update config from a JSON string or mapping and persist it."""

    base = None if replace_all else load_config()
    config = config_from_json(payload, base=base)
    save_config(config)
    return config


def reset_config() -> Config:
    config = Config()
    save_config(config)
    return config


def cache_dir(config: Config | None = None) -> Path:
    if config is not None and config.cache_dir:
        return Path(config.cache_dir).expanduser()
    return _resolve_config_dir() / "cache"


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidArgument(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise InvalidArgument(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise InvalidArgument(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    defaults = Config()
    for key, value in payload.items():
        if key in _INT_FIELDS:
            setattr(config, key, _coerce_int(value, key, getattr(defaults, key)))
        elif key in _FLOAT_FIELDS:
            setattr(config, key, _coerce_float(value, key, getattr(defaults, key)))
        elif key in _BOOL_FIELDS:
            setattr(config, key, _coerce_bool(value, key))
        elif key in _STR_FIELDS:
            setattr(config, key, _coerce_required_str(value, key, getattr(defaults, key)))
        elif key in _OPTIONAL_STR_FIELDS:
            setattr(config, key, _coerce_optional_str(value, key))


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_required_str(value: object, field: str, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or default
    raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_float(value: object, field: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return float(cleaned)
        except ValueError as exc:
            raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)) from exc
    raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise InvalidArgument(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
