from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/recallmem/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "RECALLMEM_DB",
    "embedding_disabled": "RECALLMEM_EMBEDDING_DISABLED",
    "embedding_model": "RECALLMEM_EMBEDDING_MODEL",
    "embedding_dimensions": "RECALLMEM_EMBEDDING_DIMENSIONS",
    "context_token_budget": "RECALLMEM_CONTEXT_TOKENS",
    "vector_threshold": "RECALLMEM_VECTOR_THRESHOLD",
    "vector_max_candidates": "RECALLMEM_VECTOR_MAX_CANDIDATES",
    "consolidate_min_group_size": "RECALLMEM_CONSOLIDATE_MIN_GROUP",
    "stale_scan_limit": "RECALLMEM_STALE_SCAN_LIMIT",
    "page_size": "RECALLMEM_PAGE_SIZE",
    "redact_secrets": "RECALLMEM_REDACT_SECRETS",
}

_INT_KEYS = {
    "embedding_dimensions",
    "context_token_budget",
    "vector_max_candidates",
    "consolidate_min_group_size",
    "stale_scan_limit",
    "page_size",
}
_FLOAT_KEYS = {"vector_threshold"}
_BOOL_KEYS = {"embedding_disabled", "redact_secrets"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("RECALLMEM_CONFIG", DEFAULT_CONFIG_PATH))
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


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class RecallMemConfig:
    db_path: str = "~/.recallmem.sqlite"
    embedding_disabled: bool = False
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dimensions: int = 384
    # Token budget for context-mode retrieval.
    context_token_budget: int = 2000
    vector_threshold: float = 0.3
    vector_max_candidates: int = 2000
    consolidate_min_group_size: int = 3
    stale_scan_limit: int = 500
    page_size: int = 50
    redact_secrets: bool = True


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _apply_value(cfg: RecallMemConfig, key: str, value: object) -> None:
    current = getattr(cfg, key)
    if key in _INT_KEYS:
        setattr(cfg, key, _parse_int(value, current, key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, current, key=key))
    elif key in _BOOL_KEYS:
        setattr(cfg, key, _coerce_bool(value, current, key=key))
    else:
        setattr(cfg, key, str(value))


def _apply_dict(cfg: RecallMemConfig, data: dict[str, Any]) -> RecallMemConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        _apply_value(cfg, key, value)
    return cfg


def _apply_env(cfg: RecallMemConfig) -> RecallMemConfig:
    for key, value in get_env_overrides().items():
        _apply_value(cfg, key, value)
    return cfg


def load_config(path: Path | None = None) -> RecallMemConfig:
    cfg = RecallMemConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Ignoring config file: {exc}", RuntimeWarning, stacklevel=2)
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg
