from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import fs_paths

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

CONFIG_ENV_OVERRIDES = {
    "embedding_model": "TENAX_EMBEDDING_MODEL",
    "embedding_batch_size": "TENAX_EMBEDDING_BATCH_SIZE",
    "token_budget": "TENAX_TOKEN_BUDGET",
    "max_sessions_stored": "TENAX_MAX_SESSIONS_STORED",
    "session_id_padding": "TENAX_SESSION_ID_PADDING",
    "key_topic_limit": "TENAX_KEY_TOPIC_LIMIT",
    "lock_timeout_s": "TENAX_LOCK_TIMEOUT_S",
}

_INT_KEYS = {
    "embedding_batch_size",
    "token_budget",
    "max_sessions_stored",
    "session_id_padding",
    "key_topic_limit",
}
_FLOAT_KEYS = {"lock_timeout_s"}


def get_config_path(project_root: str | Path | None = None, path: Path | None = None) -> Path:
    if path is not None:
        return Path(path).expanduser()
    env_path = os.getenv("TENAX_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return fs_paths.config_path(fs_paths.resolve_project_root(project_root))


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = fs_paths.ensure_path(get_config_path(path=path))
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
class TenaxConfig:
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_batch_size: int = 32
    token_budget: int = 80000
    # Sessions beyond this count are pruned oldest-first; items and vectors stay.
    max_sessions_stored: int = 100
    session_id_padding: int = 3
    key_topic_limit: int = 10
    lock_timeout_s: float = 10.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "embedding_model": self.embedding_model,
            "embedding_batch_size": self.embedding_batch_size,
            "token_budget": self.token_budget,
            "max_sessions_stored": self.max_sessions_stored,
            "session_id_padding": self.session_id_padding,
            "key_topic_limit": self.key_topic_limit,
            "lock_timeout_s": self.lock_timeout_s,
        }


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


def load_config(project_root: str | Path | None = None, path: Path | None = None) -> TenaxConfig:
    cfg = TenaxConfig()
    config_path = get_config_path(project_root, path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            warnings.warn(
                f"Ignoring invalid config json at {config_path}", RuntimeWarning, stacklevel=2
            )
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: TenaxConfig, data: dict[str, Any]) -> TenaxConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if isinstance(value, str) and value.strip():
            setattr(cfg, key, value.strip())
    if cfg.session_id_padding < 1:
        cfg.session_id_padding = 1
    return cfg
