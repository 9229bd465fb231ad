"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .types import (
    MODELS,
    BackendConfig,
    ChatConfig,
    CodementorConfig,
    EngagementConfig,
    StorageConfig,
    SyncConfig,
)

CONFIG_FILENAMES = [
    "codementor-sync.yaml",
    "codementor-sync.yml",
    "codementor-sync.json",
    "codementor.yaml",
    "codementor.yml",
    "codementor.json",
]

STORAGE_BACKENDS = ("memory", "filesystem", "sqlite")
FOLLOW_UP_POLICIES = ("session_type", "coin_flip", "quiz", "practice")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> CodementorConfig:
    """Build a CodementorConfig from a raw dict."""
    storage_root = raw.get("storage_root", ".codementor")

    # Storage
    storage_raw = raw.get("storage", {})
    storage_config = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=storage_raw.get("root", storage_root + "/store"),
        sqlite_path=storage_raw.get("sqlite_path", storage_root + "/store.db"),
    )

    # Engagement
    eng_raw = raw.get("engagement", {})
    engagement_config = EngagementConfig(
        threshold=float(eng_raw.get("threshold", 10.0)),
        scroll_debounce_s=float(eng_raw.get("scroll_debounce_s", 3.0)),
        interaction_debounce_s=float(eng_raw.get("interaction_debounce_s", 2.0)),
        time_bonus_interval_s=float(eng_raw.get("time_bonus_interval_s", 300.0)),
        preference_poll_delay_s=float(eng_raw.get("preference_poll_delay_s", 1.0)),
        auto_trigger=bool(eng_raw.get("auto_trigger", True)),
        follow_up_policy=eng_raw.get("follow_up_policy", "session_type"),
    )

    # Cross-tab sync
    sync_raw = raw.get("sync", {})
    sync_config = SyncConfig(
        enabled=bool(sync_raw.get("enabled", True)),
        channel_name=sync_raw.get("channel_name", "codementor-sync"),
    )

    # Chat
    chat_raw = raw.get("chat", {})
    chat_config = ChatConfig(
        default_model=chat_raw.get("default_model", "together"),
        context_window=int(chat_raw.get("context_window", 10)),
        split_screen=bool(chat_raw.get("split_screen", False)),
    )

    # Backend; the token may come from the environment instead of the file
    backend_raw = raw.get("backend", {})
    backend_config = BackendConfig(
        base_url=backend_raw.get("base_url", "http://localhost:8000/api"),
        timeout=float(backend_raw.get("timeout", 60.0)),
        token=backend_raw.get("token") or os.environ.get("CODEMENTOR_TOKEN", ""),
        max_retries=int(backend_raw.get("max_retries", 3)),
    )

    return CodementorConfig(
        version=str(raw.get("version", "0.1")),
        storage=storage_config,
        engagement=engagement_config,
        sync=sync_config,
        chat=chat_config,
        backend=backend_config,
        session_id=str(raw.get("session_id", "")),
    )


def validate_config(config: CodementorConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"Unknown storage backend '{config.storage.backend}' "
            f"(expected one of: {', '.join(STORAGE_BACKENDS)})"
        )

    eng = config.engagement
    if eng.threshold <= 0:
        errors.append(f"engagement threshold ({eng.threshold}) must be > 0")
    if eng.scroll_debounce_s <= 0 or eng.interaction_debounce_s <= 0:
        errors.append("debounce delays must be > 0")
    if eng.time_bonus_interval_s <= 0:
        errors.append("time_bonus_interval_s must be > 0")
    if eng.follow_up_policy not in FOLLOW_UP_POLICIES:
        errors.append(f"Unknown follow_up_policy '{eng.follow_up_policy}'")

    if config.chat.default_model not in MODELS:
        errors.append(
            f"default_model '{config.chat.default_model}' must be one of: {', '.join(MODELS)}"
        )
    if config.chat.context_window < 1:
        errors.append("context_window must be >= 1")

    if config.sync.enabled and not config.sync.channel_name:
        errors.append("sync channel_name must not be empty")

    if config.backend.max_retries < 1:
        errors.append("backend max_retries must be >= 1")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> CodementorConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        # Return defaults
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
