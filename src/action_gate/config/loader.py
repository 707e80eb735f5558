"""Load and validate service config from YAML, with environment overrides."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from action_gate.config.models import GOOGLE_DEFAULTS, SALESFORCE_DEFAULTS, AppConfig

_PROVIDER_DEFAULTS = {
    "google": GOOGLE_DEFAULTS,
    "salesforce": SALESFORCE_DEFAULTS,
}


def load_config(path: str | Path, env: Mapping[str, str] | None = None) -> AppConfig:
    """
    Load YAML file, apply environment overrides and validate into AppConfig.
    Raises FileNotFoundError, or ValueError on empty or invalid config.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        raise ValueError("Config file is empty")
    if not isinstance(data, dict):
        raise ValueError("Invalid config: top level must be a mapping")

    return build_config(data, os.environ if env is None else env)


def build_config(data: dict[str, Any], env: Mapping[str, str]) -> AppConfig:
    """Merge provider defaults and env overrides into raw data, then validate."""
    data = dict(data)
    platform = dict(data.get("platform") or {})
    provider = dict(data.get("provider") or {})
    refresh = dict(data.get("refresh") or {})

    kind = provider.get("kind")
    if kind in _PROVIDER_DEFAULTS:
        provider = {**_PROVIDER_DEFAULTS[kind], **provider}

    _override(platform, "app_id", env, "WW_APP_ID")
    _override(platform, "app_secret", env, "WW_APP_SECRET")
    _override(platform, "webhook_secret", env, "WW_WEBHOOK_SECRET")
    _override(data, "store", env, "WW_STORE")
    if kind:
        prefix = str(kind).upper()
        _override(provider, "client_id", env, f"{prefix}_CLIENT_ID")
        _override(provider, "client_secret", env, f"{prefix}_CLIENT_SECRET")
        _override(provider, "redirect_uri", env, f"{prefix}_REDIRECT_URI")
    _override(refresh, "interval_override_ms", env, "REFRESH_INTERVAL_MS")
    _override(data, "port", env, "PORT")

    data["platform"] = platform
    data["provider"] = provider
    data["refresh"] = refresh

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config: {e}") from e


def _override(target: dict[str, Any], key: str, env: Mapping[str, str], var: str) -> None:
    value = env.get(var)
    if value:
        target[key] = value
