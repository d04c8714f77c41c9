"""
Environment loader for Parley settings.

Reads PARLEY_* variables over the built-in defaults:

    PARLEY_DEFAULT_PROVIDER=googleai
    PARLEY_FALLBACK_PROVIDER=deepseek
    PARLEY_FAILOVER_ENABLED=true
    PARLEY_DEEPSEEK_API_KEY=sk-...
    PARLEY_DEEPSEEK_MODEL=deepseek-chat
    PARLEY_WS_URL=ws://localhost:3000
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from .schemas import AppSettings, ProviderSettings, TransportSettings, default_provider_settings

logger = logging.getLogger(__name__)

ENV_PREFIX = "PARLEY_"

# Per-provider variable suffix -> ProviderSettings field
_PROVIDER_FIELDS: dict[str, str] = {
    "API_KEY": "api_key",
    "MODEL": "model",
    "TEMPERATURE": "temperature",
    "MAX_TOKENS": "max_tokens",
    "TOP_P": "top_p",
    "MAX_RETRIES": "max_retries",
    "RETRY_DELAY": "retry_delay",
    "TIMEOUT": "timeout",
    "BASE_URL": "base_url",
}

_TRANSPORT_FIELDS: dict[str, str] = {
    "WS_URL": "url",
    "WS_MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
    "WS_RECONNECT_DELAY": "reconnect_delay",
    "WS_MAX_RECONNECT_DELAY": "max_reconnect_delay",
    "WS_OPEN_TIMEOUT": "open_timeout",
    "WS_PING_INTERVAL": "ping_interval",
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env(environ: Mapping[str, str], name: str) -> str | None:
    value = environ.get(f"{ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _load_provider(
    name: str,
    base: ProviderSettings,
    environ: Mapping[str, str],
) -> ProviderSettings:
    overrides: dict[str, Any] = {}
    for suffix, field_name in _PROVIDER_FIELDS.items():
        value = _env(environ, f"{name.upper()}_{suffix}")
        if value is not None:
            overrides[field_name] = value
    if not overrides:
        return base
    # Re-validate so numeric strings are coerced and constraints enforced
    return ProviderSettings.model_validate({**base.model_dump(), **overrides})


def load_settings(environ: Mapping[str, str] | None = None) -> AppSettings:
    """
    Build AppSettings from environment variables.

    Args:
        environ: Variable mapping (defaults to os.environ)

    Returns:
        Validated AppSettings

    Raises:
        pydantic.ValidationError: If a value is malformed or the default /
            fallback provider is not configured
    """
    environ = os.environ if environ is None else environ

    providers = {
        name: _load_provider(name, base, environ)
        for name, base in default_provider_settings().items()
    }

    transport_overrides = {
        field_name: value
        for suffix, field_name in _TRANSPORT_FIELDS.items()
        if (value := _env(environ, suffix)) is not None
    }
    transport = TransportSettings.model_validate(transport_overrides)

    values: dict[str, Any] = {
        "providers": providers,
        "transport": transport,
    }
    for key in ("SERVICE_NAME", "ENVIRONMENT", "DEFAULT_PROVIDER", "FALLBACK_PROVIDER"):
        value = _env(environ, key)
        if value is not None:
            values[key.lower()] = value
    for key in ("DEBUG", "FAILOVER_ENABLED"):
        value = _env(environ, key)
        if value is not None:
            values[key.lower()] = _parse_bool(value)

    settings = AppSettings.model_validate(values)

    missing = [name for name, p in settings.providers.items() if not p.has_credentials]
    if missing:
        logger.info(f"Providers without credentials (will fail on first use): {missing}")

    return settings


__all__ = ["ENV_PREFIX", "load_settings"]
