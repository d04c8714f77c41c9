"""
Configuration Schemas for Parley.

Pydantic models for the static configuration supplied at process start.
The core only reads these values; it never persists or mutates them.

Security:
    API keys use SecretStr to prevent accidental logging of credentials.
    Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


class RateLimitHints(BaseModel):
    """Published request ceilings for a provider tier (informational)."""

    model_config = ConfigDict(frozen=True)

    requests_per_minute: int | None = Field(None, ge=1)
    requests_per_day: int | None = Field(None, ge=1)


class ProviderSettings(BaseModel):
    """
    Static configuration for one chat provider.

    Immutable after load. Delays and timeouts are in seconds.
    """

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., description="Model identifier sent to the backend")
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(1024, ge=1, description="Token ceiling per response")
    top_p: float = Field(1.0, ge=0, le=1)
    max_retries: int = Field(3, ge=0, description="Local retries for 429 responses")
    retry_delay: float = Field(1.0, ge=0, description="Base delay for exponential backoff")
    timeout: float = Field(30.0, gt=0, description="Per-request timeout")
    rate_limit: RateLimitHints | None = None
    base_url: str | None = Field(None, description="Override the provider's API root")
    api_key: SecretStr = Field(default=SecretStr(""), description="Provider credential")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key.get_secret_value())


class TransportSettings(BaseModel):
    """Configuration for the reconnecting websocket transport."""

    model_config = ConfigDict(frozen=True)

    url: str = "ws://localhost:3000"
    max_reconnect_attempts: int = Field(5, ge=0)
    reconnect_delay: float = Field(1.0, ge=0, description="Base reconnect delay")
    max_reconnect_delay: float = Field(10.0, ge=0, description="Reconnect delay cap")
    open_timeout: float = Field(10.0, gt=0)
    ping_interval: float | None = Field(None, gt=0, description="Keep-alive ping period")


def default_provider_settings() -> dict[str, ProviderSettings]:
    """Built-in provider defaults (credentials come from the environment)."""
    return {
        "googleai": ProviderSettings(
            model="gemini-2.0-flash",
            temperature=0.5,
            max_tokens=4096,
            top_p=0.95,
            max_retries=3,
            retry_delay=1.0,
            timeout=15.0,
            rate_limit=RateLimitHints(requests_per_minute=15, requests_per_day=1500),
        ),
        "deepseek": ProviderSettings(
            model="deepseek-chat",
            temperature=0.7,
            max_tokens=2048,
            top_p=0.9,
            max_retries=3,
            retry_delay=1.0,
            timeout=30.0,
            rate_limit=RateLimitHints(requests_per_minute=10, requests_per_day=1000),
        ),
        "openai": ProviderSettings(
            model="gpt-3.5-turbo",
            temperature=0.7,
            max_tokens=2048,
            top_p=1.0,
            max_retries=3,
            retry_delay=1.0,
            timeout=30.0,
        ),
    }


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str = "parley"
    environment: str = "development"
    debug: bool = False

    providers: dict[str, ProviderSettings] = Field(default_factory=default_provider_settings)

    # Provider selection
    default_provider: str = "googleai"
    fallback_provider: str = "deepseek"
    failover_enabled: bool = True

    transport: TransportSettings = Field(default_factory=TransportSettings)

    @model_validator(mode="after")
    def _check_provider_names(self) -> AppSettings:
        for role, name in (
            ("default_provider", self.default_provider),
            ("fallback_provider", self.fallback_provider),
        ):
            if name not in self.providers:
                available = ", ".join(self.providers) or "(none)"
                raise ValueError(f"{role} '{name}' is not configured. Available: {available}")
        return self


__all__ = [
    "AppSettings",
    "ProviderSettings",
    "RateLimitHints",
    "TransportSettings",
    "default_provider_settings",
]
