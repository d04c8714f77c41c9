"""
Parley Configuration

Static, environment-driven configuration with pydantic models.
"""

from .loader import load_settings
from .schemas import AppSettings, ProviderSettings, RateLimitHints, TransportSettings

__all__ = [
    "AppSettings",
    "ProviderSettings",
    "RateLimitHints",
    "TransportSettings",
    "load_settings",
]
