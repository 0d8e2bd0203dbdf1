"""
Shared utilities for the statement converter.

- provider_settings: Configuration for pluggable extraction/advisor providers
- observability: Telemetry, logging, and privacy utilities
"""

from .provider_settings import (
    SUPPORTED_PROVIDERS,
    REQUIRED_OPENAI_ENV_VARS,
    ProviderSettingsError,
    OpenAIConfig,
    ProviderDefaults,
    ProviderSettings,
    load_provider_settings,
    read_int_setting,
    read_optional_int_setting,
)

__all__ = [
    "SUPPORTED_PROVIDERS",
    "REQUIRED_OPENAI_ENV_VARS",
    "ProviderSettingsError",
    "OpenAIConfig",
    "ProviderDefaults",
    "ProviderSettings",
    "load_provider_settings",
    "read_int_setting",
    "read_optional_int_setting",
]
