"""
Environment-driven configuration for the model-backed providers.

Statement extraction and the financial advisor each choose a provider with one
environment variable (`EXTRACTION_PROVIDER`, `ADVISOR_PROVIDER`) and tune it
with companions that share the same prefix:

    <PREFIX>_TIMEOUT_SECONDS, <PREFIX>_TEMPERATURE, <PREFIX>_MAX_TOKENS

Selecting `openai` additionally requires `OPENAI_API_KEY`, `OPENAI_MODEL` and
`OPENAI_API_BASE`. Everything is validated when the service starts, so a typo
surfaces as a startup failure rather than on the first uploaded statement.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

SUPPORTED_PROVIDERS = frozenset({"deterministic", "mock", "openai"})
REQUIRED_OPENAI_ENV_VARS = ("OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_API_BASE")

_Number = TypeVar("_Number", int, float)


class ProviderSettingsError(RuntimeError):
    """Raised when provider configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class OpenAIConfig:
    api_key: str
    model: str
    api_base: str


@dataclass(frozen=True, slots=True)
class ProviderDefaults:
    """Values used when the corresponding environment variable is unset or blank."""

    provider: str = "deterministic"
    timeout_seconds: float = 60.0
    temperature: float = 0.0
    max_output_tokens: int = 4096


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    provider_name: str
    timeout_seconds: float
    temperature: float
    max_output_tokens: int
    openai: Optional[OpenAIConfig] = None


def load_provider_settings(env_prefix: str, defaults: ProviderDefaults = ProviderDefaults()) -> ProviderSettings:
    """
    Read the provider selected by `env_prefix` and its tuning knobs.

    Args:
        env_prefix: Name of the selector variable, e.g. "EXTRACTION_PROVIDER".
        defaults: Fallbacks for every knob of this provider stack.
    Raises:
        ProviderSettingsError: unknown provider, non-numeric or non-positive
            values, or missing OpenAI credentials.
    """

    provider_name = _provider_name(env_prefix, defaults.provider)
    timeout_seconds = _read_number(f"{env_prefix}_TIMEOUT_SECONDS", defaults.timeout_seconds, float)
    if timeout_seconds <= 0:
        raise ProviderSettingsError(f"{env_prefix}_TIMEOUT_SECONDS must be positive (received '{timeout_seconds}')")

    return ProviderSettings(
        provider_name=provider_name,
        timeout_seconds=timeout_seconds,
        temperature=_read_number(f"{env_prefix}_TEMPERATURE", defaults.temperature, float),
        max_output_tokens=_read_number(f"{env_prefix}_MAX_TOKENS", defaults.max_output_tokens, int),
        openai=_openai_config(env_prefix) if provider_name == "openai" else None,
    )


def read_int_setting(env_key: str, default: int, *, minimum: int | None = None) -> int:
    value = _read_number(env_key, default, int)
    if minimum is not None and value < minimum:
        raise ProviderSettingsError(f"{env_key} must be >= {minimum} (received '{value}')")
    return value


def read_optional_int_setting(env_key: str) -> int | None:
    """Integer knob where unset means "no value" (an unlimited quota, for instance)."""
    if not _raw(env_key):
        return None
    return _read_number(env_key, 0, int)


def _raw(env_key: str) -> str:
    return (os.getenv(env_key) or "").strip()


def _provider_name(env_key: str, default_provider: str) -> str:
    name = _raw(env_key).lower() or default_provider
    if name not in SUPPORTED_PROVIDERS:
        choices = ", ".join(sorted(SUPPORTED_PROVIDERS))
        raise ProviderSettingsError(f"Unsupported provider '{name}' for {env_key} (expected one of: {choices})")
    return name


def _read_number(env_key: str, default: _Number, cast: Callable[[str], _Number]) -> _Number:
    raw_value = _raw(env_key)
    if not raw_value:
        return default
    try:
        return cast(raw_value)
    except ValueError as exc:
        kind = "an integer" if cast is int else "numeric"
        raise ProviderSettingsError(f"{env_key} must be {kind} (received '{raw_value}')") from exc


def _openai_config(selector_env: str) -> OpenAIConfig:
    values = {env_key: _raw(env_key) for env_key in REQUIRED_OPENAI_ENV_VARS}
    missing = [env_key for env_key, value in values.items() if not value]
    if missing:
        raise ProviderSettingsError(f"{selector_env}=openai requires the following env vars: {', '.join(missing)}")

    return OpenAIConfig(
        api_key=values["OPENAI_API_KEY"],
        model=values["OPENAI_MODEL"],
        api_base=values["OPENAI_API_BASE"],
    )
