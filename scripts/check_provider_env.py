#!/usr/bin/env python3
"""
Diagnostic script to check environment variables for the statement conversion service.

Reports which providers will be selected, whether the OpenAI configuration they
need is present, and the tuning knobs that fall back to defaults. Secrets are
redacted in the output.
"""

import os
import sys
from typing import Any

PROVIDER_VARS = {
    "EXTRACTION_PROVIDER": "openai",
    "ADVISOR_PROVIDER": "deterministic",
}

SUPPORTED_PROVIDERS = {
    "EXTRACTION_PROVIDER": ("mock", "openai"),
    "ADVISOR_PROVIDER": ("deterministic", "mock", "openai"),
}

OPENAI_VARS = ("OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_API_BASE")

OPTIONAL_VARS = {
    "EXTRACTION_PROVIDER_TIMEOUT_SECONDS": "120.0",
    "ADVISOR_PROVIDER_TIMEOUT_SECONDS": "60.0",
    "EXTRACTION_PROVIDER_MAX_TOKENS": "8192",
    "ADVISOR_PROVIDER_MAX_TOKENS": "2048",
    "CONVERSION_MAX_IN_FLIGHT": "1",
    "CONVERSION_DEFAULT_LIMIT": "unlimited",
    "CONVERTER_DB_URL": "sqlite (services/statement-conversion-service/data/converter.db)",
    "LOG_LEVEL": "INFO",
    "ENABLE_TELEMETRY": "false",
}


def check_env_var(key: str) -> dict[str, Any]:
    """Check if an environment variable is set, redacting sensitive values."""
    value = os.getenv(key)
    is_set = value is not None and value.strip() != ""

    result = {"key": key, "is_set": is_set, "value": value.strip() if is_set else None}
    if is_set and ("KEY" in key.upper() or "SECRET" in key.upper()):
        result["value"] = f"{value[:7]}...{value[-4:]}" if len(value) > 11 else "***REDACTED***"
    return result


def main() -> int:
    """Check provider environment variables and report status."""
    print("=" * 70)
    print("Statement Conversion Service Environment Diagnostic")
    print("=" * 70)
    print()

    issues: list[str] = []
    needs_openai = False

    print("PROVIDERS:")
    print("-" * 70)
    for key, default in PROVIDER_VARS.items():
        result = check_env_var(key)
        provider = (result["value"] or default).lower()
        if provider not in SUPPORTED_PROVIDERS[key]:
            print(f"✗ {key:45} = {provider} (supported: {', '.join(SUPPORTED_PROVIDERS[key])})")
            issues.append(f"{key} is set to '{provider}', which this service does not support")
            continue
        suffix = "" if result["is_set"] else " (default)"
        print(f"✓ {key:45} = {provider}{suffix}")
        needs_openai = needs_openai or provider == "openai"
    print()

    print("OPENAI:")
    print("-" * 70)
    for key in OPENAI_VARS:
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:45} = {result['value']}")
        elif needs_openai:
            print(f"✗ {key:45} = NOT SET")
            issues.append(f"{key} is required when a provider is set to 'openai'")
        else:
            print(f"○ {key:45} = NOT SET (not needed)")
    print()

    print("OPTIONAL VARIABLES:")
    print("-" * 70)
    for key, default in OPTIONAL_VARS.items():
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:45} = {result['value']}")
        else:
            print(f"○ {key:45} = NOT SET (default: {default})")
    print()
    print("=" * 70)

    if issues:
        print("❌ ISSUES FOUND:")
        for issue in issues:
            print(f"   - {issue}")
        return 1

    print("✓ Provider configuration looks complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
