"""
Shared observability helpers (telemetry, privacy utilities, etc.).

The conversion service imports from this package to get consistent
instrumentation and to keep statement data out of logs.
"""

from .privacy import fingerprint_filename, hash_payload, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    TelemetrySettings,
    bind_request_context,
    ensure_request_id,
    reset_request_context,
    setup_telemetry,
    traced_stage,
)

__all__ = [
    "fingerprint_filename",
    "hash_payload",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "TelemetrySettings",
    "bind_request_context",
    "ensure_request_id",
    "reset_request_context",
    "setup_telemetry",
    "traced_stage",
]
