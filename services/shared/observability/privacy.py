"""
Helpers that keep statement contents and personal details out of log records.

Bank statements carry account numbers, names, and every purchase a person made,
so log payloads only ever carry hashes or whitelisted metadata.
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from pathlib import PurePath
from typing import Any

REDACTED = "[REDACTED]"


def hash_payload(value: Any) -> str:
    """
    Return a stable SHA-256 hash for the provided payload without leaking contents.

    Strings are encoded as UTF-8, bytes (raw PDF uploads, rendered pages) are
    used as-is, and arbitrary objects are serialized via JSON (falling back to
    repr()) before hashing.
    """

    if value is None:
        normalized = b"null"
    elif isinstance(value, bytes):
        normalized = value
    elif isinstance(value, str):
        normalized = value.encode("utf-8")
    else:
        try:
            normalized = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
        except TypeError:
            normalized = repr(value).encode("utf-8")

    return hashlib.sha256(normalized).hexdigest()


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """
    Produce a shallow copy that preserves only the whitelisted keys and redacts the rest.
    """

    whitelist = set(allowed_keys)
    redacted: dict[str, Any] = {}
    for key, value in payload.items():
        if key in whitelist:
            redacted[key] = value
        else:
            redacted[key] = REDACTED
    return redacted


def fingerprint_filename(filename: str) -> str:
    """
    Short, stable stand-in for an uploaded filename ("pdf:1a2b3c4d").

    Statement filenames frequently embed account holders or account numbers.
    """

    suffix = PurePath(filename).suffix.lstrip(".").lower() or "file"
    return f"{suffix}:{hash_payload(filename)[:8]}"
