"""Pytest configuration for root-level integration tests.

Adds the conversion service src directory and the shared package root to
sys.path, and keeps persistence in memory.
"""

import os
import sys
from pathlib import Path

os.environ.setdefault("CONVERTER_DB_URL", "sqlite:///:memory:")
# Extraction defaults to OpenAI; the suites replay fixtures instead.
os.environ.setdefault("EXTRACTION_PROVIDER", "mock")

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"

SERVICE_PATHS = [
    SERVICES_ROOT / "statement-conversion-service" / "src",
    SERVICES_ROOT,
]

for path in SERVICE_PATHS:
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
