"""Pytest configuration for statement-conversion-service tests.

Ensures the service's own src directory takes precedence in sys.path
to avoid module name collisions with other services, and points the
persistence layer at an in-memory database and extraction at the mock
provider before anything imports it.
"""

import os
import sys
from pathlib import Path

os.environ.setdefault("CONVERTER_DB_URL", "sqlite:///:memory:")
# Extraction defaults to OpenAI; the suites replay fixtures instead.
os.environ.setdefault("EXTRACTION_PROVIDER", "mock")

SERVICES_ROOT = Path(__file__).resolve().parents[2]

# Ensure this service's src is first in sys.path
SERVICE_SRC = Path(__file__).resolve().parents[1] / "src"
if str(SERVICE_SRC) not in sys.path:
    sys.path.insert(0, str(SERVICE_SRC))

# The shared package (provider settings, observability) lives beside the services
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(1, str(SERVICES_ROOT))

import fitz  # noqa: E402  (PyMuPDF)
import pytest  # noqa: E402


def build_pdf(pages: int = 1, password: str | None = None, text: str = "Statement") -> bytes:
    """Produce a small text PDF in memory, optionally AES-256 encrypted."""
    document = fitz.open()
    for number in range(pages):
        page = document.new_page()
        page.insert_text((72, 72), f"{text} page {number + 1}")
    if password:
        data = document.tobytes(
            encryption=fitz.PDF_ENCRYPT_AES_256,
            user_pw=password,
            owner_pw=f"{password}-owner",
        )
    else:
        data = document.tobytes()
    document.close()
    return data


@pytest.fixture
def make_pdf():
    return build_pdf
