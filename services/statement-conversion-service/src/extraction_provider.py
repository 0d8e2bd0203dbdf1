"""
Provider abstraction for statement transaction extraction.

Providers receive the rendered pages of one statement (base64 PNG, page order)
and return transactions tagged with the originating filename. The OpenAI
implementation lives in `providers.openai_extraction`; the mock provider
replays a JSON fixture for tests and offline demos.

Every provider funnels raw model records through `parse_transaction_records`,
so salvage rules are identical no matter where the JSON came from.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from shared.observability.privacy import fingerprint_filename, hash_payload

from statement_model import Transaction

logger = logging.getLogger(__name__)

GENERIC_EXTRACTION_ERROR = (
    "Failed to analyze the document. The format may be unsupported or the AI could not process the content."
)
REQUIRED_TRANSACTION_FIELDS = ("date", "description", "balance")


class ExtractionError(RuntimeError):
    """User-facing extraction failure; the underlying cause is only logged."""

    def __init__(self, message: str = GENERIC_EXTRACTION_ERROR):
        super().__init__(message)


@dataclass(slots=True)
class ExtractionProviderRequest:
    """
    Contract for extraction inputs.

    Attributes:
        page_images: Base64-encoded PNG pages of a single statement, in page order.
        source_file: Filename every returned transaction is tagged with.
        context: Optional call metadata (provider tuning, request ids).
    """

    page_images: List[str]
    source_file: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ExtractionProviderResponse:
    transactions: List[Transaction] = field(default_factory=list)


@runtime_checkable
class ExtractionProvider(Protocol):
    """Interface for swappable extraction backends."""

    name: str

    def extract(self, request: ExtractionProviderRequest) -> ExtractionProviderResponse:
        """Turn rendered statement pages into transactions."""
        ...


class MockExtractionProvider:
    """
    Fixture-driven provider suitable for tests or offline demos.

    The fixture holds a default `transactions` array and, optionally, a
    `by_source_file` mapping for per-filename replies.
    """

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        env_override = os.getenv("EXTRACTION_PROVIDER_FIXTURE")
        candidate = fixture_path or env_override
        if candidate is None:
            candidate = _default_fixture_path()

        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock extraction provider fixture not found at {self._fixture_path}")

    def extract(self, request: ExtractionProviderRequest) -> ExtractionProviderResponse:
        payload = self._load_fixture()
        per_file = payload.get("by_source_file") or {}
        raw_items = per_file.get(request.source_file, payload.get("transactions", []))
        transactions = parse_transaction_records(raw_items, request.source_file, provider_name=self.name)
        response = ExtractionProviderResponse(transactions=transactions)
        _log_extraction_metrics(self.name, request, response.transactions)
        return response

    def _load_fixture(self) -> Dict[str, Any]:
        try:
            return json.loads(self._fixture_path.read_text())
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mock extraction provider fixture is not valid JSON: {self._fixture_path}") from exc


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_extraction_provider.json"


def build_extraction_provider(
    name: str | None,
    *,
    settings: Optional[Any] = None,
) -> ExtractionProvider:
    """
    Factory that instantiates the requested extraction provider implementation.
    """

    normalized = (name or "").strip().lower()
    if normalized == "mock":
        return MockExtractionProvider()
    if normalized in ("", "openai"):
        from providers.openai_extraction import OpenAIExtractionProvider

        return OpenAIExtractionProvider(settings=settings)

    raise ValueError(f"Unsupported extraction provider '{name}'")


def parse_transaction_records(
    raw_items: Any,
    source_file: str,
    *,
    provider_name: str = "unknown",
) -> List[Transaction]:
    """
    Validate model-produced records and tag them with `source_file`.

    The top level must be a list. Individual records that miss a required
    field, carry non-numeric amounts, or populate both debit and credit are
    skipped with a warning; the rest are kept in their original order.
    """

    if not isinstance(raw_items, list):
        raise ValueError(f"expected a JSON array of transactions, got {type(raw_items).__name__}")

    transactions: List[Transaction] = []
    for index, item in enumerate(raw_items):
        try:
            transactions.append(_parse_transaction(item, source_file))
        except (TypeError, ValueError) as exc:
            logger.warning(
                {
                    "event": "extraction_record_skipped",
                    "provider": provider_name,
                    "record_index": index,
                    "reason": str(exc),
                    "file": fingerprint_filename(source_file),
                }
            )
    return transactions


def _parse_transaction(item: Any, source_file: str) -> Transaction:
    if not isinstance(item, dict):
        raise TypeError("record is not an object")

    missing = [key for key in REQUIRED_TRANSACTION_FIELDS if item.get(key) in (None, "")]
    if missing:
        raise ValueError(f"missing required fields: {', '.join(missing)}")

    debit = _parse_optional_amount(item.get("debit"), "debit")
    credit = _parse_optional_amount(item.get("credit"), "credit")

    # A zero on the unused side is how some replies spell "absent".
    if debit == 0 and credit:
        debit = None
    if credit == 0 and debit:
        credit = None
    if debit and credit:
        raise ValueError("both debit and credit are populated")

    return Transaction(
        date=str(item["date"]).strip(),
        description=" ".join(str(item["description"]).split()),
        debit=debit,
        credit=credit,
        balance=_parse_amount(item["balance"], "balance"),
        source_file=source_file,
    )


def _parse_optional_amount(raw_value: Any, field_name: str) -> float | None:
    if raw_value is None or (isinstance(raw_value, str) and raw_value.strip() == ""):
        return None
    return abs(_parse_amount(raw_value, field_name))


def _parse_amount(raw_value: Any, field_name: str) -> float:
    if isinstance(raw_value, bool):
        raise ValueError(f"{field_name} is not numeric")
    if isinstance(raw_value, (int, float)):
        return float(raw_value)

    cleaned = str(raw_value).replace(",", "").strip()
    for symbol in ("$", "€", "£"):
        cleaned = cleaned.replace(symbol, "")
    try:
        return float(cleaned)
    except ValueError as exc:
        raise ValueError(f"{field_name} is not numeric") from exc


def _log_extraction_metrics(
    provider_name: str,
    request: ExtractionProviderRequest,
    transactions: List[Transaction],
) -> None:
    logger.info(
        {
            "event": "extraction_provider_output",
            "provider": provider_name,
            "file": fingerprint_filename(request.source_file),
            "page_count": len(request.page_images),
            "transaction_count": len(transactions),
            "pages_hash": hash_payload(request.page_images),
        }
    )
