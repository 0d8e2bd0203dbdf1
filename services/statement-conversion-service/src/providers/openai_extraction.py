"""
OpenAI-powered transaction extraction from rendered statement pages.

Each statement goes out as a single chat completion: the instruction prompt
followed by every page as an inline PNG. A forced function call constrains the
reply to the transaction schema; the arguments are parsed once, with no retry
and no JSON repair.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from openai import APIError, APITimeoutError, OpenAI
from shared.observability.privacy import fingerprint_filename, hash_payload

from extraction_provider import (
    ExtractionError,
    ExtractionProviderResponse,
    _log_extraction_metrics,
    parse_transaction_records,
)

if TYPE_CHECKING:
    from extraction_provider import ExtractionProviderRequest

logger = logging.getLogger(__name__)

FUNCTION_NAME = "record_statement_transactions"

TRANSACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "transactions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "date": {
                        "type": "string",
                        "description": "Transaction date (YYYY-MM-DD).",
                    },
                    "description": {
                        "type": "string",
                        "description": "A clean description of the transaction.",
                    },
                    "debit": {
                        "type": ["number", "null"],
                        "description": "The amount debited (withdrawal). Null if credit.",
                    },
                    "credit": {
                        "type": ["number", "null"],
                        "description": "The amount credited (deposit). Null if debit.",
                    },
                    "balance": {
                        "type": "number",
                        "description": "The running balance after the transaction.",
                    },
                },
                "required": ["date", "description", "balance"],
            },
            "description": "Every transaction on the statement, in the order printed.",
        },
    },
    "required": ["transactions"],
}

EXTRACTION_PROMPT = """Act as an expert financial data analyst. Extract the transaction data from the attached images of a bank statement.
The data might be messy. Identify the columns for date, description, withdrawals/debits, deposits/credits, and the running balance.
Process every transaction listed and return them through the provided function.
- 'debit' is a positive number for money going out.
- 'credit' is a positive number for money coming in.
- If a transaction is a debit, 'credit' must be null, and vice-versa.
- 'balance' is the running balance after that specific transaction.
- Normalize dates to 'YYYY-MM-DD' when possible; otherwise keep the format printed on the statement.
- Clean up the description text so it is human-readable."""


def _image_part(page_image: str) -> dict[str, Any]:
    return {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{page_image}", "detail": "high"},
    }


class OpenAIExtractionProvider:
    """
    Vision-model provider that reads statement pages and returns transactions.
    """

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        if settings and settings.openai:
            self._client = OpenAI(
                api_key=settings.openai.api_key,
                base_url=settings.openai.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
            self._model = settings.openai.model
            self._temperature = settings.temperature
            self._max_tokens = settings.max_output_tokens
        else:
            self._client = None
            self._model = None
            self._temperature = 0.0
            self._max_tokens = 4096

    def extract(self, request: ExtractionProviderRequest) -> ExtractionProviderResponse:
        file_tag = fingerprint_filename(request.source_file)
        if not self._client:
            logger.error({"event": "openai_extraction_not_configured", "provider": self.name, "file": file_tag})
            raise ExtractionError()

        logger.info(
            {
                "event": "openai_extraction_request",
                "provider": self.name,
                "model": self._model,
                "file": file_tag,
                "page_count": len(request.page_images),
                "prompt_hash": hash_payload(EXTRACTION_PROMPT),
            }
        )

        content = [{"type": "text", "text": EXTRACTION_PROMPT}]
        content.extend(_image_part(page) for page in request.page_images)

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": content}],
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": FUNCTION_NAME,
                            "description": "Record the transactions found on a bank statement.",
                            "parameters": TRANSACTION_SCHEMA,
                        },
                    }
                ],
                tool_choice={"type": "function", "function": {"name": FUNCTION_NAME}},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )

            tool_calls = response.choices[0].message.tool_calls
            if not tool_calls:
                logger.warning({"event": "openai_no_tool_calls", "provider": self.name, "file": file_tag})
                raise ExtractionError()

            arguments = (tool_calls[0].function.arguments or "").strip()
            if not arguments:
                logger.warning({"event": "openai_empty_arguments", "provider": self.name, "file": file_tag})
                raise ExtractionError()

            parsed = json.loads(arguments)
            raw_items = parsed.get("transactions") if isinstance(parsed, dict) else parsed
            transactions = parse_transaction_records(raw_items, request.source_file, provider_name=self.name)

        except (APIError, APITimeoutError) as exc:
            logger.error(
                {
                    "event": "openai_extraction_error",
                    "provider": self.name,
                    "file": file_tag,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise ExtractionError() from exc

        except (json.JSONDecodeError, ValueError) as exc:
            logger.error(
                {
                    "event": "openai_json_parse_error",
                    "provider": self.name,
                    "file": file_tag,
                    "error_message": str(exc),
                }
            )
            raise ExtractionError() from exc

        logger.info(
            {
                "event": "openai_extraction_response",
                "provider": self.name,
                "file": file_tag,
                "transaction_count": len(transactions),
                "response_hash": hash_payload(arguments),
            }
        )
        _log_extraction_metrics(self.name, request, transactions)
        return ExtractionProviderResponse(transactions=transactions)
