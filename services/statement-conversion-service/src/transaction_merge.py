from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List, Optional

from statement_model import Transaction

# Tried in order after ISO; month-first wins over day-first for ambiguous values.
_FALLBACK_DATE_FORMATS = (
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%d-%b-%Y",
    "%m/%d/%y",
    "%d/%m/%y",
)


def parse_statement_date(raw_value: object) -> Optional[date]:
    """
    Best-effort conversion of a model-produced date string to a `date`.

    Returns None when the value matches none of the supported layouts; callers
    decide how unparseable dates are ordered.
    """
    if not raw_value:
        return None

    text = str(raw_value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass

    for fmt in _FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def merge_transactions(batches: Iterable[List[Transaction]]) -> List[Transaction]:
    """
    Concatenate per-file batches (in the order given) and sort ascending by date.

    The sort is stable, so transactions sharing a date keep their original
    relative order. Transactions with unparseable dates go after every dated
    one, also in original order.
    """
    merged: List[Transaction] = [tx for batch in batches for tx in batch]
    return sorted(merged, key=_sort_key)


def _sort_key(transaction: Transaction) -> tuple[int, date]:
    parsed = parse_statement_date(transaction.date)
    if parsed is None:
        return (1, date.min)
    return (0, parsed)
