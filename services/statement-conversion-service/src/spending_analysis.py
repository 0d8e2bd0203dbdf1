from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import Dict, List, Sequence, Tuple

from statement_model import FinancialSummary, Transaction
from transaction_merge import parse_statement_date

_NOISE_PATTERN = re.compile(r"[\d#*/\\.,:-]+")


def compute_financial_summary(transactions: Sequence[Transaction]) -> FinancialSummary:
    """
    Total income (sum of credits), total spending (sum of debits), and net flow.

    Args:
        transactions: Merged statement transactions; absent amounts count as zero.
    Returns:
        FinancialSummary rounded to cents.
    """
    total_income = float(sum(tx.credit or 0.0 for tx in transactions))
    total_spending = float(sum(tx.debit or 0.0 for tx in transactions))
    return FinancialSummary(
        total_income=round(total_income, 2),
        total_spending=round(total_spending, 2),
        net_flow=round(total_income - total_spending, 2),
    )


def normalize_merchant(description: str) -> str:
    """
    Collapse a description to a comparable merchant key.

    Card numbers, dates, and reference digits vary between otherwise identical
    charges, so they are stripped before comparing.
    """
    cleaned = _NOISE_PATTERN.sub(" ", description.lower())
    return " ".join(cleaned.split())


def spending_by_merchant(transactions: Sequence[Transaction]) -> Dict[str, float]:
    """Debit totals keyed by merchant, largest first."""
    totals: Dict[str, float] = defaultdict(float)
    for tx in transactions:
        if tx.debit:
            key = normalize_merchant(tx.description)
            if key:
                totals[key] += tx.debit
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))


def find_recurring_merchants(transactions: Sequence[Transaction], minimum_occurrences: int = 2) -> List[Tuple[str, int]]:
    """
    Merchants charged at least `minimum_occurrences` times, most frequent first.
    """
    counts = Counter(normalize_merchant(tx.description) for tx in transactions if tx.debit)
    return [
        (merchant, count)
        for merchant, count in counts.most_common()
        if merchant and count >= minimum_occurrences
    ]


def largest_debits(transactions: Sequence[Transaction], limit: int = 3) -> List[Transaction]:
    debits = [tx for tx in transactions if tx.debit]
    return sorted(debits, key=lambda tx: tx.debit or 0.0, reverse=True)[:limit]


def months_covered(transactions: Sequence[Transaction]) -> float:
    """
    Length of the statement period in months (at least one).

    Used to turn statement totals into monthly figures.
    """
    dates = [parsed for parsed in (parse_statement_date(tx.date) for tx in transactions) if parsed]
    if len(dates) < 2:
        return 1.0
    span_days = (max(dates) - min(dates)).days + 1
    return max(1.0, span_days / 30.44)
