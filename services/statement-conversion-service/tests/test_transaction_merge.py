from datetime import date

import pytest

from statement_model import Transaction
from transaction_merge import merge_transactions, parse_statement_date


def _tx(tx_date: str, description: str, source: str = "a.pdf") -> Transaction:
    return Transaction(tx_date, description, 1.0, None, 100.0, source)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-03-05", date(2024, 3, 5)),
        ("2024-03-05T10:00:00", date(2024, 3, 5)),
        ("03/05/2024", date(2024, 3, 5)),
        ("25/12/2023", date(2023, 12, 25)),
        ("5 Mar 2024", date(2024, 3, 5)),
        ("March 5, 2024", date(2024, 3, 5)),
        ("", None),
        (None, None),
        ("sometime last week", None),
    ],
)
def test_parse_statement_date(raw, expected):
    assert parse_statement_date(raw) == expected


def test_merge_sorts_across_files_by_date():
    batch_a = [_tx("2024-01-15", "A2", "a.pdf"), _tx("2024-01-02", "A1", "a.pdf")]
    batch_b = [_tx("2024-02-01", "B2", "b.pdf"), _tx("2024-01-20", "B1", "b.pdf")]

    merged = merge_transactions([batch_a, batch_b])

    assert [tx.description for tx in merged] == ["A1", "A2", "B1", "B2"]
    assert [tx.source_file for tx in merged] == ["a.pdf", "a.pdf", "b.pdf", "b.pdf"]


def test_merge_is_stable_for_equal_dates():
    batch_a = [_tx("2024-01-05", "first"), _tx("2024-01-05", "second")]
    batch_b = [_tx("2024-01-05", "third", "b.pdf")]

    merged = merge_transactions([batch_a, batch_b])

    assert [tx.description for tx in merged] == ["first", "second", "third"]


def test_unparseable_dates_go_last_in_original_order():
    batch = [_tx("??", "unknown-1"), _tx("2024-01-05", "dated"), _tx("n/a", "unknown-2")]

    merged = merge_transactions([batch])

    assert [tx.description for tx in merged] == ["dated", "unknown-1", "unknown-2"]


def test_merge_of_nothing_is_empty():
    assert merge_transactions([]) == []
    assert merge_transactions([[], []]) == []
