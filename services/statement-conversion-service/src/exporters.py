"""
Export merged transactions as CSV (download), TSV (clipboard) or XLSX.

CSV rows quote the text columns and double embedded quotes; numbers are written
unquoted in their shortest form and left empty when absent, e.g.
`"2024-01-05","Coffee ""Shop""\",4.5,,120,"a.pdf"`.
"""

from __future__ import annotations

from io import BytesIO
from typing import Iterable, List, Optional, Sequence

from openpyxl import Workbook

from statement_model import Transaction

EXPORT_HEADER = ("Date", "Description", "Debit", "Credit", "Balance", "SourceFile")
CSV_FILENAME = "combined_transactions.csv"
XLSX_FILENAME = "combined_transactions.xlsx"


def format_amount(value: Optional[float]) -> str:
    if value is None:
        return ""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _quote(text: Optional[str]) -> str:
    return '"' + (text or "").replace('"', '""') + '"'


def transactions_to_csv(transactions: Iterable[Transaction]) -> str:
    lines: List[str] = [",".join(EXPORT_HEADER)]
    for tx in transactions:
        lines.append(
            ",".join(
                (
                    _quote(tx.date),
                    _quote(tx.description),
                    format_amount(tx.debit),
                    format_amount(tx.credit),
                    format_amount(tx.balance),
                    _quote(tx.source_file),
                )
            )
        )
    return "\n".join(lines)


def transactions_to_tsv(transactions: Iterable[Transaction]) -> str:
    """Tab-separated copy of the table for pasting into a spreadsheet; no quoting."""
    lines: List[str] = ["\t".join(EXPORT_HEADER)]
    for tx in transactions:
        lines.append(
            "\t".join(
                (
                    tx.date or "",
                    tx.description or "",
                    format_amount(tx.debit),
                    format_amount(tx.credit),
                    format_amount(tx.balance),
                    tx.source_file or "",
                )
            )
        )
    return "\n".join(lines)


def transactions_to_xlsx(transactions: Sequence[Transaction]) -> bytes:
    """Single-sheet workbook with typed numeric cells."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Transactions"
    sheet.append(list(EXPORT_HEADER))
    for tx in transactions:
        sheet.append([tx.date, tx.description, tx.debit, tx.credit, tx.balance, tx.source_file])
    sheet.freeze_panes = "A2"

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
