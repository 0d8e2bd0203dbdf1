from io import BytesIO

from openpyxl import load_workbook

from exporters import EXPORT_HEADER, format_amount, transactions_to_csv, transactions_to_tsv, transactions_to_xlsx
from statement_model import Transaction


def test_csv_matches_download_layout():
    transactions = [Transaction("2024-01-05", 'Coffee "Shop"', 4.5, None, 120.0, "a.pdf")]

    assert transactions_to_csv(transactions) == (
        "Date,Description,Debit,Credit,Balance,SourceFile\n"
        '"2024-01-05","Coffee ""Shop""",4.5,,120,"a.pdf"'
    )


def test_csv_of_no_transactions_is_header_only():
    assert transactions_to_csv([]) == "Date,Description,Debit,Credit,Balance,SourceFile"


def test_format_amount():
    assert format_amount(None) == ""
    assert format_amount(120.0) == "120"
    assert format_amount(0.1) == "0.1"
    assert format_amount(1234.56) == "1234.56"


def test_tsv_is_unquoted():
    transactions = [Transaction("2024-01-06", "Salary", None, 1000.0, 1120.0, "b.pdf")]

    lines = transactions_to_tsv(transactions).split("\n")

    assert lines[0] == "\t".join(EXPORT_HEADER)
    assert lines[1] == "2024-01-06\tSalary\t\t1000\t1120\tb.pdf"


def test_xlsx_contains_typed_rows():
    transactions = [
        Transaction("2024-01-05", "Coffee", 4.5, None, 120.0, "a.pdf"),
        Transaction("2024-01-06", "Salary", None, 1000.0, 1120.0, "b.pdf"),
    ]

    workbook = load_workbook(BytesIO(transactions_to_xlsx(transactions)))
    sheet = workbook["Transactions"]
    rows = list(sheet.iter_rows(values_only=True))

    assert rows[0] == EXPORT_HEADER
    assert rows[1] == ("2024-01-05", "Coffee", 4.5, None, 120, "a.pdf")
    assert rows[2][3] == 1000
