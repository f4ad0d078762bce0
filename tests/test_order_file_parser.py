import io
import os
import sys
from datetime import date, datetime
from pathlib import Path

import pytest

os.environ.setdefault("DATABASE_URL", "")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from openpyxl import Workbook

from services.import_errors import EmptyFileError, UnsupportedFormatError
from services.order_file_parser import detect_format, normalize_date_value, parse_order_file

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx(rows):
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def test_detect_format_prefers_extension_then_mime():
    assert detect_format("Orders.CSV", XLSX_MIME) == "csv"
    assert detect_format("export.xlsx", None) == "xlsx"
    assert detect_format(None, "text/csv") == "csv"
    assert detect_format("export", XLSX_MIME) == "xlsx"
    assert detect_format("export", "application/vnd.ms-excel") == "xlsx"


def test_detect_format_rejects_other_files():
    with pytest.raises(UnsupportedFormatError):
        detect_format("notes.txt", "text/plain")


def test_csv_with_bom_trims_headers_and_skips_blank_lines():
    content = b"\xef\xbb\xbfName , Quantity\n#1,2\n\n , \n#2,3\n"

    rows = parse_order_file(content, "orders.csv")

    assert rows == [{"Name": "#1", "Quantity": "2"}, {"Name": "#2", "Quantity": "3"}]


def test_csv_semicolon_delimited_cp1252():
    content = "Name;Customer Name\n#7;Jürgen Müller\n".encode("cp1252")

    rows = parse_order_file(content, "orders.csv")

    assert rows == [{"Name": "#7", "Customer Name": "Jürgen Müller"}]


def test_csv_dates_are_normalized_to_utc():
    content = b"Name,Created at\n#1,2024-11-21 10:15:33 +0100\n#2,yesterday\n"

    rows = parse_order_file(content, "orders.csv")

    assert rows[0]["Created at"] == "2024-11-21T09:15:33.000Z"
    assert rows[1]["Created at"] == "yesterday"


def test_header_only_file_is_empty():
    with pytest.raises(EmptyFileError):
        parse_order_file(b"Name,Quantity\n", "orders.csv")
    with pytest.raises(EmptyFileError):
        parse_order_file(b"", "orders.csv")


def test_xlsx_first_sheet_with_native_and_serial_dates():
    content = _xlsx([
        ["Name", "Created at", "Quantity", "Product Name"],
        ["#1", datetime(2024, 3, 1, 10, 0), 2, "Shirt"],
        ["#2", 45352, 1.0],
        [None, None, None, None],
    ])

    rows = parse_order_file(content, "orders.xlsx", XLSX_MIME)

    assert len(rows) == 2
    assert rows[0] == {
        "Name": "#1",
        "Created at": "2024-03-01T10:00:00.000Z",
        "Quantity": "2",
        "Product Name": "Shirt",
    }
    assert rows[1]["Created at"] == "2024-03-01T00:00:00.000Z"
    assert rows[1]["Quantity"] == "1"
    assert rows[1]["Product Name"] == ""


def test_unreadable_workbooks_are_unsupported():
    with pytest.raises(UnsupportedFormatError):
        parse_order_file(b"definitely not a workbook", "orders.xlsx")
    with pytest.raises(UnsupportedFormatError):
        parse_order_file(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64, "orders.xls")
    with pytest.raises(UnsupportedFormatError):
        parse_order_file(b"PK\x03\x04broken zip", "orders.xlsx")


def test_normalize_date_value_variants():
    assert normalize_date_value("2024-01-05T08:30:00Z") == "2024-01-05T08:30:00.000Z"
    assert normalize_date_value(date(2024, 1, 5)) == "2024-01-05T00:00:00.000Z"
    assert normalize_date_value(45292) == "2024-01-01T00:00:00.000Z"
    assert normalize_date_value(45292.5) == "2024-01-01T12:00:00.000Z"
    assert normalize_date_value("31.12.") == "31.12."
    assert normalize_date_value("") == ""
    assert normalize_date_value(None) is None
