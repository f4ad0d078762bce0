"""
Order File Parser
Turns an uploaded CSV or XLSX order export into a list of raw row dicts.
"""
import csv
import io
import logging
import re
import zipfile
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from services.column_aliases import DATE_COLUMNS
from services.import_errors import EmptyFileError, UnsupportedFormatError

logger = logging.getLogger(__name__)

RawRow = Dict[str, str]

CSV_EXTENSIONS = (".csv",)
EXCEL_EXTENSIONS = (".xlsx", ".xls")
CSV_MIME_MARKERS = ("csv",)
EXCEL_MIME_MARKERS = ("spreadsheet", "excel")

ZIP_SIGNATURE = b"PK\x03\x04"
LEGACY_XLS_SIGNATURE = b"\xd0\xcf\x11\xe0"

# Excel's day zero (1900 date system, including the 1900 leap-year bug)
EXCEL_EPOCH = datetime(1899, 12, 30, tzinfo=timezone.utc)

_OFFSET_SUFFIX = re.compile(r"\s*([+-])(\d{2}):?(\d{2})$")


# ---------- Dates ----------

def parse_instant(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 / Shopify timestamp string into an aware UTC datetime."""
    candidate = (value or "").strip()
    if not candidate:
        return None
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    # Shopify exports write "2024-11-21 10:15:33 +0100"
    if ":" in candidate or "T" in candidate:
        candidate = _OFFSET_SUFFIX.sub(lambda m: f"{m.group(1)}{m.group(2)}:{m.group(3)}", candidate)
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def normalize_date_value(value: Any) -> Any:
    """
    Normalize a date cell to an ISO-8601 UTC instant string.

    Accepts strings, datetime/date objects and Excel serial day numbers.
    Unparseable strings are returned unchanged; this never raises.
    """
    if value is None or value == "":
        return value
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, date):
        return format_instant(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        try:
            return format_instant(EXCEL_EPOCH + timedelta(days=float(value)))
        except (OverflowError, ValueError):
            return value
    text = str(value).strip()
    parsed = parse_instant(text)
    return format_instant(parsed) if parsed else text


# ---------- Format detection ----------

def detect_format(filename: Optional[str], content_type: Optional[str]) -> str:
    """Return 'csv' or 'xlsx' from the file name, falling back to the MIME type."""
    name = (filename or "").strip().lower()
    mime = (content_type or "").lower()

    if name.endswith(CSV_EXTENSIONS):
        return "csv"
    if name.endswith(EXCEL_EXTENSIONS):
        return "xlsx"
    if any(marker in mime for marker in CSV_MIME_MARKERS):
        return "csv"
    if any(marker in mime for marker in EXCEL_MIME_MARKERS):
        return "xlsx"
    raise UnsupportedFormatError(
        f"Unsupported file type for {filename!r} ({content_type or 'no content type'}). "
        "Only CSV or Excel files (.csv, .xlsx) are allowed"
    )


# ---------- CSV ----------

def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content.decode("utf-8", errors="replace")


def _sniff_delimiter(text: str) -> str:
    header_line = text.split("\n", 1)[0]
    return ";" if header_line.count(";") > header_line.count(",") else ","


def _parse_csv(content: bytes) -> List[RawRow]:
    text = _decode(content)
    if "\x00" in text:
        raise UnsupportedFormatError("File is not a text CSV")

    reader = csv.reader(io.StringIO(text), delimiter=_sniff_delimiter(text))
    header = next(reader, None)
    if not header:
        return []
    headers = [(h or "").strip() for h in header]

    rows: List[RawRow] = []
    for values in reader:
        if not any((v or "").strip() for v in values):
            continue
        row: RawRow = {}
        for idx, column in enumerate(headers):
            if not column:
                continue
            row[column] = values[idx] if idx < len(values) else ""
        rows.append(row)
    return rows


# ---------- XLSX ----------

def _cell_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _parse_xlsx(content: bytes) -> List[RawRow]:
    if content.startswith(LEGACY_XLS_SIGNATURE):
        raise UnsupportedFormatError("Legacy .xls workbooks are not supported; save the file as .xlsx")
    if not content.startswith(ZIP_SIGNATURE):
        raise UnsupportedFormatError("File is not a valid XLSX workbook")

    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise UnsupportedFormatError(f"Could not open Excel workbook: {e}") from e

    try:
        if not workbook.worksheets:
            return []
        sheet = workbook.worksheets[0]
        rows_iter = sheet.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            return []
        headers = [str(h).strip() if h is not None else "" for h in header]

        rows: List[RawRow] = []
        for values in rows_iter:
            if values is None or all(v is None or str(v).strip() == "" for v in values):
                continue
            row: RawRow = {}
            for idx, column in enumerate(headers):
                if not column:
                    continue
                value = values[idx] if idx < len(values) else None
                if column in DATE_COLUMNS and value not in (None, ""):
                    row[column] = str(normalize_date_value(value))
                else:
                    row[column] = _cell_to_text(value)
            rows.append(row)
        return rows
    finally:
        workbook.close()


# ---------- Main entry ----------

def parse_order_file(content: bytes, filename: Optional[str], content_type: Optional[str] = None) -> List[RawRow]:
    """
    Parse an order export into raw rows, preserving row order.

    Raises UnsupportedFormatError for anything that is not CSV/XLSX and
    EmptyFileError when no data rows remain.
    """
    fmt = detect_format(filename, content_type)
    if fmt == "xlsx":
        rows = _parse_xlsx(content or b"")
    else:
        rows = _parse_csv(content or b"")
        for row in rows:
            for column in DATE_COLUMNS:
                if row.get(column):
                    row[column] = str(normalize_date_value(row[column]))

    if not rows:
        raise EmptyFileError("File is empty")

    logger.info(f"Parsed order file filename={filename!r} format={fmt} rows={len(rows)}")
    return rows
