"""Payment Reminder - Customer Importer.

Reads a customer list from a spreadsheet and returns validated
``CustomerDraft`` objects plus one ``RowError`` per rejected row.

Supported data sources
~~~~~~~~~~~~~~~~~~~~~~
* **CSV** -- header row first, UTF-8 (a BOM is tolerated).
* **XLSX** -- the first sheet of the workbook, header row first.

Either may be given as a file path or a bytes buffer (``io.BytesIO`` or
raw ``bytes``, e.g. a Streamlit upload); buffers need ``filename`` to pick
the format unless they are recognisably a zip-based workbook.

Columns are matched by *header text* (case-insensitive aliases), so column
order does not matter and unknown columns are ignored.

Usage::

    from payment_reminder.importer import load_customers

    result = load_customers("customers.csv")
    print(f"Valid: {len(result.customers)}  Errors: {len(result.errors)}")
    result.print_summary()
"""

from __future__ import annotations

import csv
import io
import logging
import math
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import IO, Any, Optional, Union

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ValidationError
from .models import CustomerDraft, coerce_date

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes, IO[bytes]]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CSV_EXTENSIONS = (".csv",)
XLSX_EXTENSIONS = (".xlsx", ".xlsm")

# Column header aliases -- compared case-insensitively after trimming.
_CUSTOMER_HEADERS: dict[str, list[str]] = {
    "name":       ["name", "customer_name", "customer name"],
    "email":      ["email", "customer_email", "customer email"],
    "phone":      ["phone", "customer_phone", "customer phone"],
    "company":    ["company", "customer_company", "customer company"],
    "amount_due": ["amount_due", "amount due", "amount"],
    "due_date":   ["due_date", "due date", "duedate", "date"],
    "notes":      ["notes", "description"],
}

# Cell values that should be treated as empty.
_NULL_SIGNALS: set[str] = {"", "#N/A", "N/A", "#REF!"}


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------

@dataclass
class RowError:
    """A data row that failed validation.  ``row`` is 1-based over the
    non-blank data rows (the header is not counted)."""

    row: int
    message: str
    field: str = ""

    def __str__(self) -> str:
        return f"Row {self.row}: {self.message}"


@dataclass
class ImportResult:
    """Aggregated output from :func:`load_customers`."""

    customers: list[CustomerDraft] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    # Metadata
    source_file: str | None = None
    file_format: str = ""
    total_rows_scanned: int = 0
    empty_rows_skipped: int = 0
    unmapped_headers: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def total_amount(self) -> float:
        return sum(c.amount_due for c in self.customers)

    def error_messages(self, limit: Optional[int] = None) -> list[str]:
        messages = [str(e) for e in self.errors]
        return messages if limit is None else messages[:limit]

    def print_summary(self) -> None:
        """Print a human-readable summary of what was loaded."""
        print("=" * 65)
        print("  Payment Reminder -- Customer Import Summary")
        print("=" * 65)
        print(f"  Source file       : {self.source_file or '(bytes buffer)'}")
        print(f"  Format            : {self.file_format}")
        print(f"  Rows scanned      : {self.total_rows_scanned}")
        print(f"  Empty rows skipped: {self.empty_rows_skipped}")
        print("-" * 65)
        print(f"  Valid customers   : {len(self.customers)}")
        print(f"  Rejected rows     : {len(self.errors)}")
        print(f"  Total amount due  : ${self.total_amount:,.2f}")
        if self.unmapped_headers:
            print(f"  Ignored columns   : {', '.join(self.unmapped_headers)}")
        if self.errors:
            print("-" * 65)
            print(f"  Errors ({len(self.errors)}):")
            for message in self.error_messages(limit=20):
                print(f"    - {message}")
            if len(self.errors) > 20:
                print(f"    ... and {len(self.errors) - 20} more")
        print("=" * 65)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def load_customers(source: Source, *, filename: Optional[str] = None) -> ImportResult:
    """Load and validate customers from a CSV or XLSX source.

    Parameters
    ----------
    source:
        File path (``str`` or ``Path``), raw ``bytes`` or a readable bytes
        buffer.
    filename:
        Original file name; its extension selects the format.  Defaults
        to the path name when ``source`` is a path.

    Returns
    -------
    ImportResult
        Valid drafts in file order plus per-row errors.

    Raises
    ------
    ValidationError
        The extension is neither CSV nor XLSX.
    FileNotFoundError
        ``source`` is a path that does not exist.
    """
    result = ImportResult()
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Import file not found: {path}")
        result.source_file = str(path)
        filename = filename or path.name
        data = path.read_bytes()
    elif isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    else:
        data = source.read()

    result.file_format = _detect_format(filename, data)
    logger.info("Importing customers from %s (%s)",
                result.source_file or filename or "buffer", result.file_format)

    if result.file_format == "csv":
        header, rows = _read_csv(data)
    else:
        header, rows = _read_xlsx(data)

    header_map = _build_header_map(header, _CUSTOMER_HEADERS)
    mapped = set(header_map.values())
    result.unmapped_headers = [h for i, h in enumerate(header) if h and i not in mapped]

    data_row = 0
    for values in rows:
        result.total_rows_scanned += 1
        if all(_clean_str(v) == "" for v in values):
            result.empty_rows_skipped += 1
            continue
        data_row += 1
        draft, errors = _parse_row(values, header_map, data_row)
        if draft is not None:
            result.customers.append(draft)
        result.errors.extend(errors)

    logger.info("Import parsed %d rows: %d valid, %d errors, %d blank",
                result.total_rows_scanned, len(result.customers),
                len(result.errors), result.empty_rows_skipped)
    return result


# ---------------------------------------------------------------------------
# Source readers
# ---------------------------------------------------------------------------

def _detect_format(filename: Optional[str], data: bytes) -> str:
    if filename:
        suffix = Path(filename).suffix.lower()
        if suffix in CSV_EXTENSIONS:
            return "csv"
        if suffix in XLSX_EXTENSIONS:
            return "xlsx"
        raise ValidationError(
            "Unsupported file format. Please use CSV or Excel files.", field="file",
        )
    # No name to go on: XLSX files are zip archives.
    return "xlsx" if data[:2] == b"PK" else "csv"


def _read_csv(data: bytes) -> tuple[list[str], list[list[Any]]]:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError(
            f"CSV file is not UTF-8 encoded (byte {exc.start}). Please save it as UTF-8.",
            field="file",
        ) from exc
    try:
        reader = csv.reader(io.StringIO(text))
        header = next(reader, [])
        rows = [row for row in reader]
    except csv.Error as exc:
        raise ValidationError(f"Malformed CSV file: {exc}", field="file") from exc
    return [_clean_str(h) for h in header], rows


def _read_xlsx(data: bytes) -> tuple[list[str], list[list[Any]]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(data), data_only=True, read_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError) as exc:
        raise ValidationError(f"Unreadable Excel file: {exc}", field="file") from exc
    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        header = next(rows, ())
        return [_clean_str(h) for h in header], [list(r) for r in rows]
    finally:
        wb.close()


# ---------------------------------------------------------------------------
# Header mapping
# ---------------------------------------------------------------------------

def _build_header_map(
    header: list[str],
    header_spec: dict[str, list[str]],
) -> dict[str, int]:
    """Map logical field names to 0-based column indices.

    The first header matching any alias of a field wins.
    """
    lowered = [h.lower() for h in header]
    header_map: dict[str, int] = {}
    for logical_name, aliases in header_spec.items():
        for idx, header_text in enumerate(lowered):
            if header_text and header_text in aliases:
                header_map[logical_name] = idx
                break

    logger.debug("Header map (%d/%d): %s",
                 len(header_map), len(header_spec), list(header_map))
    return header_map


def _cell_value(values: list[Any], header_map: dict[str, int], field_name: str):
    """Safely read a cell value by logical field name."""
    idx = header_map.get(field_name)
    if idx is None or idx >= len(values):
        return None
    return values[idx]


# ---------------------------------------------------------------------------
# Row validation
# ---------------------------------------------------------------------------

def _parse_row(
    values: list[Any],
    header_map: dict[str, int],
    row_number: int,
) -> tuple[CustomerDraft | None, list[RowError]]:
    errors: list[RowError] = []

    name = _clean_str(_cell_value(values, header_map, "name"))
    if not name:
        errors.append(RowError(row_number, "Missing customer name", "name"))

    email = _clean_str(_cell_value(values, header_map, "email"))
    if not email:
        errors.append(RowError(row_number, "Missing email", "email"))

    amount = _parse_currency(_cell_value(values, header_map, "amount_due"))
    if amount is None or amount <= 0:
        errors.append(RowError(row_number, "Invalid amount due", "amount_due"))

    raw_due = _cell_value(values, header_map, "due_date")
    due_date = None
    if _clean_str(raw_due) == "":
        errors.append(RowError(row_number, "Missing due date", "due_date"))
    else:
        due_date = _parse_date(raw_due)
        if due_date is None:
            errors.append(RowError(row_number, f"Invalid due date '{raw_due}'", "due_date"))

    if errors:
        return None, errors

    return CustomerDraft(
        name=name,
        email=email,
        amount_due=amount,
        due_date=due_date,
        phone=_clean_str(_cell_value(values, header_map, "phone")),
        company=_clean_str(_cell_value(values, header_map, "company")),
        notes=_clean_str(_cell_value(values, header_map, "notes")),
    ), []


# ---------------------------------------------------------------------------
# Data cleaning / type coercion helpers
# ---------------------------------------------------------------------------

def _clean_str(val) -> str:
    """Convert a cell value to a stripped string.  None becomes ``""``."""
    if val is None:
        return ""
    s = str(val).strip()
    return "" if s in _NULL_SIGNALS else s


def _parse_currency(val) -> float | None:
    """Parse a dollar-amount cell value; None when unparseable.

    Handles numeric cells, ``"$1,234.56"`` strings and parenthesized
    negatives ``"($500.00)"``.
    """
    if val is None or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        amount = float(val)
        return amount if math.isfinite(amount) else None

    s = _clean_str(val)
    if not s:
        return None

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    s = s.replace("$", "").replace(",", "").strip()

    try:
        amount = float(s)
    except ValueError:
        return None
    if not math.isfinite(amount):
        return None
    return -amount if negative else amount


def _parse_date(val) -> date | None:
    """Parse a date cell value.

    openpyxl returns ``datetime`` objects for date-typed cells.  Excel
    serial numbers and the string formats ``coerce_date`` knows are also
    accepted.
    """
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val

    if isinstance(val, (int, float)) and not isinstance(val, bool):
        serial = int(val)
        if 20000 < serial < 80000:
            return (datetime(1899, 12, 30) + timedelta(days=serial)).date()
        return None

    try:
        return coerce_date(val)
    except ValueError:
        return None
