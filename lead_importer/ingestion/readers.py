"""Readers turning uploaded contact files into raw field-name to value records."""
from __future__ import annotations

import csv
import io
import json
import logging
import numbers
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional, Union

import pandas as pd

from ..models import RawRecord

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

DELIMITED = "delimited"
SPREADSHEET = "spreadsheet"
JSON_DOCUMENT = "json"
JSON_LINES = "jsonl"

_DELIMITED_SUFFIXES = {".csv", ".tsv", ".txt"}
_EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}
_JSON_SUFFIXES = {".json"}
_JSONL_SUFFIXES = {".jsonl"}

SUPPORTED_EXTENSIONS = frozenset(_DELIMITED_SUFFIXES | _EXCEL_SUFFIXES | _JSON_SUFFIXES | _JSONL_SUFFIXES)

# A .csv/.txt header with more tabs than this is read as tab separated.
_TSV_TAB_THRESHOLD = 5


class ParseError(RuntimeError):
    """Raised when a whole file cannot be read; fatal for the import job."""


class UnsupportedFileTypeError(ParseError):
    """Raised when an unsupported file format is passed to the reader."""


@dataclass
class ReadResult:
    """Raw records read from one file, with the kind of source they came from."""

    kind: str
    records: List[RawRecord] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    skipped_lines: int = 0

    @property
    def has_headers(self) -> bool:
        return self.kind in {DELIMITED, SPREADSHEET}


def read_file(path: PathLike, *, force_tab: bool = False) -> ReadResult:
    """Read a contact file from disk, inferring its kind from the extension."""

    file_path = Path(path)
    try:
        data = file_path.read_bytes()
    except OSError as exc:
        raise ParseError(f"Unable to read '{file_path}': {exc}") from exc
    return read_records(data, file_path.suffix, force_tab=force_tab)


def read_records(data: bytes, extension: str, *, force_tab: bool = False) -> ReadResult:
    """Parse ``data`` according to ``extension`` into raw records.

    Parameters
    ----------
    data:
        Raw file content.
    extension:
        File extension with or without the leading dot (``.csv``, ``xlsx``...).
    force_tab:
        Treat delimited text as tab separated regardless of its content.
    """

    suffix = _normalise_extension(extension)
    if suffix not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileTypeError(
            f"Unsupported file extension: {extension!r}. Supported: {sorted(SUPPORTED_EXTENSIONS)}"
        )
    if not data:
        raise ParseError("The uploaded file is empty")

    if suffix in _DELIMITED_SUFFIXES:
        result = parse_delimited(_decode(data), force_tab=force_tab or suffix == ".tsv")
    elif suffix in _EXCEL_SUFFIXES:
        result = parse_spreadsheet(data, suffix)
    elif suffix in _JSONL_SUFFIXES:
        result = parse_json_lines(_decode(data))
    else:
        text = _decode(data)
        if _looks_like_json_lines(text):
            result = parse_json_lines(text)
        else:
            result = parse_json_document(text)

    LOGGER.info("Read %s %s records from %s payload", len(result.records), result.kind, suffix)
    return result


def _normalise_extension(extension: str) -> str:
    suffix = (extension or "").strip().lower()
    if suffix and not suffix.startswith("."):
        suffix = f".{suffix}"
    return suffix


def _decode(data: bytes) -> str:
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        LOGGER.warning("File is not valid UTF-8, falling back to latin-1")
        text = data.decode("latin-1")
    return text.lstrip("\ufeff")


# --- Delimited text ---

def detect_separator(line: str) -> str:
    """Pick the most frequent of tab, semicolon and comma in a header line."""

    tabs = line.count("\t")
    semicolons = line.count(";")
    commas = line.count(",")
    if tabs > semicolons and tabs > commas:
        return "\t"
    if semicolons > commas:
        return ";"
    return ","


def _clean_cell(value: Optional[str]) -> str:
    if value is None:
        return ""
    text = value.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1].strip()
    if text.lower() in {"null", "undefined"}:
        return ""
    return text


def parse_delimited(text: str, *, force_tab: bool = False) -> ReadResult:
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return ReadResult(kind=DELIMITED)

    header_line = lines[0]
    if force_tab or header_line.count("\t") > _TSV_TAB_THRESHOLD:
        separator = "\t"
    else:
        separator = detect_separator(header_line)
    LOGGER.debug("Using separator %r for delimited input", separator)

    reader = csv.reader(io.StringIO("\n".join(lines)), delimiter=separator)
    try:
        header_cells = next(reader)
    except StopIteration:  # pragma: no cover - lines is non-empty
        return ReadResult(kind=DELIMITED)
    except csv.Error as exc:
        raise ParseError(f"Unable to read the header line: {exc}") from exc

    headers = [_clean_cell(cell) for cell in header_cells]
    result = ReadResult(kind=DELIMITED, columns=headers)

    line_number = 1
    while True:
        line_number += 1
        try:
            cells = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            LOGGER.warning("Skipping malformed line %s: %s", line_number, exc)
            result.skipped_lines += 1
            continue
        row: RawRecord = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            row[header] = _clean_cell(cells[index]) if index < len(cells) else ""
        result.records.append(row)
    return result


# --- Spreadsheets ---

def _spreadsheet_cell(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        value = float(value)
        if value != value:
            return ""
        if value.is_integer():
            # Phone numbers typed as numbers come back as floats and would
            # otherwise render as 612345678.0 or 6.12345678e+08.
            return str(int(value))
        return repr(value)
    if isinstance(value, (pd.Timestamp, datetime, date)):
        return value.isoformat()
    if pd.isna(value):
        return ""
    return str(value).strip()


def parse_spreadsheet(data: bytes, suffix: str = ".xlsx") -> ReadResult:
    engine = "xlrd" if suffix == ".xls" else "openpyxl"
    try:
        dataframe = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=object, engine=engine)
    except Exception as exc:
        raise ParseError(f"Unable to read spreadsheet: {exc}") from exc

    columns = [str(column).strip() for column in dataframe.columns]
    result = ReadResult(kind=SPREADSHEET, columns=columns)
    for values in dataframe.itertuples(index=False, name=None):
        row: RawRecord = {}
        for column, value in zip(columns, values):
            row[column] = _spreadsheet_cell(value)
        result.records.append(row)
    return result


# --- JSON ---

def _looks_like_json_lines(text: str) -> bool:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        return False
    first = lines[0]
    if not (first.startswith("{") and first.endswith("}")):
        return False
    try:
        json.loads(first)
    except ValueError:
        return False
    return True


def parse_json_document(text: str) -> ReadResult:
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise ParseError(f"Invalid JSON document: {exc}") from exc

    if isinstance(parsed, dict):
        return ReadResult(kind=JSON_DOCUMENT, records=[parsed], columns=list(parsed))
    if not isinstance(parsed, list):
        raise ParseError("A JSON import must contain an object or an array of objects")

    result = ReadResult(kind=JSON_DOCUMENT)
    for index, item in enumerate(parsed):
        if isinstance(item, dict):
            result.records.append(item)
        else:
            LOGGER.warning("Skipping JSON array item %s: not an object", index)
            result.skipped_lines += 1
    if result.records:
        result.columns = list(result.records[0])
    return result


def parse_json_lines(text: str) -> ReadResult:
    result = ReadResult(kind=JSON_LINES)
    for number, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except ValueError as exc:
            LOGGER.warning("Skipping line %s: invalid JSON (%s)", number, exc)
            result.skipped_lines += 1
            continue
        if not isinstance(parsed, dict):
            LOGGER.warning("Skipping line %s: not a JSON object", number)
            result.skipped_lines += 1
            continue
        result.records.append(parsed)
    if result.records:
        result.columns = list(result.records[0])
    return result


__all__ = [
    "DELIMITED",
    "JSON_DOCUMENT",
    "JSON_LINES",
    "SPREADSHEET",
    "SUPPORTED_EXTENSIONS",
    "ParseError",
    "ReadResult",
    "UnsupportedFileTypeError",
    "detect_separator",
    "parse_delimited",
    "parse_json_document",
    "parse_json_lines",
    "parse_spreadsheet",
    "read_file",
    "read_records",
]
