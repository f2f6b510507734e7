"""Canonical line-delimited JSON form shared by the preview and process phases."""
from __future__ import annotations

import json
import logging
import re
import secrets
import time
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from ..models import RawRecord
from ..normalize import clean_text, normalize_key
from .readers import ParseError, ReadResult, parse_json_lines, read_file

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

HEADER_MATCH_RATIO = 0.9
HEADER_MIN_COLUMNS = 3

_HANDLE_PREFIX = "import-"
_HANDLE_SUFFIX = ".jsonl"


class CanonicalStoreError(LookupError):
    """Raised when a canonical handle is malformed or no longer available."""


def clean_record(record: Mapping[str, Any]) -> RawRecord:
    """Trim keys and stringify values, mapping ``null``-like markers to ``""``."""

    cleaned: RawRecord = {}
    for key, value in record.items():
        name = str(key).strip()
        if not name:
            continue
        cleaned[name] = _canonical_value(value)
    return cleaned


def _canonical_value(value: Any) -> str:
    if isinstance(value, float) and value == value and value.is_integer():
        # JSON phone numbers such as 6.12345678e8 arrive as floats and would
        # otherwise render as 612345678.0.
        return str(int(value))
    return clean_text(value)


def is_empty_row(record: Mapping[str, Any]) -> bool:
    return all(_canonical_value(value) == "" for value in record.values())


def is_probable_header(record: Mapping[str, Any]) -> bool:
    """Return ``True`` when a row repeats its own column names.

    Only meaningful for sources that carry a header line; JSON inputs have no
    header so callers must not apply this filter to them.
    """

    keys = list(record)
    if len(keys) < HEADER_MIN_COLUMNS:
        return False
    matches = 0
    for key in keys:
        value = clean_text(record[key])
        if value == key or (value and normalize_key(value) == normalize_key(key)):
            matches += 1
    return matches >= len(keys) * HEADER_MATCH_RATIO


def to_canonical(result: ReadResult) -> List[RawRecord]:
    """Filter raw records into the canonical stream consumed downstream."""

    canonical: List[RawRecord] = []
    dropped_empty = 0
    dropped_headers = 0
    for index, raw in enumerate(result.records):
        record = clean_record(raw)
        if not record or is_empty_row(record):
            dropped_empty += 1
            continue
        if result.has_headers and is_probable_header(record):
            LOGGER.debug("Row %s looks like a repeated header, skipping", index + 1)
            dropped_headers += 1
            continue
        canonical.append(record)
    LOGGER.info(
        "Canonical stream: %s records kept, %s empty and %s header rows dropped",
        len(canonical),
        dropped_empty,
        dropped_headers,
    )
    return canonical


def dumps_jsonl(records: Iterable[Mapping[str, Any]]) -> str:
    return "\n".join(json.dumps(dict(record), ensure_ascii=False) for record in records)


class CanonicalStore:
    """Directory of canonical JSONL files addressed by opaque handles."""

    def __init__(self, directory: PathLike) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def save(self, records: Sequence[Mapping[str, Any]], *, owner: Optional[Union[int, str]] = None) -> str:
        self._directory.mkdir(parents=True, exist_ok=True)
        parts: List[str] = []
        if owner is not None:
            # Keep the owner part a plain file name fragment.
            owner_part = re.sub(r"[^\w-]", "", str(owner))
            if owner_part:
                parts.append(owner_part)
        parts += [str(int(time.time() * 1000)), secrets.token_hex(4)]
        handle = f"{_HANDLE_PREFIX}{'-'.join(parts)}{_HANDLE_SUFFIX}"
        self._path_for(handle).write_text(dumps_jsonl(records), encoding="utf-8")
        LOGGER.info("Stored %s canonical records as %s", len(records), handle)
        return handle

    def load(self, handle: str) -> List[RawRecord]:
        path = self._path_for(handle)
        if not path.exists():
            raise CanonicalStoreError(f"Canonical file '{handle}' was not found")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ParseError(f"Unable to read canonical file '{handle}': {exc}") from exc
        return parse_json_lines(text).records

    def discard(self, handle: str) -> bool:
        try:
            path = self._path_for(handle)
        except CanonicalStoreError:
            return False
        if not path.exists():
            return False
        path.unlink()
        LOGGER.debug("Removed canonical file %s", handle)
        return True

    def exists(self, handle: str) -> bool:
        try:
            return self._path_for(handle).exists()
        except CanonicalStoreError:
            return False

    def _path_for(self, handle: str) -> Path:
        if (
            not handle
            or "/" in handle
            or "\\" in handle
            or ".." in handle
            or not handle.startswith(_HANDLE_PREFIX)
            or not handle.endswith(_HANDLE_SUFFIX)
        ):
            raise CanonicalStoreError(f"Invalid canonical handle '{handle}'")
        return self._directory / handle


def convert_file(source: PathLike, destination: Optional[PathLike] = None) -> Path:
    """Convert a CSV/Excel/JSON file into canonical JSONL next to it (or at ``destination``)."""

    source_path = Path(source)
    result = read_file(source_path)
    records = to_canonical(result)
    if not records:
        raise ParseError(f"No data found in '{source_path}'")
    target = Path(destination) if destination else source_path.with_suffix(".jsonl")
    if target.resolve() == source_path.resolve():
        raise ParseError("Destination must differ from the source file")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dumps_jsonl(records), encoding="utf-8")
    LOGGER.info("Converted %s (%s records) to %s", source_path, len(records), target)
    return target


__all__ = [
    "CanonicalStore",
    "CanonicalStoreError",
    "clean_record",
    "convert_file",
    "dumps_jsonl",
    "is_empty_row",
    "is_probable_header",
    "to_canonical",
]
