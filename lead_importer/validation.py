"""Mapping, normalisation and business-rule validation of canonical records."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from .mapping import resolve_field
from .models import PHONE_FIELDS, FieldMapping, RawRecord
from .normalize import (
    InvalidPostalCodeError,
    clean_text,
    coerce_int,
    is_blank,
    normalize_phone,
    normalize_postal_code,
)

LOGGER = logging.getLogger(__name__)

NO_PHONE = "no_phone"
INVALID_POSTAL_CODE = InvalidPostalCodeError.reason_type

_NUMERIC_FIELDS = {"produit", "etude", "archive", "nb_pieces", "annee_systeme_chauffage"}
_IGNORED_TARGETS = {"date_modif"}


class ValidationError(ValueError):
    """Raised when a record breaks a business rule; recoverable per row."""

    def __init__(self, reason_type: str, message: str) -> None:
        super().__init__(message)
        self.reason_type = reason_type


def is_numeric_field(name: str) -> bool:
    return "id_" in name or name in _NUMERIC_FIELDS


def is_date_field(name: str) -> bool:
    return "date_" in name and "_time" not in name


def to_timestamp(value: Any) -> Optional[int]:
    """Convert a date-like value into epoch seconds, ``None`` when unparseable."""

    if is_blank(value):
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    if parsed is pd.NaT or pd.isna(parsed):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.tz_localize("UTC")
    return int(parsed.timestamp())


@dataclass
class PreparedRecord:
    """A canonical record resolved through the mapping and normalised."""

    fields: Dict[str, Any] = field(default_factory=dict)
    raw_phones: Dict[str, Any] = field(default_factory=dict)
    postal_error: Optional[InvalidPostalCodeError] = None

    @property
    def phone_keys(self) -> List[str]:
        return [self.fields[name] for name in PHONE_FIELDS if self.fields.get(name)]


def prepare_record(record: RawRecord, mapping: FieldMapping) -> PreparedRecord:
    """Resolve every mapped target field from ``record`` and normalise its value."""

    prepared = PreparedRecord()
    for target, column in mapping.items():
        if target in _IGNORED_TARGETS or not column or not str(column).strip():
            continue
        raw = resolve_field(record, target, column)
        if raw is None:
            continue

        if target in PHONE_FIELDS:
            prepared.raw_phones[target] = raw
            key = normalize_phone(raw)
            if key:
                prepared.fields[target] = key
            else:
                LOGGER.debug("Field %s from column %r is not a usable phone: %r", target, column, raw)
            continue

        if target == "cp":
            try:
                postal = normalize_postal_code(raw)
            except InvalidPostalCodeError as exc:
                prepared.postal_error = exc
                continue
            if postal:
                prepared.fields[target] = postal
            continue

        if is_numeric_field(target):
            number = coerce_int(raw)
            if number is not None:
                prepared.fields[target] = number
            continue

        if is_date_field(target):
            timestamp = to_timestamp(raw)
            if timestamp is not None:
                prepared.fields[target] = timestamp
            continue

        text = clean_text(raw)
        if text:
            prepared.fields[target] = text
    return prepared


class RecordValidator:
    """Business rules a prepared record must satisfy before insertion."""

    def __init__(self, mapping: FieldMapping) -> None:
        self._mapping = dict(mapping)

    def require_phone(self, prepared: PreparedRecord) -> None:
        if prepared.phone_keys:
            return
        details = []
        for name in PHONE_FIELDS:
            column = self._mapping.get(name)
            if column:
                raw = clean_text(prepared.raw_phones.get(name)) or "empty"
                details.append(f'{name} (column "{column}"): {raw}')
            else:
                details.append(f"{name}: not mapped")
        raise ValidationError(
            NO_PHONE,
            "At least one phone number (tel, gsm1 or gsm2) is required. Details: " + "; ".join(details),
        )

    def require_postal_code(self, prepared: PreparedRecord) -> None:
        if prepared.postal_error is not None:
            raise ValidationError(INVALID_POSTAL_CODE, str(prepared.postal_error))

    def validate(self, prepared: PreparedRecord) -> None:
        self.require_phone(prepared)
        self.require_postal_code(prepared)


__all__ = [
    "INVALID_POSTAL_CODE",
    "NO_PHONE",
    "PreparedRecord",
    "RecordValidator",
    "ValidationError",
    "is_date_field",
    "is_numeric_field",
    "prepare_record",
    "to_timestamp",
]
