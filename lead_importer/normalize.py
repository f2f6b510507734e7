"""Normalisation helpers for column names, phone numbers and postal codes."""
from __future__ import annotations

import logging
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

LOGGER = logging.getLogger(__name__)

EMPTY_MARKERS = frozenset({"", "null", "undefined", "n/a"})

MIN_PHONE_DIGITS = 8

_KEY_AFFIX_TOKENS = r"(?:colonne|column|champ|field|header|en-tête|entete|en-tete)"
_KEY_PREFIX = re.compile(rf"^{_KEY_AFFIX_TOKENS}\s*", re.IGNORECASE)
_KEY_SUFFIX = re.compile(rf"\s*{_KEY_AFFIX_TOKENS}$", re.IGNORECASE)
_SCIENTIFIC = re.compile(r"^[+-]?\d+(?:[.,]\d+)?[eE]\+?\d+$")


class InvalidPostalCodeError(ValueError):
    """Raised when a postal code cannot be expressed as five digits."""

    reason_type = "invalid_postal_code"

    def __init__(self, original: str) -> None:
        super().__init__(
            f'Invalid postal code "{original}" (expected 4 or 5 digits; '
            "4-digit codes are padded with a leading 0)"
        )
        self.original = original


def is_blank(value: Any) -> bool:
    """Return ``True`` for ``None`` and the textual markers treated as empty."""

    if value is None:
        return True
    if isinstance(value, float) and value != value:  # NaN
        return True
    return str(value).strip().lower() in EMPTY_MARKERS


def clean_text(value: Any) -> str:
    """Stringify and trim ``value``, mapping empty markers to ``""``."""

    if is_blank(value):
        return ""
    return str(value).strip()


def normalize_key(key: Any) -> str:
    """Normalise a column name for case, accent and punctuation insensitive matching."""

    if key is None:
        return ""
    text = str(key).strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        text = text[1:-1]
    text = re.sub(r"\s+", " ", text).lower()
    text = _KEY_PREFIX.sub("", text)
    text = _KEY_SUFFIX.sub("", text)
    decomposed = unicodedata.normalize("NFD", text)
    text = "".join(char for char in decomposed if not unicodedata.combining(char))
    text = re.sub(r"[._-]", "", text)
    return text.strip()


def count_digits(value: Any) -> int:
    if value is None:
        return 0
    return sum(1 for char in str(value) if char.isdigit())


def _expand_scientific(text: str) -> Optional[str]:
    """Rebuild the integer form of a phone number rendered in scientific notation."""

    try:
        number = Decimal(text.replace(",", "."))
    except InvalidOperation:
        return None
    # 8 to 11 digit magnitudes are phone-like; anything else is a measurement.
    if not Decimal("1e7") <= abs(number) < Decimal("1e11"):
        LOGGER.debug("Dropping non phone-like scientific value %s", text)
        return None
    return str(int(number.to_integral_value()))


def normalize_phone(value: Any) -> str:
    """Return the deduplication key for a raw phone value or ``""`` when unusable.

    Scientific notation produced by spreadsheet tools is expanded back into
    digits, separators are dropped, French numbers supplied without their
    trunk ``0`` (9 digits) are padded, and anything shorter than eight digits
    is rejected. The function is idempotent.
    """

    if is_blank(value) or isinstance(value, bool):
        return ""

    if isinstance(value, float):
        if not value.is_integer():
            return ""
        text = str(int(value))
    elif isinstance(value, int):
        text = str(value)
    else:
        text = str(value).strip()

    if _SCIENTIFIC.match(text):
        expanded = _expand_scientific(text)
        if expanded is None:
            return ""
        text = expanded

    digits = re.sub(r"\D", "", text)
    if len(digits) < MIN_PHONE_DIGITS:
        if digits:
            LOGGER.debug("Phone value %r too short after cleaning (%s digits)", value, len(digits))
        return ""
    if len(digits) == 9:
        digits = "0" + digits
    return digits


def normalize_postal_code(value: Any) -> Optional[str]:
    """Return a five digit postal code, ``None`` when absent, or raise."""

    if is_blank(value):
        return None
    original = str(value).strip()
    digits = re.sub(r"\D", "", original)
    if not digits:
        return None
    if len(digits) == 4:
        return "0" + digits
    if len(digits) == 5:
        return digits
    raise InvalidPostalCodeError(original)


def coerce_int(value: Any) -> Optional[int]:
    """Parse the leading integer of ``value`` the way loose form input expects."""

    if is_blank(value):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value else None
    match = re.match(r"^\s*([+-]?\d+)", str(value))
    if not match:
        return None
    return int(match.group(1))


__all__ = [
    "EMPTY_MARKERS",
    "InvalidPostalCodeError",
    "clean_text",
    "coerce_int",
    "count_digits",
    "is_blank",
    "normalize_key",
    "normalize_phone",
    "normalize_postal_code",
]
