"""Resolution of target fields against the heterogeneous column names of an upload."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from .models import PHONE_FIELDS, ContactSnapshot, FieldMapping, RawRecord
from .normalize import clean_text, count_digits, normalize_key

_PHONE_VARIANTS: Mapping[str, Sequence[str]] = {
    "tel": ("telephone", "phone", "tel", "gsm", "mobile", "portable", "numtel", "num_tel"),
    "gsm1": ("gsm1", "gsm", "mobile1", "cellphone", "portable1", "alt_phone", "altphone", "telephone2", "tel2"),
    "gsm2": ("gsm2", "mobile2", "phone2", "portable2", "telephone3", "tel3"),
}

_FIELD_VARIANTS: Mapping[str, Sequence[str]] = {
    "nom": ("nom", "name", "lastname", "last_name", "surname", "familyname"),
    "prenom": ("prenom", "firstname", "first_name", "givenname"),
    "adresse": ("adresse", "address", "address1", "street", "rue"),
    "cp": ("cp", "postal_code", "postalcode", "zip", "zipcode", "code_postal"),
    "ville": ("ville", "city", "town", "commune"),
}

_PHONE_TOKENS = ("tel", "phone", "mobile", "gsm")

# Partial key matches are only trusted when lengths differ by less than this.
_PARTIAL_LENGTH_TOLERANCE = 0.3


def _variants_for(column: str) -> Sequence[str]:
    target = normalize_key(column)
    for variants in _PHONE_VARIANTS.values():
        if any(normalize_key(variant) == target for variant in variants):
            return variants
    return _FIELD_VARIANTS.get(column.strip().lower(), ())


def find_key(record: Mapping[str, Any], column: str) -> Optional[str]:
    """Find the record key matching ``column`` regardless of case, accents and punctuation."""

    if not column or not record:
        return None
    target = normalize_key(column)
    normalized = {key: normalize_key(key) for key in record}

    for key, key_normalized in normalized.items():
        if key_normalized == target:
            return key

    for variant in _variants_for(column):
        variant_normalized = normalize_key(variant)
        for key, key_normalized in normalized.items():
            if key_normalized == variant_normalized:
                return key

    for key, key_normalized in normalized.items():
        longest = max(len(key_normalized), len(target))
        if not longest or abs(len(key_normalized) - len(target)) / longest >= _PARTIAL_LENGTH_TOLERANCE:
            continue
        if (
            key_normalized.startswith(target)
            or key_normalized.endswith(target)
            or target.startswith(key_normalized)
            or target.endswith(key_normalized)
        ):
            return key
    return None


def _phone_candidate_keys(record: Mapping[str, Any], field: str) -> Iterable[str]:
    for key in record:
        normalized = normalize_key(key)
        if not any(token in normalized for token in _PHONE_TOKENS):
            continue
        if field == "gsm2":
            if "gsm2" not in normalized:
                continue
        elif "gsm2" in normalized:
            continue
        yield key


def resolve_field(record: Mapping[str, Any], field: str, column: Optional[str]) -> Optional[Any]:
    """Return the raw value for target ``field`` mapped to source ``column``.

    Lookup order: exact key, normalised key (including the variant tables),
    then for phone fields a widened scan of phone-looking columns accepting
    the first value with at least eight digits. ``None`` means unresolved.
    """

    if not column or not str(column).strip():
        return None

    value = record.get(column)
    if value is not None and clean_text(value):
        return value

    key = find_key(record, column)
    if key is not None and record.get(key) is not None and clean_text(record[key]):
        return record[key]

    if field in PHONE_FIELDS:
        for candidate in _phone_candidate_keys(record, field):
            candidate_value = record.get(candidate)
            if candidate_value is not None and count_digits(candidate_value) >= 8:
                return candidate_value

    # A present-but-empty cell still counts as resolved to "".
    if value is not None:
        return value
    if key is not None:
        return record.get(key)
    return None


def explain_mapping(record: Mapping[str, Any], mapping: FieldMapping) -> Dict[str, Dict[str, Any]]:
    """Describe how each mapped field resolves against ``record`` (debug helper)."""

    explanation: Dict[str, Dict[str, Any]] = {}
    for field, column in mapping.items():
        found = find_key(record, column) if column else None
        explanation[field] = {
            "mappedColumn": column,
            "foundKey": found,
            "value": record.get(found) if found else None,
            "directValue": record.get(column) if column else None,
            "resolvedValue": resolve_field(record, field, column),
        }
    return explanation


def _guess_from_keys(record: RawRecord) -> Dict[str, str]:
    guessed: Dict[str, str] = {}
    for key, value in record.items():
        normalized = normalize_key(key)
        text = clean_text(value)
        if not text:
            continue
        if "prenom" in normalized or "firstname" in normalized:
            guessed.setdefault("prenom", text)
        elif "nom" in normalized or normalized in {"name", "lastname"}:
            guessed.setdefault("nom", text)
        elif any(token in normalized for token in ("tel", "phone", "mobile", "gsm")):
            guessed.setdefault("tel", text)
        elif "cp" in normalized or "postal" in normalized or "zip" in normalized:
            guessed.setdefault("cp", text)
        elif "ville" in normalized or "city" in normalized:
            guessed.setdefault("ville", text)
    return guessed


def extract_display_fields(record: RawRecord, mapping: Optional[FieldMapping] = None) -> ContactSnapshot:
    """Pick name, phone, postal code and city from a row for reporting."""

    mapping = mapping or {}
    resolved: Dict[str, str] = {}
    for field in ("nom", "prenom", "tel", "gsm1", "gsm2", "cp", "ville"):
        column = mapping.get(field)
        if column:
            text = clean_text(resolve_field(record, field, column))
            if text:
                resolved[field] = text

    guessed = _guess_from_keys(record)
    phone = resolved.get("tel") or resolved.get("gsm1") or resolved.get("gsm2") or guessed.get("tel", "")
    return ContactSnapshot(
        last_name=resolved.get("nom") or guessed.get("nom", ""),
        first_name=resolved.get("prenom") or guessed.get("prenom", ""),
        phone=phone,
        postal_code=resolved.get("cp") or guessed.get("cp", ""),
        city=resolved.get("ville") or guessed.get("ville", ""),
    )


__all__ = ["explain_mapping", "extract_display_fields", "find_key", "resolve_field"]
