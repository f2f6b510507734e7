"""In-memory phone index used to detect duplicates without per-row store queries."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .models import PHONE_FIELDS, ExistingContactSummary
from .normalize import clean_text, coerce_int, normalize_phone

LOGGER = logging.getLogger(__name__)


def summary_from_row(row: Mapping[str, Any]) -> ExistingContactSummary:
    """Build an :class:`ExistingContactSummary` from a store row."""

    return ExistingContactSummary(
        id=int(row["id"]),
        last_name=clean_text(row.get("nom")),
        first_name=clean_text(row.get("prenom")),
        phone=clean_text(row.get("tel")),
        state_id=coerce_int(row.get("id_etat_final")),
        state_title=clean_text(row.get("etat_titre")),
        reference=clean_text(row.get("hash")) or None,
    )


class DuplicateIndex:
    """Snapshot mapping every existing phone key to the contact that owns it.

    The index is built once per job. Keys are normalised with the same rules
    as incoming rows so ``06 12 34 56 78`` and ``612345678`` collide. The
    first contact seen for a key keeps it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ExistingContactSummary] = {}

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "DuplicateIndex":
        index = cls()
        contacts = 0
        for row in rows:
            contacts += 1
            summary = summary_from_row(row)
            index.register((row.get(field) for field in PHONE_FIELDS), summary)
        LOGGER.info("Duplicate index built: %s phone keys from %s contacts", len(index), contacts)
        return index

    @classmethod
    def build(cls, store) -> "DuplicateIndex":
        """Read all non-archived contacts from ``store`` in a single query."""

        return cls.from_rows(store.read_existing_contacts())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def register(self, phones: Iterable[Any], summary: ExistingContactSummary) -> int:
        """Index ``phones`` for ``summary``; returns how many new keys were added."""

        added = 0
        for phone in phones:
            key = normalize_phone(phone)
            if key and key not in self._entries:
                self._entries[key] = summary
                added += 1
        return added

    def get(self, key: str) -> Optional[ExistingContactSummary]:
        return self._entries.get(key)

    def lookup(self, keys: Iterable[Optional[str]]) -> Optional[Tuple[str, ExistingContactSummary]]:
        """Return the first ``(key, contact)`` match among ``keys`` (tel, gsm1, gsm2 order)."""

        for key in keys:
            if key and key in self._entries:
                return key, self._entries[key]
        return None


__all__ = ["DuplicateIndex", "summary_from_row"]
