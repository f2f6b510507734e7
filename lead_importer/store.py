"""Record store capability consumed by the import pipeline, with two adapters."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Union

from sqlalchemy import MetaData, Table, and_, create_engine, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .models import PHONE_FIELDS
from .normalize import clean_text, normalize_phone

LOGGER = logging.getLogger(__name__)

_UNIQUE_VIOLATION_MARKERS = ("unique", "duplicate")


class StoreError(RuntimeError):
    """Raised when the record store rejects an operation for one record."""


class DuplicateContactError(StoreError):
    """Raised when the store's own uniqueness guard refuses an insert."""


class RecordStore(Protocol):
    """Operations the import pipeline needs from the relational store."""

    def read_existing_contacts(self) -> List[Dict[str, Any]]:  # pragma: no cover - runtime protocol
        """Return every non-archived contact with at least one phone column set."""

    def insert_contact(self, fields: Mapping[str, Any]) -> int:  # pragma: no cover - runtime protocol
        """Insert one contact and return its new id."""

    def record_obfuscated_reference(self, contact_id: int, reference: str) -> None:  # pragma: no cover
        """Persist the obfuscated reference computed for ``contact_id``."""

    def lookup_enumeration(self, kind: str) -> List[Dict[str, Any]]:  # pragma: no cover - runtime protocol
        """Return the rows of a lookup table such as ``etats``."""


def _has_phone(row: Mapping[str, Any]) -> bool:
    return any(clean_text(row.get(field)) for field in PHONE_FIELDS)


class InMemoryRecordStore:
    """Dictionary backed store used for dry runs and tests.

    With ``unique_phones`` enabled the store refuses contacts whose phone keys
    are already held by a stored contact, mimicking a unique constraint.
    """

    def __init__(
        self,
        contacts: Optional[Sequence[Mapping[str, Any]]] = None,
        *,
        states: Optional[Sequence[Mapping[str, Any]]] = None,
        unique_phones: bool = False,
    ) -> None:
        self.contacts: List[Dict[str, Any]] = [dict(contact) for contact in contacts or []]
        self.states: List[Dict[str, Any]] = [dict(state) for state in states or []]
        self.unique_phones = unique_phones
        self.references: Dict[int, str] = {}
        self._next_id = max((int(contact["id"]) for contact in self.contacts), default=0) + 1

    def read_existing_contacts(self) -> List[Dict[str, Any]]:
        titles = {state.get("id"): state.get("titre") for state in self.states}
        rows: List[Dict[str, Any]] = []
        for contact in self.contacts:
            if contact.get("archive") or not _has_phone(contact):
                continue
            row = dict(contact)
            row["etat_titre"] = titles.get(contact.get("id_etat_final"))
            rows.append(row)
        return rows

    def insert_contact(self, fields: Mapping[str, Any]) -> int:
        if self.unique_phones:
            incoming = {normalize_phone(fields.get(field)) for field in PHONE_FIELDS} - {""}
            for contact in self.contacts:
                existing = {normalize_phone(contact.get(field)) for field in PHONE_FIELDS}
                if incoming & existing:
                    raise DuplicateContactError(f"Phone already held by contact {contact['id']}")
        contact_id = self._next_id
        self._next_id += 1
        stored = dict(fields)
        stored["id"] = contact_id
        self.contacts.append(stored)
        return contact_id

    def record_obfuscated_reference(self, contact_id: int, reference: str) -> None:
        for contact in self.contacts:
            if contact["id"] == contact_id:
                contact["hash"] = reference
                self.references[contact_id] = reference
                return
        raise StoreError(f"Contact {contact_id} does not exist")

    def lookup_enumeration(self, kind: str) -> List[Dict[str, Any]]:
        if kind == "etats":
            return [dict(state) for state in self.states]
        return []


class SqlRecordStore:
    """SQLAlchemy adapter over the ``fiches`` and ``etats`` tables."""

    def __init__(
        self,
        engine: Union[Engine, str],
        *,
        contacts_table: str = "fiches",
        states_table: str = "etats",
    ) -> None:
        self._engine = create_engine(engine) if isinstance(engine, str) else engine
        self._table_names = {"contacts": contacts_table, "etats": states_table}
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    @property
    def engine(self) -> Engine:
        return self._engine

    def _table(self, role: str) -> Table:
        if role not in self._tables:
            name = self._table_names[role]
            try:
                self._tables[role] = Table(name, self._metadata, autoload_with=self._engine)
            except SQLAlchemyError as exc:
                raise StoreError(f"Unable to load table '{name}': {exc}") from exc
        return self._tables[role]

    def read_existing_contacts(self) -> List[Dict[str, Any]]:
        contacts = self._table("contacts")
        states = self._table("etats")
        has_phone = or_(*[and_(contacts.c[field].is_not(None), contacts.c[field] != "") for field in PHONE_FIELDS])
        query = (
            select(
                contacts.c.id,
                contacts.c.nom,
                contacts.c.prenom,
                contacts.c.tel,
                contacts.c.gsm1,
                contacts.c.gsm2,
                contacts.c.id_etat_final,
                contacts.c.hash,
                states.c.titre.label("etat_titre"),
            )
            .select_from(contacts.outerjoin(states, states.c.id == contacts.c.id_etat_final))
            .where(or_(contacts.c.archive == 0, contacts.c.archive.is_(None)))
            .where(has_phone)
        )
        try:
            with self._engine.connect() as connection:
                return [dict(row._mapping) for row in connection.execute(query)]
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to read existing contacts: {exc}") from exc

    def insert_contact(self, fields: Mapping[str, Any]) -> int:
        contacts = self._table("contacts")
        try:
            with self._engine.begin() as connection:
                result = connection.execute(insert(contacts).values(**dict(fields)))
                primary_key = result.inserted_primary_key
        except IntegrityError as exc:
            message = str(exc.orig).lower()
            if any(marker in message for marker in _UNIQUE_VIOLATION_MARKERS):
                raise DuplicateContactError(f"Unique constraint violation: {exc.orig}") from exc
            raise StoreError(f"Insert rejected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Insert failed: {exc}") from exc
        if not primary_key or primary_key[0] is None:
            raise StoreError("Unable to retrieve the id of the inserted contact")
        return int(primary_key[0])

    def record_obfuscated_reference(self, contact_id: int, reference: str) -> None:
        contacts = self._table("contacts")
        try:
            with self._engine.begin() as connection:
                connection.execute(update(contacts).where(contacts.c.id == contact_id).values(hash=reference))
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to store reference for contact {contact_id}: {exc}") from exc

    def lookup_enumeration(self, kind: str) -> List[Dict[str, Any]]:
        if kind not in self._table_names or kind == "contacts":
            raise StoreError(f"Unknown enumeration '{kind}'")
        table = self._table(kind)
        try:
            with self._engine.connect() as connection:
                return [dict(row._mapping) for row in connection.execute(select(table))]
        except SQLAlchemyError as exc:
            raise StoreError(f"Unable to read enumeration '{kind}': {exc}") from exc


__all__ = [
    "DuplicateContactError",
    "InMemoryRecordStore",
    "RecordStore",
    "SqlRecordStore",
    "StoreError",
]
