"""Sequential per-record insertion with failures isolated to the offending row."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from ..dedup import DuplicateIndex
from ..mapping import extract_display_fields
from ..models import ExistingContactSummary, FieldMapping, ImportJobResult, ImportOutcome, OperatorDefaults, RawRecord
from ..reference import encode_reference
from ..store import DuplicateContactError, RecordStore, StoreError
from ..validation import PreparedRecord, RecordValidator, ValidationError, prepare_record

LOGGER = logging.getLogger(__name__)

STATE_ENUMERATION = "etats"


class BatchInserter:
    """Runs every canonical record through validation, duplicate check and insert.

    Each record ends up as exactly one :class:`ImportOutcome`; no exception
    raised while handling a single record escapes :meth:`run`. When a
    :class:`DuplicateIndex` is supplied, inserted records are added to it so
    a phone repeated further down the same file is reported as a duplicate.
    """

    def __init__(
        self,
        store: RecordStore,
        mapping: FieldMapping,
        defaults: OperatorDefaults,
        *,
        secret: str,
        index: Optional[DuplicateIndex] = None,
        initial_state_title: str = "EN-ATTENTE",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._mapping = dict(mapping)
        self._defaults = defaults
        self._secret = secret
        self._index = index
        self._initial_state_title = initial_state_title
        self._clock = clock
        self._validator = RecordValidator(self._mapping)
        self._state_loaded = False
        self._initial_state_id: Optional[int] = None

    @property
    def initial_state_id(self) -> Optional[int]:
        """Id of the initial workflow state, looked up once per job."""

        if not self._state_loaded:
            self._initial_state_id = self._lookup_initial_state()
            self._state_loaded = True
        return self._initial_state_id

    def _lookup_initial_state(self) -> Optional[int]:
        try:
            rows = self._store.lookup_enumeration(STATE_ENUMERATION)
        except StoreError:
            LOGGER.exception("Unable to read workflow states; contacts will have no initial state")
            return None

        wanted = self._initial_state_title.strip().upper()
        keyword = max(wanted.replace("-", " ").split() or [wanted], key=len)
        fallback: Optional[int] = None
        for row in rows:
            title = str(row.get("titre") or "").strip().upper()
            if title == wanted:
                return int(row["id"])
            if fallback is None and keyword and keyword in title:
                fallback = int(row["id"])
        if fallback is None:
            LOGGER.warning("Workflow state %r not found; contacts will have no initial state", wanted)
        return fallback

    def build_fields(self, prepared: PreparedRecord) -> Dict[str, Any]:
        """Stamp operator defaults and bookkeeping columns on a prepared record."""

        now = self._clock()
        stamp = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        fields = dict(prepared.fields)
        fields["id_agent"] = self._defaults.operator_id
        fields["id_centre"] = self._defaults.center_id
        if self._defaults.product_id is not None and not fields.get("produit"):
            fields["produit"] = self._defaults.product_id
        fields.update(
            {
                "date_insert": int(now),
                "date_insert_time": stamp,
                "date_modif_time": stamp,
                "archive": 0,
                "active": 1,
                "ko": 0,
                "hc": 0,
                "valider": 0,
            }
        )
        if self.initial_state_id is not None:
            fields["id_etat_final"] = self.initial_state_id
        return fields

    def import_record(self, row_number: int, record: RawRecord) -> ImportOutcome:
        contact = extract_display_fields(record, self._mapping)
        prepared = prepare_record(record, self._mapping)

        try:
            self._validator.require_phone(prepared)
        except ValidationError as exc:
            return ImportOutcome.invalid(row_number, contact, str(exc), exc.reason_type, record)

        if self._index is not None:
            match = self._index.lookup(prepared.phone_keys)
            if match is not None:
                phone, existing = match
                LOGGER.debug("Row %s duplicates contact %s on %s", row_number, existing.id, phone)
                return ImportOutcome.duplicate(row_number, contact, existing, phone, record)

        try:
            self._validator.require_postal_code(prepared)
        except ValidationError as exc:
            return ImportOutcome.invalid(row_number, contact, str(exc), exc.reason_type, record)

        fields = self.build_fields(prepared)
        try:
            contact_id = self._store.insert_contact(fields)
        except DuplicateContactError as exc:
            LOGGER.warning("Row %s refused by the store as a duplicate: %s", row_number, exc)
            return ImportOutcome.duplicate(row_number, contact, None, prepared.phone_keys[0], record)
        except StoreError as exc:
            LOGGER.exception("Row %s could not be inserted (fields=%s)", row_number, fields)
            return ImportOutcome.error(row_number, contact, str(exc), record)

        reference = encode_reference(contact_id, self._secret)
        try:
            self._store.record_obfuscated_reference(contact_id, reference)
        except StoreError:
            LOGGER.exception("Contact %s inserted but its reference could not be stored", contact_id)
            reference = None

        if self._index is not None:
            summary = ExistingContactSummary(
                id=contact_id,
                last_name=str(fields.get("nom", "")),
                first_name=str(fields.get("prenom", "")),
                phone=str(fields.get("tel", "")),
                state_id=fields.get("id_etat_final"),
                reference=reference,
            )
            self._index.register(prepared.phone_keys, summary)
        return ImportOutcome.inserted(row_number, contact, contact_id)

    def run(self, records: Iterable[RawRecord]) -> ImportJobResult:
        records = list(records)
        total = len(records)
        result = ImportJobResult(total=total)
        interval = 100 if total > 100 else 10
        started = time.monotonic()

        LOGGER.info("Importing %s records", total)
        for position, record in enumerate(records, start=1):
            try:
                outcome = self.import_record(position, record)
            except Exception as exc:
                LOGGER.exception("Unexpected failure on row %s", position)
                outcome = ImportOutcome.error(position, extract_display_fields(record, self._mapping), str(exc), record)
            if outcome.status in {ImportOutcome.INVALID, ImportOutcome.ERROR}:
                LOGGER.warning("Row %s not inserted (%s): %s", position, outcome.reason_type, outcome.reason)
            result.record(outcome)

            if position % interval == 0 or position == total:
                elapsed = time.monotonic() - started
                LOGGER.info(
                    "Progress: %s/%s processed (%s inserted, %s duplicates, %s invalid, %s errors) in %.1fs",
                    position,
                    total,
                    result.inserted,
                    len(result.duplicates),
                    len(result.invalid),
                    len(result.errors),
                    elapsed,
                )
        return result


__all__ = ["BatchInserter"]
