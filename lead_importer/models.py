"""Data models shared by the import pipeline, the store adapters and the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RawRecord = Dict[str, Any]
FieldMapping = Dict[str, str]

PHONE_FIELDS = ("tel", "gsm1", "gsm2")


# --- Input side ---

@dataclass(slots=True)
class OperatorDefaults:
    """Values stamped on every inserted record by the operator running the import."""

    operator_id: int
    center_id: int
    product_id: Optional[int] = None


@dataclass(slots=True)
class PreviewResult:
    """Outcome of the preview phase, handed back to the caller for column mapping."""

    columns: List[str]
    preview_rows: List[RawRecord]
    total_rows: int
    canonical_handle: str
    source_kind: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "previewRows": list(self.preview_rows),
            "totalRows": self.total_rows,
            "canonicalHandle": self.canonical_handle,
        }


# --- Existing records ---

@dataclass(slots=True)
class ExistingContactSummary:
    """Read-only view of a stored contact that owns one or more phone keys."""

    id: int
    last_name: str = ""
    first_name: str = ""
    phone: str = ""
    state_id: Optional[int] = None
    state_title: str = ""
    reference: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "reference": self.reference,
            "nom": self.last_name,
            "prenom": self.first_name,
            "tel": self.phone,
            "id_etat_final": self.state_id,
            "etat_titre": self.state_title or "Non défini",
        }


# --- Per-record outcomes ---

@dataclass(slots=True)
class ContactSnapshot:
    """Display fields extracted from an incoming row for reporting."""

    last_name: str = ""
    first_name: str = ""
    phone: str = ""
    postal_code: str = ""
    city: str = ""


@dataclass
class ImportOutcome:
    """Result of importing one canonical record."""

    status: str
    row_number: int
    contact: ContactSnapshot = field(default_factory=ContactSnapshot)
    reason: str = ""
    reason_type: str = ""
    existing: Optional[ExistingContactSummary] = None
    matched_phone: Optional[str] = None
    contact_id: Optional[int] = None
    record: RawRecord = field(default_factory=dict)

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    ERROR = "error"

    @classmethod
    def inserted(cls, row_number: int, contact: ContactSnapshot, contact_id: int) -> "ImportOutcome":
        return cls(status=cls.INSERTED, row_number=row_number, contact=contact, contact_id=contact_id)

    @classmethod
    def duplicate(
        cls,
        row_number: int,
        contact: ContactSnapshot,
        existing: Optional[ExistingContactSummary],
        matched_phone: Optional[str],
        record: RawRecord,
    ) -> "ImportOutcome":
        return cls(
            status=cls.DUPLICATE,
            row_number=row_number,
            contact=contact,
            reason="Duplicate - contact already exists in the database",
            reason_type="duplicate",
            existing=existing,
            matched_phone=matched_phone,
            record=record,
        )

    @classmethod
    def invalid(
        cls, row_number: int, contact: ContactSnapshot, reason: str, reason_type: str, record: RawRecord
    ) -> "ImportOutcome":
        return cls(
            status=cls.INVALID,
            row_number=row_number,
            contact=contact,
            reason=reason,
            reason_type=reason_type,
            record=record,
        )

    @classmethod
    def error(cls, row_number: int, contact: ContactSnapshot, reason: str, record: RawRecord) -> "ImportOutcome":
        return cls(
            status=cls.ERROR,
            row_number=row_number,
            contact=contact,
            reason=reason,
            reason_type="other_error",
            record=record,
        )


@dataclass(slots=True)
class RejectRow:
    """One line of the downloadable report of records that were not inserted."""

    last_name: str
    first_name: str
    phone: str
    postal_code: str
    city: str
    reason: str
    reason_type: str
    existing: Optional[ExistingContactSummary] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "nom": self.last_name,
            "prenom": self.first_name,
            "tel": self.phone,
            "cp": self.postal_code,
            "ville": self.city,
            "raison": self.reason,
            "typeRaison": self.reason_type,
            "ficheExistante": self.existing.as_dict() if self.existing else None,
        }


@dataclass
class ImportJobResult:
    """Aggregated counts and itemised outcomes for one import job."""

    total: int = 0
    inserted: int = 0
    duplicates: List[ImportOutcome] = field(default_factory=list)
    invalid: List[ImportOutcome] = field(default_factory=list)
    errors: List[ImportOutcome] = field(default_factory=list)
    not_inserted: List[RejectRow] = field(default_factory=list)
    report_file: Optional[str] = None

    def record(self, outcome: ImportOutcome) -> None:
        if outcome.status == ImportOutcome.INSERTED:
            self.inserted += 1
        elif outcome.status == ImportOutcome.DUPLICATE:
            self.duplicates.append(outcome)
        elif outcome.status == ImportOutcome.INVALID:
            self.invalid.append(outcome)
        else:
            self.errors.append(outcome)

    @property
    def invalid_postal_codes(self) -> int:
        return sum(1 for outcome in self.invalid if outcome.reason_type == "invalid_postal_code")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "inserted": self.inserted,
            "duplicates": len(self.duplicates),
            "invalid": len(self.invalid),
            "invalidPostalCodes": self.invalid_postal_codes,
            "errors": len(self.errors),
            "notInserted": {
                "total": len(self.not_inserted),
                "list": [row.as_dict() for row in self.not_inserted],
            },
            "downloadFile": self.report_file,
        }


# --- Diagnostics ---

@dataclass
class DiagnosisStep:
    """One stage of a file diagnosis run."""

    step: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Diagnosis:
    """Dry-run analysis of an import file without touching the store."""

    file_name: str
    extension: str
    steps: List[DiagnosisStep] = field(default_factory=list)
    recommendation: str = ""

    def add(self, step: str, status: str, **details: Any) -> None:
        self.steps.append(DiagnosisStep(step=step, status=status, details=details))

    @property
    def ok(self) -> bool:
        return all(step.status != "error" for step in self.steps)


__all__ = [
    "PHONE_FIELDS",
    "ContactSnapshot",
    "Diagnosis",
    "DiagnosisStep",
    "ExistingContactSummary",
    "FieldMapping",
    "ImportJobResult",
    "ImportOutcome",
    "OperatorDefaults",
    "PreviewResult",
    "RawRecord",
    "RejectRow",
]
