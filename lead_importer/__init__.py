"""Bulk contact import with phone based deduplication."""

from . import models  # noqa: F401
from .config import ImportSettings, load_configuration
from .dedup import DuplicateIndex
from .models import (
    ContactSnapshot,
    Diagnosis,
    ExistingContactSummary,
    ImportJobResult,
    ImportOutcome,
    OperatorDefaults,
    PreviewResult,
    RejectRow,
)
from .normalize import normalize_key, normalize_phone, normalize_postal_code
from .orchestrator import BatchInserter, ImportService
from .store import InMemoryRecordStore, RecordStore, SqlRecordStore

__all__ = [
    "BatchInserter",
    "ContactSnapshot",
    "Diagnosis",
    "DuplicateIndex",
    "ExistingContactSummary",
    "ImportJobResult",
    "ImportOutcome",
    "ImportService",
    "ImportSettings",
    "InMemoryRecordStore",
    "OperatorDefaults",
    "PreviewResult",
    "RecordStore",
    "RejectRow",
    "SqlRecordStore",
    "load_configuration",
    "normalize_key",
    "normalize_phone",
    "normalize_postal_code",
    "ingestion",
    "orchestrator",
]
