"""Import job orchestration: preview, process and diagnose."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from ..config import ImportSettings
from ..dedup import DuplicateIndex
from ..ingestion.canonical import CanonicalStore, is_empty_row, to_canonical
from ..ingestion.exporters import build_reject_rows, open_report, save_report
from ..ingestion.readers import ParseError, read_records
from ..mapping import find_key
from ..models import (
    PHONE_FIELDS,
    Diagnosis,
    FieldMapping,
    ImportJobResult,
    OperatorDefaults,
    PreviewResult,
)
from ..normalize import clean_text
from ..store import RecordStore
from .inserter import BatchInserter

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

RECOMMEND_NO_PHONE = (
    "Aucun numéro de téléphone trouvé. Vérifiez que les colonnes contiennent des numéros de téléphone."
)
RECOMMEND_ALL_FILTERED = "Toutes les lignes ont été filtrées. Vérifiez le format du fichier."
RECOMMEND_OK = "Le fichier semble correct. Vous pouvez procéder à l'import."


class ImportService:
    """Two-phase bulk import of contact files into a :class:`RecordStore`.

    ``preview`` parses an upload, stores its canonical form and returns the
    columns for mapping. ``process`` replays the canonical records through the
    validation, duplicate check and insertion pipeline, then writes a report
    of everything that was not inserted.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        settings: Optional[ImportSettings] = None,
        canonical_store: Optional[CanonicalStore] = None,
    ) -> None:
        self._store = store
        self._settings = settings or ImportSettings()
        self._canonical = canonical_store or CanonicalStore(self._settings.work_dir)

    @property
    def settings(self) -> ImportSettings:
        return self._settings

    @property
    def canonical_store(self) -> CanonicalStore:
        return self._canonical

    @property
    def report_dir(self) -> Path:
        return self._settings.work_dir

    def preview(
        self, data: bytes, extension: str, *, owner: Optional[Union[int, str]] = None, force_tab: bool = False
    ) -> PreviewResult:
        """Parse an upload and persist its canonical records for :meth:`process`."""

        result = read_records(data, extension, force_tab=force_tab)
        records = to_canonical(result)
        if not records:
            raise ParseError("No data found in the file")

        handle = self._canonical.save(records, owner=owner)
        limit = self._settings.preview_limit
        return PreviewResult(
            columns=list(records[0]),
            preview_rows=records[:limit],
            total_rows=len(result.records),
            canonical_handle=handle,
            source_kind=result.kind,
        )

    def process(
        self,
        handle: str,
        mapping: FieldMapping,
        defaults: OperatorDefaults,
        *,
        skip_duplicate_check: bool = False,
    ) -> ImportJobResult:
        """Import every canonical record behind ``handle`` using ``mapping``.

        The canonical file is discarded when the job ends, whether it
        succeeded or not.
        """

        try:
            records = [record for record in self._canonical.load(handle) if not is_empty_row(record)]
            LOGGER.info("Processing %s records from %s", len(records), handle)

            index: Optional[DuplicateIndex] = None
            if skip_duplicate_check:
                LOGGER.info("Duplicate check disabled for this job")
            else:
                index = DuplicateIndex.build(self._store)

            inserter = BatchInserter(
                self._store,
                mapping,
                defaults,
                secret=self._settings.reference_secret,
                index=index,
                initial_state_title=self._settings.initial_state_title,
            )
            result = inserter.run(records)
        finally:
            self._canonical.discard(handle)

        result.not_inserted = build_reject_rows(result)
        if result.not_inserted:
            result.report_file = save_report(result.not_inserted, self.report_dir)
        LOGGER.info(
            "Import finished: %s inserted, %s duplicates, %s invalid, %s errors out of %s",
            result.inserted,
            len(result.duplicates),
            len(result.invalid),
            len(result.errors),
            result.total,
        )
        return result

    def import_file(
        self,
        path: PathLike,
        mapping: FieldMapping,
        defaults: OperatorDefaults,
        *,
        skip_duplicate_check: bool = False,
        owner: Optional[Union[int, str]] = None,
    ) -> ImportJobResult:
        """Preview and process a file on disk in one go."""

        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise ParseError(f"Unable to read '{file_path}': {exc}") from exc
        preview = self.preview(data, file_path.suffix, owner=owner)
        return self.process(
            preview.canonical_handle, mapping, defaults, skip_duplicate_check=skip_duplicate_check
        )

    def diagnose(self, data: bytes, extension: str, file_name: str = "") -> Diagnosis:
        """Analyse a file without touching the store or the canonical directory."""

        diagnosis = Diagnosis(file_name=file_name, extension=extension)
        try:
            result = read_records(data, extension)
        except ParseError as exc:
            diagnosis.add("parsing", "error", error=str(exc))
            diagnosis.recommendation = f"Le fichier n'a pas pu être lu: {exc}"
            return diagnosis

        raw = result.records
        diagnosis.add("parsing", "success", dataRows=len(raw), sampleRow=raw[0] if raw else None)

        columns = list(raw[0]) if raw else []
        diagnosis.add("columns", "success", columns=columns, columnCount=len(columns))

        records = to_canonical(result)
        diagnosis.add(
            "filtering",
            "success" if records else "warning",
            originalRows=len(raw),
            filteredRows=len(records),
            removedRows=len(raw) - len(records),
        )

        analysis = {"hasTel": 0, "hasGsm1": 0, "hasGsm2": 0, "hasAnyPhone": 0, "noPhone": 0}
        counters = dict(zip(PHONE_FIELDS, ("hasTel", "hasGsm1", "hasGsm2")))
        for record in records:
            found = False
            for field in PHONE_FIELDS:
                key = find_key(record, field)
                if key is not None and clean_text(record[key]):
                    analysis[counters[field]] += 1
                    found = True
            analysis["hasAnyPhone" if found else "noPhone"] += 1
        diagnosis.add("phones", "success" if analysis["hasAnyPhone"] else "error", analysis=analysis)

        if not analysis["hasAnyPhone"]:
            diagnosis.recommendation = RECOMMEND_NO_PHONE
        elif not records:
            diagnosis.recommendation = RECOMMEND_ALL_FILTERED
        else:
            diagnosis.recommendation = RECOMMEND_OK
        return diagnosis

    def open_report(self, file_name: str) -> Path:
        return open_report(self.report_dir, file_name)


__all__ = ["ImportService"]
