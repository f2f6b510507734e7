"""Report of contacts that were not inserted by an import job."""
from __future__ import annotations

import csv
import io
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Sequence, Union

import pandas as pd

from ..models import ImportJobResult, ImportOutcome, RejectRow

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]

REPORT_PREFIX = "contacts-non-inseres-"

REPORT_COLUMNS = [
    "Nom",
    "Prénom",
    "Téléphone",
    "Code Postal",
    "Ville",
    "Raison",
    "Type Raison",
    "Fiche Existante (ID)",
    "Fiche Existante (Nom)",
    "Fiche Existante (Prénom)",
    "Fiche Existante (Téléphone)",
    "Fiche Existante (État)",
]


class ReportAccessError(PermissionError):
    """Raised when a report name points outside the report directory."""


def _outcome_to_row(outcome: ImportOutcome) -> RejectRow:
    contact = outcome.contact
    return RejectRow(
        last_name=contact.last_name,
        first_name=contact.first_name,
        phone=contact.phone or (outcome.matched_phone or ""),
        postal_code=contact.postal_code,
        city=contact.city,
        reason=outcome.reason,
        reason_type=outcome.reason_type,
        existing=outcome.existing,
    )


def build_reject_rows(result: ImportJobResult) -> List[RejectRow]:
    """Merge duplicates, invalid records and insertion errors, in that order."""

    outcomes: Iterable[ImportOutcome] = [*result.duplicates, *result.invalid, *result.errors]
    return [_outcome_to_row(outcome) for outcome in outcomes]


def _row_cells(row: RejectRow) -> List[str]:
    existing = row.existing
    cells = [
        row.last_name,
        row.first_name,
        row.phone,
        row.postal_code,
        row.city,
        row.reason,
        row.reason_type,
        existing.id if existing else "",
        existing.last_name if existing else "",
        existing.first_name if existing else "",
        existing.phone if existing else "",
        (existing.state_title or "Non défini") if existing else "",
    ]
    return ["" if cell is None else str(cell) for cell in cells]


def reject_rows_to_dataframe(rows: Sequence[RejectRow]) -> pd.DataFrame:
    """Convert report rows into a :class:`pandas.DataFrame` with the report header."""

    return pd.DataFrame([_row_cells(row) for row in rows], columns=REPORT_COLUMNS, dtype=object)


def render_reject_csv(rows: Sequence[RejectRow], **to_csv_kwargs: Any) -> str:
    """Render the report as comma separated text with minimal quoting.

    Extra keyword arguments are forwarded to :meth:`pandas.DataFrame.to_csv`.
    """

    options: Dict[str, Any] = {"index": False, "quoting": csv.QUOTE_MINIMAL, "lineterminator": "\n"}
    options.update(to_csv_kwargs)
    buffer = io.StringIO()
    reject_rows_to_dataframe(rows).to_csv(buffer, **options)
    return buffer.getvalue()


def write_reject_report(
    rows: Sequence[RejectRow],
    path: PathLike,
    *,
    sheet_name: str = "Non insérés",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    """Write the report to a CSV or Excel file depending on the suffix."""

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    exporter_kwargs = dict(exporter_kwargs or {})
    suffix = output_path.suffix.lower()

    if suffix == ".csv":
        encoding = str(exporter_kwargs.pop("encoding", None) or "utf-8")
        output_path.write_text(render_reject_csv(rows, **exporter_kwargs), encoding=encoding)
        return output_path

    if suffix in {".xlsx", ".xlsm"}:
        engine = exporter_kwargs.pop("engine", None) or "openpyxl"
        reject_rows_to_dataframe(rows).to_excel(
            output_path, index=False, sheet_name=sheet_name, engine=engine, **exporter_kwargs
        )
        return output_path

    raise ValueError(f"Unsupported report file extension: {suffix}")


def save_report(rows: Sequence[RejectRow], directory: PathLike) -> Optional[str]:
    """Store a downloadable CSV report in ``directory`` and return its file name."""

    if not rows:
        return None
    file_name = f"{REPORT_PREFIX}{int(time.time() * 1000)}.csv"
    write_reject_report(rows, Path(directory) / file_name)
    LOGGER.info("Report of %s contacts not inserted written to %s", len(rows), file_name)
    return file_name


def open_report(directory: PathLike, file_name: str) -> Path:
    """Return the path of a previously saved report after validating its name."""

    if not file_name or ".." in file_name or "/" in file_name or "\\" in file_name:
        raise ReportAccessError(f"Invalid report name '{file_name}'")
    if not file_name.startswith(REPORT_PREFIX):
        raise ReportAccessError(f"'{file_name}' is not an import report")
    path = Path(directory) / file_name
    if not path.is_file():
        raise FileNotFoundError(path)
    return path


__all__ = [
    "REPORT_COLUMNS",
    "REPORT_PREFIX",
    "ReportAccessError",
    "build_reject_rows",
    "open_report",
    "reject_rows_to_dataframe",
    "render_reject_csv",
    "save_report",
    "write_reject_report",
]
