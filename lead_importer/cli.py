"""Command line interface for previewing, diagnosing and importing contact files."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ConfigurationError, ImportSettings, load_configuration
from .ingestion import CanonicalStoreError, ParseError, convert_file, read_file, to_canonical
from .mapping import explain_mapping
from .models import FieldMapping, OperatorDefaults
from .orchestrator import ImportService
from .store import InMemoryRecordStore, RecordStore, SqlRecordStore, StoreError

LOGGER = logging.getLogger(__name__)


def _add_mapping_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--mapping",
        required=True,
        help="Field mapping as inline JSON ({\"tel\": \"Phone\", ...}) or a JSON/YAML file",
    )


def _add_job_arguments(parser: argparse.ArgumentParser) -> None:
    _add_mapping_argument(parser)
    parser.add_argument("--operator-id", type=int, required=True, help="Operator stamped on inserted contacts")
    parser.add_argument("--center-id", type=int, required=True, help="Center stamped on inserted contacts")
    parser.add_argument("--product-id", type=int, default=None, help="Default product for inserted contacts")
    parser.add_argument(
        "--skip-duplicates",
        action="store_true",
        help="Skip the duplicate check and insert every valid record",
    )


def build_parser(prog: Optional[str] = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Bulk import of contact files with phone deduplication")
    parser.add_argument("--config", default=None, help="Path to a configuration file (YAML or JSON)")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL of the contact database")
    parser.add_argument("--work-dir", default=None, help="Directory for canonical files and reports")
    parser.add_argument("--log-level", default="INFO", help="Logging level (e.g. DEBUG, INFO, WARNING)")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    preview = commands.add_parser("preview", help="Parse a file and store its canonical form")
    preview.add_argument("file", help="CSV, TSV, TXT, XLSX, XLS, JSON or JSONL file")
    preview.add_argument("--tab", action="store_true", help="Force tab separated parsing")
    preview.add_argument("--owner", default=None, help="Identifier of the uploading operator")

    process = commands.add_parser("process", help="Import a previously previewed file")
    process.add_argument("handle", help="Canonical handle returned by 'preview'")
    _add_job_arguments(process)

    import_cmd = commands.add_parser("import", help="Preview and process a file in one go")
    import_cmd.add_argument("file")
    _add_job_arguments(import_cmd)

    diagnose = commands.add_parser("diagnose", help="Analyse a file without importing it")
    diagnose.add_argument("file")

    convert = commands.add_parser("convert", help="Convert a file to canonical JSONL")
    convert.add_argument("file")
    convert.add_argument("destination", nargs="?", default=None)

    explain = commands.add_parser("explain-mapping", help="Show how a mapping resolves against one row")
    explain.add_argument("file")
    _add_mapping_argument(explain)
    explain.add_argument("--row", type=int, default=1, help="1-based row to inspect (default: 1)")

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def load_mapping(value: str) -> FieldMapping:
    """Read a mapping from inline JSON or from a JSON/YAML file."""

    text = value.strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid mapping JSON: {exc}") from exc
    else:
        data = load_configuration(text)
    if not isinstance(data, dict):
        raise ConfigurationError("The mapping must be an object of field -> column")
    return {str(field): "" if column is None else str(column) for field, column in data.items()}


def _settings_from_args(args: argparse.Namespace) -> ImportSettings:
    settings = ImportSettings.load(args.config)
    if args.database_url:
        settings = replace(settings, database_url=args.database_url)
    if args.work_dir:
        settings = replace(settings, work_dir=Path(args.work_dir))
    return settings


def _build_store(settings: ImportSettings) -> RecordStore:
    if settings.database_url:
        return SqlRecordStore(settings.database_url)
    LOGGER.warning("No database configured; running against an empty in-memory store")
    return InMemoryRecordStore()


def _defaults_from_args(args: argparse.Namespace) -> OperatorDefaults:
    return OperatorDefaults(operator_id=args.operator_id, center_id=args.center_id, product_id=args.product_id)


def _emit(payload: Any) -> None:
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2, default=str)
    sys.stdout.write("\n")


def _run(args: argparse.Namespace) -> int:
    if args.command == "convert":
        target = convert_file(args.file, args.destination)
        _emit({"output": str(target)})
        return 0

    if args.command == "explain-mapping":
        records = to_canonical(read_file(args.file))
        if not 1 <= args.row <= len(records):
            LOGGER.error("Row %s is out of range (file has %s records)", args.row, len(records))
            return 1
        record = records[args.row - 1]
        _emit({"columns": list(record), "mapping": explain_mapping(record, load_mapping(args.mapping))})
        return 0

    settings = _settings_from_args(args)

    if args.command == "diagnose":
        path = Path(args.file)
        service = ImportService(InMemoryRecordStore(), settings=settings)
        diagnosis = service.diagnose(path.read_bytes(), path.suffix, path.name)
        _emit(asdict(diagnosis))
        return 0 if diagnosis.ok else 1

    service = ImportService(_build_store(settings), settings=settings)
    if args.command == "preview":
        path = Path(args.file)
        preview = service.preview(path.read_bytes(), path.suffix, owner=args.owner, force_tab=args.tab)
        _emit(preview.as_dict())
        return 0

    mapping = load_mapping(args.mapping)
    if args.command == "process":
        result = service.process(
            args.handle, mapping, _defaults_from_args(args), skip_duplicate_check=args.skip_duplicates
        )
    else:
        result = service.import_file(
            args.file, mapping, _defaults_from_args(args), skip_duplicate_check=args.skip_duplicates
        )
    summary: Dict[str, Any] = result.as_dict()
    if result.report_file:
        summary["reportPath"] = str(service.open_report(result.report_file).resolve())
    _emit(summary)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        return _run(args)
    except (ParseError, CanonicalStoreError, ConfigurationError, StoreError) as exc:
        LOGGER.error("%s", exc)
        return 1
    except OSError as exc:
        LOGGER.error("File error: %s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
