"""Reading, canonicalising and reporting on uploaded contact files."""

from .canonical import CanonicalStore, CanonicalStoreError, convert_file, to_canonical
from .exporters import build_reject_rows, open_report, render_reject_csv, save_report, write_reject_report
from .readers import ParseError, ReadResult, UnsupportedFileTypeError, read_file, read_records

__all__ = [
    "CanonicalStore",
    "CanonicalStoreError",
    "ParseError",
    "ReadResult",
    "UnsupportedFileTypeError",
    "build_reject_rows",
    "convert_file",
    "open_report",
    "read_file",
    "read_records",
    "render_reject_csv",
    "save_report",
    "to_canonical",
    "write_reject_report",
]
