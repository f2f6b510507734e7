"""Import job orchestration."""

from .inserter import BatchInserter
from .service import ImportService

__all__ = ["BatchInserter", "ImportService"]
