"""Import routine: bulk composition, per-pass state and the entry point."""

from __future__ import annotations

from indexsync.importing.builder import BulkBuilder
from indexsync.importing.bulk import (
    BulkChunk,
    BulkError,
    BulkOperation,
    BulkRequest,
    chunk_operations,
    classify_errors,
    group_errors,
)
from indexsync.importing.options import ImportOptions
from indexsync.importing.routine import ImportRoutine, WorkerResult
from indexsync.importing.service import ImportResult, import_index

__all__ = [
    "BulkBuilder",
    "BulkChunk",
    "BulkError",
    "BulkOperation",
    "BulkRequest",
    "ImportOptions",
    "ImportResult",
    "ImportRoutine",
    "WorkerResult",
    "chunk_operations",
    "classify_errors",
    "group_errors",
    "import_index",
]
