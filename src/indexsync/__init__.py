"""Keep a search index in step with an authoritative record source.

The package exposes version metadata along with the public entry points.

Example:
    >>> from indexsync import __version__
    >>> __version__.split(".")[0]
    '0'
"""

from importlib import metadata

from indexsync.adapters import ActionGroup, DocumentAdapter, ObjectAdapter
from indexsync.client import BulkClient, MemoryIndexClient
from indexsync.errors import (
    ImportFailed,
    IndexNotRegisteredError,
    IndexSyncError,
    JournalStorageError,
    StackUnderflow,
    UndefinedUpdateStrategy,
    UnknownStrategyError,
)
from indexsync.index import IndexDefinition, IndexRegistry
from indexsync.importing import ImportResult, import_index
from indexsync.instrumentation import instrumentation
from indexsync.journal import Journal, JournalEntry
from indexsync.strategy import StrategyStack, current_stack, strategy
from indexsync.syncer import SyncDelta, Syncer

try:
    __version__ = metadata.version("indexsync")
except metadata.PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.0.0"

__all__ = [
    "ActionGroup",
    "BulkClient",
    "DocumentAdapter",
    "ImportFailed",
    "ImportResult",
    "IndexDefinition",
    "IndexNotRegisteredError",
    "IndexRegistry",
    "IndexSyncError",
    "Journal",
    "JournalEntry",
    "JournalStorageError",
    "MemoryIndexClient",
    "ObjectAdapter",
    "StackUnderflow",
    "StrategyStack",
    "SyncDelta",
    "Syncer",
    "UndefinedUpdateStrategy",
    "UnknownStrategyError",
    "__version__",
    "current_stack",
    "import_index",
    "instrumentation",
    "strategy",
]
