"""Index definitions and the registry resolving them by name."""

from __future__ import annotations

import dataclasses
import threading
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence

from indexsync.adapters import DocumentAdapter, read_attribute
from indexsync.client import BulkClient
from indexsync.core.config import AppConfig, default_config
from indexsync.core.logging import Logger, get_logger
from indexsync.errors import (
    ImportFailed,
    IndexNotRegisteredError,
    JournalStorageError,
)
from indexsync.importing.bulk import BulkError, BulkOperation, BulkRequest
from indexsync.importing.options import ImportOptions
from indexsync.importing.service import ImportResult, import_index
from indexsync.instrumentation import Instrumentation, instrumentation
from indexsync.journal.entry import JournalEntry
from indexsync.journal.service import Journal
from indexsync.strategy.deferred import MessageQueue
from indexsync.strategy.delayed import TimeChunkScheduler
from indexsync.strategy.stack import current_stack
from indexsync.syncer import Syncer

__all__ = ["FieldSpec", "IndexDefinition", "IndexRegistry"]

FieldSpec = str | Callable[[Any], Any] | None
"""How a document field is read: ``None`` reads the attribute of the same
name, a string is a dotted attribute path, a callable receives the object."""


def _dig(obj: Any, path: str) -> Any:
    value = obj
    for part in path.split("."):
        if value is None:
            return None
        value = read_attribute(value, part)
    return value


def _as_document(obj: Any) -> dict[str, Any]:
    if isinstance(obj, MappingABC):
        return dict(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if hasattr(obj, "__dict__"):
        return {
            key: value
            for key, value in vars(obj).items()
            if not key.startswith("_")
        }
    raise TypeError(f"Cannot build a document from {type(obj).__name__}")


@dataclass(slots=True, eq=False)
class IndexDefinition:
    """Bind an index name to its source adapter, store and field layout.

    Args:
        name: Index name in the store; also the registry key.
        adapter: Source of records.
        client: Store receiving bulk writes.
        fields: Document layout. ``None`` indexes every public attribute.
        type_name: Document type recorded in journal entries.
        outdated_sync_field: Field compared by the syncer to detect stale
            documents, usually an update timestamp.
        outdated_sync_field_type: ``"date"`` forces millisecond-tolerant
            comparison; left unset it is inferred from source values.
        import_defaults: Import options applied before per-call options.
        queue: Destination for deferred imports.
        scheduler: Time-chunk store used by the delayed strategy.
        registry: Registry this index joins on creation.

    Example:
        >>> from indexsync.adapters import ObjectAdapter
        >>> from indexsync.client import MemoryIndexClient
        >>> users = IndexDefinition(
        ...     name="users",
        ...     adapter=ObjectAdapter(loader=lambda ids: []),
        ...     client=MemoryIndexClient(),
        ...     fields={"name": None, "city": "address.city"},
        ... )
        >>> users.compose({"name": "Ann", "address": {"city": "Oslo"}})
        {'name': 'Ann', 'city': 'Oslo'}
    """

    name: str
    adapter: DocumentAdapter
    client: BulkClient
    fields: Mapping[str, FieldSpec] | None = None
    type_name: str = "default"
    outdated_sync_field: str | None = None
    outdated_sync_field_type: str | None = None
    import_defaults: Mapping[str, Any] = field(default_factory=dict)
    config: AppConfig = field(default_factory=default_config)
    events: Instrumentation = field(default_factory=lambda: instrumentation)
    queue: MessageQueue | None = None
    scheduler: TimeChunkScheduler | None = None
    registry: "IndexRegistry | None" = None
    journal_store: Journal | None = None
    logger: Logger | None = None

    def __post_init__(self) -> None:
        self.name = self.name.strip()
        if not self.name:
            raise ValueError("index name cannot be blank")
        if self.logger is None:
            self.logger = get_logger(
                __name__, component="index", index=self.name
            )
        if self.registry is not None:
            self.registry.register(self)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------
    def compose(
        self,
        obj: Any,
        *,
        fields: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Build the document for ``obj``, limited to ``fields`` if given."""

        if self.fields is None:
            whole = _as_document(obj)
            if fields:
                return {name: whole.get(name) for name in fields}
            return whole

        document: dict[str, Any] = {}
        for name, spec in self.fields.items():
            if fields and name not in fields:
                continue
            if spec is None:
                document[name] = read_attribute(obj, name)
            elif isinstance(spec, str):
                document[name] = _dig(obj, spec)
            else:
                document[name] = spec(obj)
        return document

    def identify(self, objects: Iterable[Any]) -> list[str]:
        return self.adapter.identify(objects)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------
    def ensure_exists(self) -> None:
        if not self.client.index_exists(self.name):
            self.client.create_index(self.name)
            self.logger.info("index-created")

    def import_options(
        self,
        options: Mapping[str, Any] | None = None,
    ) -> ImportOptions:
        return ImportOptions.resolve(
            self.config.import_settings,
            self.import_defaults,
            options,
        )

    def import_result(
        self,
        selector: Any = None,
        **options: Any,
    ) -> ImportResult:
        return import_index(self, selector, **options)

    def import_(self, selector: Any = None, **options: Any) -> bool:
        """Import ``selector``; ``True`` when no document errors remain."""

        return import_index(self, selector, **options).success

    def import_or_raise(
        self,
        selector: Any = None,
        **options: Any,
    ) -> ImportResult:
        """Import ``selector`` and raise :class:`ImportFailed` on errors."""

        result = import_index(self, selector, **options)
        if not result.success:
            raise ImportFailed(self.name, result.errors)
        return result

    def bulk(
        self,
        operations: Sequence[BulkOperation],
        *,
        bulk_size: int | None = None,
        refresh: bool = True,
        journal: bool = False,
        **bulk_options: Any,
    ) -> list[BulkError]:
        """Submit raw ``operations``, optionally journaling them."""

        request = BulkRequest(
            client=self.client,
            index_name=self.name,
            bulk_size=bulk_size,
            options={"refresh": refresh, **bulk_options},
            logger=self.logger,
        )
        errors = request.perform(operations)
        if journal:
            self._journal_operations(operations)
        return errors

    def sync(self, parallel: Any = None) -> int | None:
        return Syncer(self, parallel=parallel).perform()

    def update_index(self, objects: Any, **options: Any) -> None:
        """Notify the active strategy that ``objects`` changed."""

        current_stack().update(self, objects, **options)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------
    @property
    def journal(self) -> Journal:
        if self.journal_store is None:
            self.journal_store = Journal(
                client=self.client,
                settings=self.config.journal,
                registry=self.registry,
                events=self.events,
            )
        elif self.journal_store.registry is None:
            self.journal_store.registry = self.registry
        return self.journal_store

    def _journal_operations(self, operations: Sequence[BulkOperation]) -> None:
        by_action: dict[str, list[str]] = {}
        for operation in operations:
            if operation.id is None:
                continue
            action = "delete" if operation.action == "delete" else "index"
            by_action.setdefault(action, []).append(operation.id)
        if not by_action:
            return
        stamp = self.journal.timestamp()
        entries = [
            JournalEntry(self.name, self.type_name, action, tuple(ids), stamp)
            for action, ids in by_action.items()
        ]
        try:
            self.journal.create()
            self.journal.append(entries)
        except JournalStorageError:
            self.logger.exception(
                "journal-append-failed", entries=len(entries)
            )


@dataclass(slots=True)
class IndexRegistry:
    """Name to :class:`IndexDefinition` map used by workers and replay."""

    _indices: dict[str, IndexDefinition] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register(
        self,
        index: IndexDefinition,
        *,
        replace: bool = False,
    ) -> IndexDefinition:
        with self._lock:
            current = self._indices.get(index.name)
            if current is not None and current is not index and not replace:
                raise ValueError(f"Index {index.name!r} is already registered")
            self._indices[index.name] = index
        if index.registry is None:
            index.registry = self
        return index

    def unregister(self, name: str) -> IndexDefinition | None:
        with self._lock:
            return self._indices.pop(name, None)

    def resolve(self, name: str) -> IndexDefinition:
        with self._lock:
            index = self._indices.get(name)
        if index is None:
            raise IndexNotRegisteredError(f"No index registered as {name!r}")
        return index

    def names(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._indices))

    def snapshot(self) -> Mapping[str, IndexDefinition]:
        with self._lock:
            return MappingProxyType(dict(self._indices))

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._indices
