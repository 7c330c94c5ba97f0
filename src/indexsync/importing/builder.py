"""Translate action groups into bulk operations for one index."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

from indexsync.adapters import ActionGroup, is_reference, normalize_id
from indexsync.importing.bulk import BulkOperation

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = ["BulkBuilder"]


@dataclass(slots=True)
class BulkBuilder:
    """Compose the bulk body for one :class:`ActionGroup`.

    With ``fields`` set, objects to index become partial ``update`` operations
    carrying only those fields; objects without an id are skipped in that
    mode because an update needs a target. Otherwise full ``index`` operations
    are produced. Deletions always become ``delete`` operations.
    """

    index: "IndexDefinition"
    group: ActionGroup
    fields: Sequence[str] = ()
    _by_id: dict[str, Any] | None = field(default=None, init=False, repr=False)

    def index_objects_by_id(self) -> dict[str, Any]:
        """Map document ids to the objects queued for indexing."""

        if self._by_id is None:
            by_id: dict[str, Any] = {}
            for obj in self.group.index:
                identifier = self._identify(obj)
                if identifier is not None:
                    by_id.setdefault(identifier, obj)
            self._by_id = by_id
        return self._by_id

    def operations(self) -> list[BulkOperation]:
        ops: list[BulkOperation] = []
        seen: set[tuple[str, str]] = set()

        def push(operation: BulkOperation) -> None:
            if operation.id is not None:
                key = (operation.action, operation.id)
                if key in seen:
                    return
                seen.add(key)
            ops.append(operation)

        for obj in self.group.index:
            operation = self._index_operation(obj)
            if operation is not None:
                push(operation)
        for obj in self.group.delete:
            identifier = self._identify(obj)
            if identifier is not None:
                push(BulkOperation("delete", identifier))
        return ops

    def _index_operation(self, obj: Any) -> BulkOperation | None:
        identifier = self._identify(obj)
        if self.fields:
            if identifier is None:
                return None
            document = {"doc": self.index.compose(obj, fields=self.fields)}
            return BulkOperation("update", identifier, document)
        return BulkOperation("index", identifier, self.index.compose(obj))

    def _identify(self, obj: Any) -> str | None:
        if is_reference(obj):
            return normalize_id(obj)
        ids = self.index.adapter.identify([obj])
        return ids[0] if ids else None
