"""Update policies deciding what a change notification triggers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from indexsync.adapters import as_objects
from indexsync.core.logging import get_logger
from indexsync.errors import IndexSyncError, UndefinedUpdateStrategy
from indexsync.strategy.deferred import enqueue_import

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = [
    "Atomic",
    "AtomicNoRefresh",
    "Base",
    "Bypass",
    "Deferred",
    "Delayed",
    "Policy",
    "Urgent",
]

logger = get_logger(__name__, component="strategy")


class Policy:
    """Interface of a strategy frame.

    ``update`` receives every change notification while the frame is on top
    of the stack; ``leave`` runs once when the frame is popped.
    """

    name: ClassVar[str] = "policy"

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        raise NotImplementedError

    def leave(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"


class Base(Policy):
    """Root policy: refuses updates so callers pick a strategy explicitly."""

    name = "base"

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        raise UndefinedUpdateStrategy(index.name)


class Bypass(Policy):
    name = "bypass"

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        return None


class Urgent(Policy):
    """Import every notification immediately.

    Objects are sent as ids when all of them carry one, so the import
    reloads current state; otherwise the objects are imported as given.
    """

    name = "urgent"

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        items = as_objects(objects)
        if not items:
            return
        ids = index.identify(items)
        index.import_(ids if len(ids) == len(items) else items, **options)


@dataclass(slots=True)
class _Stash:
    index: "IndexDefinition"
    ids: dict[str, None] = field(default_factory=dict)

    def add(self, ids: list[str]) -> None:
        self.ids.update(dict.fromkeys(ids))


class Atomic(Policy):
    """Buffer ids per index and import each index once on leave."""

    name = "atomic"

    def __init__(self) -> None:
        self._stash: dict[str, _Stash] = {}

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        items = as_objects(objects)
        ids = index.identify(items)
        if len(ids) != len(items):
            logger.warning(
                "strategy-objects-without-id",
                strategy=self.name,
                index=index.name,
                dropped=len(items) - len(ids),
            )
        stash = self._stash.get(index.name)
        if stash is None:
            stash = self._stash[index.name] = _Stash(index)
        stash.add(ids)

    def stashed(self) -> dict[str, tuple[str, ...]]:
        return {name: tuple(stash.ids) for name, stash in self._stash.items()}

    def leave(self) -> bool:
        """Flush every stashed index; ``True`` when all flushes succeeded.

        A failing flush does not stop the remaining ones. The first
        exception is re-raised once every index has been flushed.
        """

        results: list[bool] = []
        first_error: Exception | None = None
        try:
            for stash in self._stash.values():
                if not stash.ids:
                    continue
                try:
                    results.append(self.flush(stash.index, list(stash.ids)))
                except Exception as exc:
                    logger.exception(
                        "strategy-flush-failed",
                        strategy=self.name,
                        index=stash.index.name,
                    )
                    results.append(False)
                    if first_error is None:
                        first_error = exc
        finally:
            self._stash.clear()
        if first_error is not None:
            raise first_error
        return all(results)

    def flush(self, index: "IndexDefinition", ids: list[str]) -> bool:
        return index.import_(ids)


class AtomicNoRefresh(Atomic):
    """Atomic flush without a refresh; document errors raise."""

    name = "atomic_no_refresh"

    def flush(self, index: "IndexDefinition", ids: list[str]) -> bool:
        index.import_or_raise(ids, refresh=False)
        return True


class Deferred(Atomic):
    """Atomic buffering whose flush enqueues one message per index."""

    name = "deferred"

    def flush(self, index: "IndexDefinition", ids: list[str]) -> bool:
        message = enqueue_import(index, ids)
        logger.debug(
            "strategy-enqueued",
            index=index.name,
            ids=len(message.ids or ()),
        )
        return True


class Delayed(Atomic):
    """Atomic buffering whose flush postpones ids on the index scheduler.

    Partial ``update_fields`` passed with notifications are merged per
    index; a notification without them schedules full documents.
    """

    name = "delayed"

    def __init__(self) -> None:
        super().__init__()
        self._fields: dict[str, dict[str, None] | None] = {}

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        super().update(index, objects, **options)
        requested = options.get("update_fields")
        if isinstance(requested, str):
            requested = [requested]
        current = self._fields.get(index.name, {})
        if not requested or current is None:
            self._fields[index.name] = None
        else:
            current.update(dict.fromkeys(requested))
            self._fields[index.name] = current

    def leave(self) -> bool:
        try:
            return super().leave()
        finally:
            self._fields.clear()

    def flush(self, index: "IndexDefinition", ids: list[str]) -> bool:
        if index.scheduler is None:
            raise IndexSyncError(
                f"Index {index.name!r} has no scheduler for delayed imports"
            )
        fields = self._fields.get(index.name)
        index.scheduler.postpone(index.name, ids, fields)
        return True
