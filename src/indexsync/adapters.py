"""Document adapters resolving source records into index actions."""

from __future__ import annotations

from collections.abc import Iterable as IterableABC
from dataclasses import dataclass, field
from itertools import islice
from typing import (
    Any,
    Callable,
    Iterable,
    Iterator,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

__all__ = [
    "INDEX",
    "DELETE",
    "ActionGroup",
    "DocumentAdapter",
    "ObjectAdapter",
    "as_objects",
    "is_reference",
    "normalize_id",
    "object_id",
    "read_attribute",
    "slices",
]

INDEX = "index"
DELETE = "delete"

Selector = Sequence[Any] | None


def normalize_id(value: Any) -> str:
    """Return the canonical string form of a document id."""

    return str(value)


def is_reference(value: Any) -> bool:
    """Return ``True`` when ``value`` is a bare id rather than an object."""

    return isinstance(value, (str, int)) and not isinstance(value, bool)


def as_objects(objects: Any) -> list[Any]:
    """Wrap a single id or object in a list; materialize iterables.

    Example:
        >>> as_objects("12")
        ['12']
        >>> as_objects((1, 2))
        [1, 2]
    """

    if objects is None:
        return []
    if is_reference(objects) or isinstance(objects, (Mapping, bytes)):
        return [objects]
    if isinstance(objects, IterableABC):
        return list(objects)
    return [objects]


def read_attribute(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping key or an attribute."""

    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def object_id(obj: Any, attribute: str = "id") -> str | None:
    """Return the normalized id of ``obj`` or ``None`` when it has none."""

    if is_reference(obj):
        return normalize_id(obj)
    value = read_attribute(obj, attribute)
    if value is None:
        return None
    return normalize_id(value)


def slices(items: Iterable[Any], size: int) -> Iterator[list[Any]]:
    """Yield consecutive lists of at most ``size`` items."""

    if size < 1:
        raise ValueError("slice size must be >= 1")
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk


@dataclass(frozen=True, slots=True)
class ActionGroup:
    """Objects of one fetched batch split by the action they require."""

    index: tuple[Any, ...] = ()
    delete: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "index", tuple(self.index))
        object.__setattr__(self, "delete", tuple(self.delete))

    def __bool__(self) -> bool:
        return bool(self.index or self.delete)

    def __len__(self) -> int:
        return len(self.index) + len(self.delete)

    def items(self) -> Iterator[tuple[str, tuple[Any, ...]]]:
        """Yield non-empty ``(action, objects)`` pairs in a stable order."""

        if self.index:
            yield INDEX, self.index
        if self.delete:
            yield DELETE, self.delete


@runtime_checkable
class DocumentAdapter(Protocol):
    """Boundary contract between the engine and the record source."""

    def resolve(
        self,
        selector: Selector,
        *,
        batch_size: int,
        direct_import: bool = False,
    ) -> Iterator[ActionGroup]:
        """Lazily yield one :class:`ActionGroup` per fetched batch."""

    def references(
        self,
        selector: Selector,
        *,
        batch_size: int,
    ) -> Iterator[list[Any]]:
        """Yield ``batch_size`` slices of ids/objects without loading them."""

    def resolve_fields(
        self,
        selector: Selector,
        *,
        fields: Sequence[str],
        batch_size: int,
    ) -> Iterator[list[tuple[Any, ...]]]:
        """Yield batches of ``(id, *field_values)`` rows."""

    def identify(self, objects: Iterable[Any]) -> list[str]:
        """Return normalized ids for ``objects`` (ids pass through)."""


def _no_ids() -> Iterable[Any]:
    return ()


@dataclass(slots=True)
class ObjectAdapter:
    """Adapter over a loader callable returning plain objects or mappings.

    Args:
        loader: Returns the objects that still exist for the given ids; ids
            it omits are treated as deletions.
        all_ids: Returns every id in the source; used when no selector is
            passed and by the syncer.
        id_attribute: Attribute (or mapping key) holding the object id.
        delete_if: Optional predicate flagging loaded objects for deletion.

    Example:
        >>> records = {"1": {"id": 1, "name": "A"}}
        >>> adapter = ObjectAdapter(
        ...     loader=lambda ids: [records[i] for i in ids if i in records],
        ...     all_ids=lambda: list(records),
        ... )
        >>> groups = adapter.resolve(["1", "2"], batch_size=10)
        >>> [group.index for group in groups]
        [({'id': 1, 'name': 'A'},)]
    """

    loader: Callable[[Sequence[str]], Iterable[Any]]
    all_ids: Callable[[], Iterable[Any]] = _no_ids
    id_attribute: str = "id"
    delete_if: Callable[[Any], bool] | None = None
    _fetch_rounds: int = field(default=0, init=False, repr=False)

    @property
    def fetch_rounds(self) -> int:
        """Number of loader round trips performed so far."""

        return self._fetch_rounds

    def identify(self, objects: Iterable[Any]) -> list[str]:
        ids: list[str] = []
        for obj in objects:
            identifier = object_id(obj, self.id_attribute)
            if identifier is not None:
                ids.append(identifier)
        return ids

    def references(
        self,
        selector: Selector,
        *,
        batch_size: int,
    ) -> Iterator[list[Any]]:
        collection = self.all_ids() if selector is None else selector
        yield from slices(collection, batch_size)

    def resolve(
        self,
        selector: Selector,
        *,
        batch_size: int,
        direct_import: bool = False,
    ) -> Iterator[ActionGroup]:
        for batch in self.references(selector, batch_size=batch_size):
            group = self._resolve_batch(batch, direct_import=direct_import)
            if group:
                yield group

    def resolve_fields(
        self,
        selector: Selector,
        *,
        fields: Sequence[str],
        batch_size: int,
    ) -> Iterator[list[tuple[Any, ...]]]:
        for batch in self.references(selector, batch_size=batch_size):
            loaded = self._load(self.identify(batch))
            rows = [
                (
                    object_id(obj, self.id_attribute),
                    *(read_attribute(obj, name) for name in fields),
                )
                for obj in loaded.values()
                if not self._deleted(obj)
            ]
            if rows:
                yield rows

    def _load(self, ids: Sequence[str]) -> dict[str, Any]:
        if not ids:
            return {}
        self._fetch_rounds += 1
        loaded: dict[str, Any] = {}
        for obj in self.loader(list(ids)):
            identifier = object_id(obj, self.id_attribute)
            if identifier is not None:
                loaded[identifier] = obj
        return loaded

    def _deleted(self, obj: Any) -> bool:
        return self.delete_if is not None and bool(self.delete_if(obj))

    def _resolve_batch(
        self,
        batch: Sequence[Any],
        *,
        direct_import: bool,
    ) -> ActionGroup:
        to_index: list[Any] = []
        to_delete: list[Any] = []

        direct: dict[str, Any] = {}
        if direct_import:
            direct = {
                object_id(obj, self.id_attribute): obj
                for obj in batch
                if not is_reference(obj)
            }
        pending = [
            identifier
            for identifier in self.identify(batch)
            if identifier not in direct
        ]
        loaded = self._load(list(dict.fromkeys(pending)))

        seen: set[str] = set()
        for obj in batch:
            identifier = object_id(obj, self.id_attribute)
            if identifier is None:
                # Objects without ids cannot be reloaded; index them as given.
                to_index.append(obj)
                continue
            if identifier in seen:
                continue
            seen.add(identifier)
            current = direct.get(identifier, loaded.get(identifier))
            if current is None:
                to_delete.append(identifier)
            elif self._deleted(current):
                to_delete.append(current)
            else:
                to_index.append(current)
        return ActionGroup(index=to_index, delete=to_delete)
