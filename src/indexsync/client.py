"""Bulk client contract and an in-memory index store implementing it.

The engine talks to the index store exclusively through :class:`BulkClient`.
Bulk bodies are newline-delimited JSON in the Elasticsearch bulk format: an
action line ``{"index": {"_id": "1"}}`` optionally followed by a source line.
Responses mirror the Elasticsearch shape, ``{"errors": bool, "items": [...]}``
with one ``{action: {"_id", "status", "error"?}}`` item per operation.
"""

from __future__ import annotations

import json
import threading
import uuid
from copy import deepcopy
from dataclasses import dataclass, field
from typing import (
    Any,
    Iterator,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

from indexsync.core.logging import Logger, get_logger

__all__ = [
    "BulkClient",
    "BulkRecord",
    "MemoryIndexClient",
    "IndexMissingError",
    "matches_query",
]

Hit = dict[str, Any]
Query = Mapping[str, Any]


class IndexMissingError(LookupError):
    """Raised when a search targets an index that does not exist."""


@runtime_checkable
class BulkClient(Protocol):
    """Operations the engine needs from the index store."""

    def submit_bulk(
        self,
        index: str,
        body: bytes,
        **options: Any,
    ) -> Mapping[str, Any]:
        """Execute an NDJSON bulk ``body`` against ``index``."""

    def search(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int | None = None,
    ) -> list[Hit]:
        """Return hits matching ``query``."""

    def count(self, index: str, query: Query | None = None) -> int:
        """Return the number of documents matching ``query``."""

    def scroll(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int = 1000,
    ) -> Iterator[list[Hit]]:
        """Lazily yield pages of hits matching ``query``."""

    def index_exists(self, index: str) -> bool:
        """Return ``True`` if ``index`` exists."""

    def create_index(self, index: str) -> None:
        """Create ``index``; creating an existing index is a no-op."""


def _compare(value: Any, operator: str, bound: Any) -> bool:
    if value is None:
        return False
    if operator == "gte":
        return value >= bound
    if operator == "gt":
        return value > bound
    if operator == "lte":
        return value <= bound
    if operator == "lt":
        return value < bound
    raise ValueError(f"Unsupported range operator: {operator!r}")


def matches_query(
    doc_id: str,
    source: Mapping[str, Any],
    query: Query | None,
) -> bool:
    """Evaluate the small query subset understood by the memory store.

    Supported clauses: ``match_all``, ``ids``, ``term``, ``terms``, ``range``
    and ``bool`` with ``filter``/``must``/``should``/``must_not`` lists.
    """

    if not query:
        return True
    (clause, body), = query.items()
    if clause == "match_all":
        return True
    if clause == "ids":
        return doc_id in {str(value) for value in body["values"]}
    if clause == "term":
        (name, expected), = body.items()
        return source.get(name) == expected
    if clause == "terms":
        (name, expected), = body.items()
        return source.get(name) in set(expected)
    if clause == "range":
        (name, bounds), = body.items()
        value = source.get(name)
        return all(_compare(value, op, bound) for op, bound in bounds.items())
    if clause == "bool":
        required = [*body.get("filter", ()), *body.get("must", ())]
        if not all(matches_query(doc_id, source, sub) for sub in required):
            return False
        excluded = body.get("must_not", ())
        if any(matches_query(doc_id, source, sub) for sub in excluded):
            return False
        should = body.get("should", ())
        if should and not any(
            matches_query(doc_id, source, sub) for sub in should
        ):
            return False
        return True
    raise ValueError(f"Unsupported query clause: {clause!r}")


def _jsonable(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _project(
    source: Mapping[str, Any],
    fields: Sequence[str] | bool,
) -> dict[str, Any]:
    if fields is True:
        return deepcopy(dict(source))
    if fields is False:
        return {}
    return {name: deepcopy(source[name]) for name in fields if name in source}


@dataclass(frozen=True, slots=True)
class BulkRecord:
    """A bulk request observed by :class:`MemoryIndexClient`."""

    index: str
    body: bytes
    options: dict[str, Any]

    @property
    def operations(self) -> list[tuple[str, str]]:
        """Return ``(action, id)`` pairs carried by the request."""

        pairs: list[tuple[str, str]] = []
        lines = iter(self.body.decode("utf-8").splitlines())
        for line in lines:
            if not line.strip():
                continue
            (action, meta), = json.loads(line).items()
            pairs.append((action, str(meta.get("_id"))))
            if action != "delete":
                next(lines, None)
        return pairs


@dataclass(slots=True)
class MemoryIndexClient:
    """Thread-safe dictionary-backed index store.

    Useful as a reference :class:`BulkClient` and for tests: every bulk call is
    recorded in :attr:`requests`, and ``fail_ids`` injects per-document errors.
    """

    indices: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    requests: list[BulkRecord] = field(default_factory=list)
    fail_ids: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    auto_create: bool = True
    logger: Logger = field(
        default_factory=lambda: get_logger(__name__, component="memory-index")
    )
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------
    def index_exists(self, index: str) -> bool:
        with self._lock:
            return index in self.indices

    def create_index(self, index: str) -> None:
        with self._lock:
            self.indices.setdefault(index, {})

    def documents(self, index: str) -> dict[str, dict[str, Any]]:
        """Return a snapshot of ``index`` keyed by document id."""

        with self._lock:
            return deepcopy(self.indices.get(index, {}))

    def put(self, index: str, doc_id: Any, source: Mapping[str, Any]) -> None:
        """Store ``source`` directly, bypassing the bulk API."""

        with self._lock:
            self.indices.setdefault(index, {})[str(doc_id)] = json.loads(
                json.dumps(dict(source), default=_jsonable)
            )

    def bulk_requests(self, index: str) -> list[BulkRecord]:
        with self._lock:
            return [
                record for record in self.requests if record.index == index
            ]

    # ------------------------------------------------------------------
    # BulkClient
    # ------------------------------------------------------------------
    def submit_bulk(
        self,
        index: str,
        body: bytes,
        **options: Any,
    ) -> Mapping[str, Any]:
        with self._lock:
            self.requests.append(
                BulkRecord(index=index, body=body, options=dict(options))
            )
            if index not in self.indices:
                if not self.auto_create:
                    raise IndexMissingError(index)
                self.indices[index] = {}
            store = self.indices[index]

            items: list[dict[str, Any]] = []
            lines = iter(body.decode("utf-8").splitlines())
            for line in lines:
                if not line.strip():
                    continue
                (action, meta), = json.loads(line).items()
                doc_id = (
                    str(meta["_id"]) if "_id" in meta else uuid.uuid4().hex
                )
                payload = None
                if action != "delete":
                    payload = json.loads(next(lines))
                items.append(
                    {action: self._apply(store, action, doc_id, payload)}
                )

        errors = any("error" in next(iter(item.values())) for item in items)
        self.logger.debug(
            "memory-bulk",
            index=index,
            operations=len(items),
            errors=errors,
        )
        return {"errors": errors, "items": items}

    def _apply(
        self,
        store: dict[str, dict[str, Any]],
        action: str,
        doc_id: str,
        payload: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        injected = self.fail_ids.get(doc_id)
        if injected is not None:
            return {"_id": doc_id, "status": 400, "error": dict(injected)}

        if action == "index":
            created = doc_id not in store
            store[doc_id] = dict(payload or {})
            return {"_id": doc_id, "status": 201 if created else 200}
        if action == "update":
            current = store.get(doc_id)
            if current is None:
                return {
                    "_id": doc_id,
                    "status": 404,
                    "error": {
                        "type": "document_missing_exception",
                        "reason": f"[{doc_id}]: document missing",
                    },
                }
            current.update((payload or {}).get("doc", {}))
            return {"_id": doc_id, "status": 200}
        if action == "delete":
            existed = store.pop(doc_id, None) is not None
            return {"_id": doc_id, "status": 200 if existed else 404}
        raise ValueError(f"Unsupported bulk action: {action!r}")

    def search(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int | None = None,
    ) -> list[Hit]:
        with self._lock:
            if index not in self.indices:
                raise IndexMissingError(index)
            hits = [
                {"_id": doc_id, "_source": _project(doc, source)}
                for doc_id, doc in self.indices[index].items()
                if matches_query(doc_id, doc, query)
            ]
        return hits if size is None else hits[:size]

    def count(self, index: str, query: Query | None = None) -> int:
        return len(self.search(index, query, source=False))

    def scroll(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int = 1000,
    ) -> Iterator[list[Hit]]:
        hits = self.search(index, query, source=source)
        for start in range(0, len(hits), size):
            yield hits[start : start + size]
