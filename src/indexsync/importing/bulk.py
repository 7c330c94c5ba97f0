"""Bulk request composition: byte-bounded chunking and error classification."""

from __future__ import annotations

import json
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Iterator, Mapping, Sequence

from indexsync.client import BulkClient
from indexsync.core.logging import Logger, get_logger

__all__ = [
    "ACTIONS",
    "REQUEST_OVERHEAD",
    "BulkOperation",
    "BulkChunk",
    "BulkError",
    "BulkRequest",
    "chunk_operations",
    "classify_errors",
    "dump_json",
    "group_errors",
    "serialize_operation",
]

ACTIONS = ("index", "update", "delete")

# Bytes reserved from ``bulk_size`` for request framing.
REQUEST_OVERHEAD = 1024


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def dump_json(value: Any) -> str:
    """Serialize ``value`` compactly, rendering dates as ISO-8601."""

    return json.dumps(value, default=_json_default, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class BulkOperation:
    """One document-level instruction of a bulk request."""

    action: str
    id: str | None
    document: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.action not in ACTIONS:
            raise ValueError(f"Unsupported bulk action: {self.action!r}")
        if self.id is not None:
            object.__setattr__(self, "id", str(self.id))
        elif self.action != "index":
            raise ValueError(f"{self.action} operations require an id")
        if self.action == "delete" and self.document is not None:
            raise ValueError("delete operations carry no document")


def serialize_operation(operation: BulkOperation) -> bytes:
    """Return the NDJSON lines for ``operation``, newline terminated."""

    meta = {} if operation.id is None else {"_id": operation.id}
    lines = [dump_json({operation.action: meta})]
    if operation.document is not None:
        lines.append(dump_json(operation.document))
    return ("\n".join(lines) + "\n").encode("utf-8")


@dataclass(frozen=True, slots=True)
class BulkChunk:
    """Operations sent together in one bulk request."""

    operations: tuple[BulkOperation, ...]
    body: bytes

    @property
    def size(self) -> int:
        return len(self.body)

    def __len__(self) -> int:
        return len(self.operations)


def chunk_operations(
    operations: Iterable[BulkOperation],
    limit: int | None = None,
) -> Iterator[BulkChunk]:
    """Split ``operations`` into chunks whose body fits in ``limit`` bytes.

    Without a ``limit`` everything goes into a single chunk. An operation that
    alone exceeds ``limit`` is emitted as its own chunk rather than dropped.

    Example:
        >>> ops = [BulkOperation("delete", str(i)) for i in range(3)]
        >>> [len(chunk) for chunk in chunk_operations(ops, limit=50)]
        [2, 1]
    """

    if limit is not None and limit <= 0:
        raise ValueError("chunk limit must be positive")

    current_ops: list[BulkOperation] = []
    current_body: list[bytes] = []
    current_size = 0

    for operation in operations:
        piece = serialize_operation(operation)
        if (
            limit is not None
            and current_ops
            and current_size + len(piece) > limit
        ):
            yield BulkChunk(tuple(current_ops), b"".join(current_body))
            current_ops, current_body, current_size = [], [], 0
        current_ops.append(operation)
        current_body.append(piece)
        current_size += len(piece)

    if current_ops:
        yield BulkChunk(tuple(current_ops), b"".join(current_body))


@dataclass(frozen=True, slots=True)
class BulkError:
    """A failed operation reported by the bulk endpoint."""

    action: str
    id: str
    error: Any

    @property
    def type(self) -> str | None:
        if isinstance(self.error, MappingABC):
            value = self.error.get("type")
            return None if value is None else str(value)
        return None

    @property
    def signature(self) -> str:
        """Stable text form of the error payload used for grouping."""

        if isinstance(self.error, MappingABC):
            return json.dumps(self.error, sort_keys=True, default=str)
        return str(self.error)


def classify_errors(items: Iterable[Mapping[str, Any]]) -> list[BulkError]:
    """Return the failed entries of a bulk response ``items`` list."""

    failed: list[BulkError] = []
    for item in items:
        for action, result in item.items():
            error = result.get("error")
            if error:
                doc_id = str(result.get("_id"))
                failed.append(BulkError(action=action, id=doc_id, error=error))
    return failed


def group_errors(
    errors: Iterable[BulkError],
) -> dict[str, dict[str, list[str]]]:
    """Group errors by action, then by signature, collecting ids."""

    grouped: dict[str, dict[str, list[str]]] = {}
    for error in errors:
        by_signature = grouped.setdefault(error.action, {})
        by_signature.setdefault(error.signature, []).append(error.id)
    return grouped


@dataclass(slots=True)
class BulkRequest:
    """Submit operations to one index, honoring an optional byte budget.

    Args:
        client: Store receiving the requests.
        index_name: Target index.
        bulk_size: Optional request size cap in bytes; 1 KiB of it is kept
            for request framing.
        options: Pass-through options for the client (``refresh``, timeouts).
    """

    client: BulkClient
    index_name: str
    bulk_size: int | None = None
    options: dict[str, Any] = field(default_factory=dict)
    logger: Logger | None = None
    submissions: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if (
            self.bulk_size is not None
            and self.bulk_size - REQUEST_OVERHEAD <= 0
        ):
            raise ValueError("bulk_size can't be less than 1 kilobyte")
        if self.logger is None:
            self.logger = get_logger(
                __name__,
                component="bulk-request",
                index=self.index_name,
            )

    @property
    def limit(self) -> int | None:
        if self.bulk_size is None:
            return None
        return self.bulk_size - REQUEST_OVERHEAD

    def chunks(
        self,
        operations: Sequence[BulkOperation],
    ) -> Iterator[BulkChunk]:
        return chunk_operations(operations, self.limit)

    def perform(self, operations: Sequence[BulkOperation]) -> list[BulkError]:
        """Submit ``operations`` chunk by chunk and return failed entries."""

        if not operations:
            return []

        failed: list[BulkError] = []
        for chunk in self.chunks(operations):
            response = self.client.submit_bulk(
                self.index_name,
                chunk.body,
                **self.options,
            )
            self.submissions += 1
            self.logger.debug(
                "bulk-chunk-submitted",
                operations=len(chunk),
                size=chunk.size,
                errors=bool(response.get("errors")),
            )
            if response.get("errors"):
                failed.extend(classify_errors(response.get("items") or ()))
        return failed
