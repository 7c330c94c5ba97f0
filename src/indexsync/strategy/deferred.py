"""Out-of-process import messages, a reference queue and the worker."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError, field_validator

from indexsync.adapters import normalize_id
from indexsync.core.logging import Logger, get_logger
from indexsync.errors import IndexSyncError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition, IndexRegistry

__all__ = [
    "DeferredImportMessage",
    "DeferredImportWorker",
    "MemoryQueue",
    "MessageQueue",
    "enqueue_import",
]


class DeferredImportMessage(BaseModel):
    """Serialized request to import ``ids`` into ``index_name`` later.

    ``ids`` is ``None`` when the whole source should be imported.

    Example:
        >>> message = DeferredImportMessage(index_name="users", ids=[1, 2])
        >>> DeferredImportMessage.decode(message.encode()).ids
        ('1', '2')
    """

    index_name: str = Field(min_length=1)
    ids: tuple[str, ...] | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("ids", mode="before")
    @classmethod
    def _normalize_ids(cls, value: Any) -> Any:
        if value is None:
            return None
        return tuple(dict.fromkeys(normalize_id(item) for item in value))

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, payload: str | bytes) -> "DeferredImportMessage":
        try:
            return cls.model_validate_json(payload)
        except ValidationError as exc:
            raise IndexSyncError(
                f"Malformed deferred import message: {exc}"
            ) from exc


@runtime_checkable
class MessageQueue(Protocol):
    """Destination for deferred import payloads."""

    def enqueue(self, payload: str) -> None:
        """Accept an encoded :class:`DeferredImportMessage`."""


@dataclass(slots=True)
class MemoryQueue:
    """List-backed :class:`MessageQueue` drained explicitly by a worker."""

    payloads: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def enqueue(self, payload: str) -> None:
        with self._lock:
            self.payloads.append(payload)

    def __len__(self) -> int:
        with self._lock:
            return len(self.payloads)

    def messages(self) -> list[DeferredImportMessage]:
        with self._lock:
            pending = list(self.payloads)
        return [DeferredImportMessage.decode(payload) for payload in pending]

    def drain(self, worker: "DeferredImportWorker") -> int:
        """Hand every pending payload to ``worker``; return how many ran."""

        with self._lock:
            pending, self.payloads = self.payloads, []
        for payload in pending:
            worker.perform(payload)
        return len(pending)


def enqueue_import(
    index: "IndexDefinition",
    ids: Iterable[Any] | None,
    options: dict[str, Any] | None = None,
) -> DeferredImportMessage:
    """Serialize an import of ``ids`` and put it on ``index.queue``."""

    if index.queue is None:
        raise IndexSyncError(
            f"Index {index.name!r} has no message queue for deferred imports"
        )
    message = DeferredImportMessage(
        index_name=index.name,
        ids=None if ids is None else index.adapter.identify(ids),
        options=dict(options or {}),
    )
    index.queue.enqueue(message.encode())
    return message


@dataclass(slots=True)
class DeferredImportWorker:
    """Run deferred import messages against indices resolved by name."""

    registry: "IndexRegistry"
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="deferred-worker")

    def perform(self, payload: str | bytes | DeferredImportMessage) -> None:
        message = (
            payload
            if isinstance(payload, DeferredImportMessage)
            else DeferredImportMessage.decode(payload)
        )
        index = self.registry.resolve(message.index_name)
        selector = None if message.ids is None else list(message.ids)
        self.logger.info(
            "deferred-import",
            index=message.index_name,
            ids=None if selector is None else len(selector),
        )
        index.import_or_raise(selector, **message.options)
