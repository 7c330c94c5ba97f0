"""In-process event bus for import and journal replay notifications.

Every top-level import emits one ``import_objects`` event and every journal
replay stage emits one ``apply_journal`` event. Subscribers receive an
:class:`Event` after the instrumented block finishes, so payload keys added
inside the block are visible to them.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from indexsync.core.logging import Logger, get_logger

__all__ = [
    "IMPORT_OBJECTS",
    "APPLY_JOURNAL",
    "Event",
    "Subscriber",
    "Instrumentation",
    "LogSubscriber",
    "instrumentation",
]

IMPORT_OBJECTS = "import_objects"
APPLY_JOURNAL = "apply_journal"


@dataclass(frozen=True, slots=True)
class Event:
    """A finished instrumented block."""

    name: str
    payload: dict[str, Any]
    duration_ms: float


Subscriber = Callable[[Event], None]


@dataclass(slots=True)
class Instrumentation:
    """Thread-safe registry of event subscribers."""

    _subscribers: dict[str, list[Subscriber]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def subscribe(self, name: str, subscriber: Subscriber) -> Subscriber:
        with self._lock:
            self._subscribers.setdefault(name, []).append(subscriber)
        return subscriber

    def unsubscribe(self, name: str, subscriber: Subscriber) -> None:
        with self._lock:
            listeners = self._subscribers.get(name, [])
            if subscriber in listeners:
                listeners.remove(subscriber)

    @contextmanager
    def subscribed(
        self,
        name: str,
        subscriber: Subscriber,
    ) -> Iterator[Subscriber]:
        """Temporarily attach ``subscriber`` to ``name``."""

        self.subscribe(name, subscriber)
        try:
            yield subscriber
        finally:
            self.unsubscribe(name, subscriber)

    def publish(self, event: Event) -> None:
        with self._lock:
            listeners = tuple(self._subscribers.get(event.name, ()))
        for listener in listeners:
            listener(event)

    @contextmanager
    def instrument(
        self,
        name: str,
        **payload: Any,
    ) -> Iterator[dict[str, Any]]:
        """Time the enclosed block and publish ``name`` with ``payload``.

        The payload dictionary is yielded so the block can enrich it. Nothing
        is published when the block raises.
        """

        started = time.perf_counter()
        yield payload
        duration_ms = (time.perf_counter() - started) * 1000.0
        self.publish(
            Event(name=name, payload=payload, duration_ms=duration_ms)
        )


@dataclass(slots=True)
class LogSubscriber:
    """Render engine events through structlog at debug level."""

    logger: Logger = field(
        default_factory=lambda: get_logger(__name__, component="events")
    )

    def attach(self, bus: Instrumentation) -> "LogSubscriber":
        bus.subscribe(IMPORT_OBJECTS, self.import_objects)
        bus.subscribe(APPLY_JOURNAL, self.apply_journal)
        return self

    def import_objects(self, event: Event) -> None:
        payload = event.payload
        if not payload.get("import") and not payload.get("errors"):
            return
        self.logger.debug(
            "index-import",
            index=payload.get("index"),
            stats=payload.get("import"),
            errors=payload.get("errors"),
            duration_ms=round(event.duration_ms, 1),
        )

    def apply_journal(self, event: Event) -> None:
        payload = event.payload
        self.logger.debug(
            "journal-apply-stage",
            stage=payload.get("stage"),
            indices=payload.get("index_list"),
            entries=payload.get("entry_count"),
            duration_ms=round(event.duration_ms, 1),
        )


instrumentation = Instrumentation()
"""Default bus used by indices that are not given their own."""

LogSubscriber().attach(instrumentation)
