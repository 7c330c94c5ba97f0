"""Debounced imports: ids collected into time chunks and imported together.

Each postponed batch lands in the chunk its arrival time rounds up to
(``latency`` second boundaries). The first batch of a chunk schedules one
job, due ``margin`` seconds after the boundary. Running a job imports the
union of every chunk at or before its boundary in a single call, so bursts
of notifications collapse into few imports.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterable

from indexsync.core.config import DelayedSettings
from indexsync.core.logging import Logger, get_logger

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexRegistry

__all__ = [
    "DelayedImportWorker",
    "DelayedJob",
    "TimeChunkScheduler",
    "chunk_time",
]

Fields = tuple[str, ...] | None


def chunk_time(now: float, latency: int) -> int:
    """Return the chunk boundary for an arrival at ``now``.

    Example:
        >>> chunk_time(1_000.5, 10)
        1010
    """

    scheduled = now + latency
    return int(scheduled - scheduled % latency)


@dataclass(frozen=True, slots=True)
class DelayedJob:
    """Import of every chunk of ``index_name`` up to ``at``."""

    index_name: str
    at: int
    run_at: int


@dataclass(slots=True)
class _Chunk:
    expires_at: float
    members: list[tuple[tuple[str, ...], Fields]] = field(default_factory=list)


def _merge(
    members: Iterable[tuple[tuple[str, ...], Fields]],
) -> tuple[list[str], Fields]:
    ids: dict[str, None] = {}
    fields: dict[str, None] = {}
    whole = False
    for member_ids, member_fields in members:
        ids.update(dict.fromkeys(member_ids))
        if member_fields is None:
            whole = True
        else:
            fields.update(dict.fromkeys(member_fields))
    if whole or not fields:
        return list(ids), None
    return list(ids), tuple(fields)


@dataclass(slots=True)
class TimeChunkScheduler:
    """In-process store of pending chunks and the jobs draining them.

    ``update_fields`` of ``None`` means full documents; it wins over any
    partial field list merged into the same job.
    """

    settings: DelayedSettings = field(default_factory=DelayedSettings)
    clock: Callable[[], float] = time.time
    logger: Logger | None = None
    _chunks: dict[str, dict[int, _Chunk]] = field(default_factory=dict)
    _jobs: list[DelayedJob] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="delayed")

    def postpone(
        self,
        index_name: str,
        ids: Iterable[str],
        update_fields: Iterable[str] | None = None,
    ) -> int:
        """Add ``ids`` to the current chunk of ``index_name``.

        Returns:
            The chunk boundary the ids were stored under.
        """

        now = self.clock()
        at = chunk_time(now, self.settings.latency)
        member = (
            tuple(ids),
            tuple(update_fields) if update_fields else None,
        )
        with self._lock:
            self._expire(now)
            chunks = self._chunks.setdefault(index_name, {})
            chunk = chunks.get(at)
            if chunk is None:
                chunk = chunks[at] = _Chunk(expires_at=now)
                self._jobs.append(
                    DelayedJob(index_name, at, at + self.settings.margin)
                )
            chunk.expires_at = now + self.settings.ttl
            chunk.members.append(member)
        self.logger.debug(
            "delayed-postponed",
            index=index_name,
            at=at,
            ids=len(member[0]),
        )
        return at

    def due(self, now: float | None = None) -> list[DelayedJob]:
        """Remove and return jobs whose run time has come."""

        current = self.clock() if now is None else now
        with self._lock:
            self._expire(current)
            ready = [job for job in self._jobs if job.run_at <= current]
            self._jobs = [job for job in self._jobs if job.run_at > current]
        return ready

    def take(self, index_name: str, at: int) -> tuple[list[str], Fields]:
        """Remove chunks of ``index_name`` up to ``at``; merge their ids."""

        with self._lock:
            chunks = self._chunks.get(index_name, {})
            ready = sorted(boundary for boundary in chunks if boundary <= at)
            members = [
                member
                for boundary in ready
                for member in chunks.pop(boundary).members
            ]
            if not chunks:
                self._chunks.pop(index_name, None)
        return _merge(members)

    def pending(self) -> dict[str, tuple[int, ...]]:
        with self._lock:
            return {
                name: tuple(sorted(chunks))
                for name, chunks in self._chunks.items()
            }

    def _expire(self, now: float) -> None:
        for name in list(self._chunks):
            chunks = self._chunks[name]
            expired = [
                boundary
                for boundary, chunk in chunks.items()
                if chunk.expires_at <= now
            ]
            for boundary in expired:
                del chunks[boundary]
                self.logger.warning(
                    "delayed-chunk-expired", index=name, at=boundary
                )
            if not chunks:
                del self._chunks[name]


@dataclass(slots=True)
class DelayedImportWorker:
    """Import the chunks a :class:`DelayedJob` covers."""

    scheduler: TimeChunkScheduler
    registry: "IndexRegistry"
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="delayed-worker")

    def perform(self, job: DelayedJob) -> bool:
        """Run ``job``; ``False`` when an earlier job already took its ids."""

        ids, fields = self.scheduler.take(job.index_name, job.at)
        if not ids:
            return False
        index = self.registry.resolve(job.index_name)
        options = {} if fields is None else {"update_fields": list(fields)}
        index.import_or_raise(ids, **options)
        self.logger.info(
            "delayed-imported",
            index=job.index_name,
            at=job.at,
            ids=len(ids),
        )
        return True

    def run_due(self, now: float | None = None) -> int:
        """Perform every due job; return how many imported anything."""

        return sum(self.perform(job) for job in self.scheduler.due(now))
