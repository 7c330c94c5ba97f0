"""Journal storage and replay over a dedicated index."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable

from indexsync.adapters import slices
from indexsync.client import BulkClient, IndexMissingError
from indexsync.core.config import JournalSettings
from indexsync.core.logging import Logger, get_logger
from indexsync.errors import IndexNotRegisteredError, JournalStorageError
from indexsync.importing.bulk import BulkOperation, BulkRequest
from indexsync.instrumentation import (
    APPLY_JOURNAL,
    Instrumentation,
    instrumentation,
)
from indexsync.journal.entry import JournalEntry

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition, IndexRegistry

__all__ = ["Journal", "epoch_seconds"]

TimeLike = int | float | datetime | date


def _now() -> int:
    return int(time.time())


def epoch_seconds(value: TimeLike) -> int:
    """Normalize ``value`` to integer epoch seconds.

    Naive datetimes are taken as UTC.

    Example:
        >>> epoch_seconds(datetime(1970, 1, 2))
        86400
    """

    if isinstance(value, bool):
        raise TypeError("timestamps cannot be booleans")
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, date):
        return epoch_seconds(datetime(value.year, value.month, value.day))
    return int(value)


def _names(only: Iterable[Any] | None) -> list[str] | None:
    if only is None:
        return None
    if isinstance(only, str) or hasattr(only, "name"):
        only = [only]
    return [str(getattr(item, "name", item)) for item in only]


@dataclass(slots=True)
class Journal:
    """Append-only record of accepted import actions.

    Entries live as documents in ``settings.index_name`` and are written
    through the same :class:`BulkClient` the indices use. Replaying needs a
    ``registry`` to turn recorded index names back into definitions.
    """

    client: BulkClient
    settings: JournalSettings = field(default_factory=JournalSettings)
    registry: "IndexRegistry | None" = None
    events: Instrumentation = field(default_factory=lambda: instrumentation)
    clock: Callable[[], int | float] = _now
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(
                __name__,
                component="journal",
                journal=self.settings.index_name,
            )

    @property
    def index_name(self) -> str:
        return self.settings.index_name

    def timestamp(self) -> int:
        return epoch_seconds(self.clock())

    def exists(self) -> bool:
        return self.client.index_exists(self.index_name)

    def create(self) -> None:
        """Ensure the journal index exists; repeated calls are harmless."""

        try:
            if not self.client.index_exists(self.index_name):
                self.client.create_index(self.index_name)
                self.logger.info("journal-created")
        except Exception as exc:
            raise JournalStorageError(
                f"Unable to create journal index {self.index_name!r}: {exc}"
            ) from exc

    def append(self, entries: JournalEntry | Iterable[JournalEntry]) -> int:
        """Store ``entries`` and return how many were written."""

        if isinstance(entries, JournalEntry):
            entries = [entries]
        operations = [
            BulkOperation("index", None, entry.to_document())
            for entry in entries
        ]
        if not operations:
            return 0

        request = BulkRequest(
            client=self.client,
            index_name=self.index_name,
            options={"refresh": True},
            logger=self.logger,
        )
        try:
            failed = request.perform(operations)
        except Exception as exc:
            raise JournalStorageError(
                f"Unable to append to journal {self.index_name!r}: {exc}"
            ) from exc
        if failed:
            raise JournalStorageError(
                f"Journal {self.index_name!r} rejected {len(failed)} of "
                f"{len(operations)} entries: {failed[0].signature}"
            )
        self.logger.debug("journal-appended", entries=len(operations))
        return len(operations)

    def entries_since(
        self,
        since: TimeLike,
        only: Iterable[Any] | None = None,
    ) -> list[JournalEntry]:
        """Return entries with ``created_at >= since`` in creation order."""

        return self._entries(
            {"range": {"created_at": {"gte": epoch_seconds(since)}}},
            only,
        )

    def apply_changes_from(
        self,
        since: TimeLike,
        only: Iterable[Any] | None = None,
        *,
        retries: int | None = None,
        once: bool = False,
    ) -> dict[str, int]:
        """Replay journaled changes recorded since ``since``.

        Each stage groups new entries by index and type, imports the union of
        their ids once per group with journaling off, and moves ``since`` to
        the newest entry seen. Ids already replayed by the previous stage are
        skipped. Replay stops when a stage finds nothing new, after
        ``retries`` stages, or after the first stage when ``once`` is set.

        Returns the summed import stats of every replayed group.
        """

        limit = self.settings.apply_retries if retries is None else retries
        cursor = epoch_seconds(since)
        stats: Counter[str] = Counter()
        previous: list[JournalEntry] = []
        stage = 0

        while stage < limit:
            stage += 1
            entries = JournalEntry.group(self.entries_since(cursor, only))
            entries = JournalEntry.subtract(entries, previous)
            if not entries:
                break

            with self.events.instrument(
                APPLY_JOURNAL,
                stage=stage,
                index_list=sorted({entry.index_name for entry in entries}),
                entry_count=len(entries),
            ):
                for entry in entries:
                    stats.update(self._replay(entry))

            cursor = JournalEntry.recent_timestamp(entries) or cursor
            previous = entries
            if once:
                break

        self.logger.info("journal-applied", stages=stage, stats=dict(stats))
        return dict(stats)

    def clean_until(
        self,
        until: TimeLike | None = None,
        only: Iterable[Any] | None = None,
    ) -> int:
        """Delete entries created before ``until`` (all when ``None``)."""

        query = None
        if until is not None:
            query = {"range": {"created_at": {"lt": epoch_seconds(until)}}}
        query = self._scoped(query, only)

        try:
            total = self.client.count(self.index_name, query)
        except IndexMissingError:
            return 0
        if not total:
            return 0

        ids = [
            hit["_id"]
            for page in self.client.scroll(
                self.index_name,
                query,
                source=False,
                size=self.settings.clean_batch_size,
            )
            for hit in page
        ]
        request = BulkRequest(
            client=self.client,
            index_name=self.index_name,
            options={"refresh": True},
            logger=self.logger,
        )
        for batch in slices(ids, self.settings.clean_batch_size):
            operations = [BulkOperation("delete", i) for i in batch]
            failed = request.perform(operations)
            if failed:
                raise JournalStorageError(
                    f"Unable to clean journal {self.index_name!r}: "
                    f"{failed[0].signature}"
                )

        self.logger.info("journal-cleaned", deleted=len(ids), counted=total)
        return len(ids)

    def _entries(
        self,
        query: dict[str, Any],
        only: Iterable[Any] | None,
    ) -> list[JournalEntry]:
        scoped = self._scoped(query, only)
        try:
            pages = list(self.client.scroll(self.index_name, scoped))
        except IndexMissingError:
            return []
        entries = [
            JournalEntry.from_document(hit["_source"])
            for page in pages
            for hit in page
        ]
        entries.sort(key=lambda entry: entry.created_at)
        return entries

    @staticmethod
    def _scoped(
        query: dict[str, Any] | None,
        only: Iterable[Any] | None,
    ) -> dict[str, Any] | None:
        names = _names(only)
        if names is None:
            return query
        clauses: list[dict[str, Any]] = [{"terms": {"index_name": names}}]
        if query is not None:
            clauses.append(query)
        return {"bool": {"filter": clauses}}

    def _resolve(self, name: str) -> "IndexDefinition":
        if self.registry is None:
            raise IndexNotRegisteredError(
                f"Journal replay for {name!r} needs an index registry"
            )
        return self.registry.resolve(name)

    def _replay(self, entry: JournalEntry) -> dict[str, int]:
        from indexsync.importing.service import import_index

        index = self._resolve(entry.index_name)
        result = import_index(index, list(entry.object_ids), journal=False)
        if not result.success:
            self.logger.warning(
                "journal-replay-errors",
                index=entry.index_name,
                type=entry.type_name,
                errors=result.errors,
            )
        return result.stats
