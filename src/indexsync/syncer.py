"""Drift detection between the record source and the index."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from itertools import repeat
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from indexsync.adapters import normalize_id
from indexsync.client import IndexMissingError
from indexsync.core.config import ParallelValue
from indexsync.core.logging import Logger, get_logger
from indexsync.parallel import ParallelOptions, resolve_parallel

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = [
    "DATE_TYPE",
    "SyncDelta",
    "Syncer",
    "dates_equal",
    "typecast_date",
]

DATE_TYPE = "date"

Row = tuple[str, Any]


def typecast_date(value: Any) -> Any:
    """Coerce ISO-8601 strings and dates to aware datetimes.

    Strings without an offset, including the ``YYYY-MM-DD HH:MM:SS`` form
    databases tend to emit, are read as UTC. Anything unparseable is
    returned unchanged.

    Example:
        >>> typecast_date("2024-01-02 03:04:05.5").isoformat()
        '2024-01-02T03:04:05.500000+00:00'
    """

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return value
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def dates_equal(one: Any, two: Any) -> bool:
    """Compare timestamps allowing less than one millisecond of difference."""

    left, right = typecast_date(one), typecast_date(two)
    if not isinstance(left, datetime) or not isinstance(right, datetime):
        return left == right
    return abs((left - right).total_seconds()) < 0.001


def _is_date(value: Any) -> bool:
    return isinstance(value, (datetime, date))


@dataclass(frozen=True, slots=True)
class SyncDelta:
    """Ids the index lacks or holds stale copies of."""

    missing_ids: tuple[str, ...] = ()
    outdated_ids: tuple[str, ...] = ()

    @property
    def ids(self) -> list[str]:
        """Union of both sets, missing first, without duplicates."""

        return list(dict.fromkeys((*self.missing_ids, *self.outdated_ids)))

    def __bool__(self) -> bool:
        return bool(self.missing_ids or self.outdated_ids)


def _outdated_partition(
    field_type: str | None,
    source: Mapping[str, Any],
    rows: Sequence[Row],
) -> list[str]:
    outdated: list[str] = []
    for identifier, index_value in rows:
        if identifier not in source:
            continue
        source_value = source[identifier]
        kind = field_type
        if kind is None and _is_date(source_value):
            kind = DATE_TYPE
        if kind == DATE_TYPE:
            stale = not dates_equal(source_value, index_value)
        else:
            stale = source_value != index_value
        if stale:
            outdated.append(identifier)
    return outdated


def _fetch(syncer: "Syncer", side: str) -> list[Row]:
    if side == "source":
        return syncer.fetch_source_data()
    return syncer.fetch_index_data()


@dataclass(slots=True)
class Syncer:
    """Find documents missing from either side or outdated, then reimport.

    When the index tracks an ``outdated_sync_field`` (usually an update
    timestamp), values present on both sides are compared too; dates are
    equal when they differ by less than a millisecond. Only the import
    routine writes to the index.

    Args:
        index: Definition to synchronize.
        parallel: Pool used to fetch both sides, partition the outdated check
            and run the resulting import. Defaults to configuration.
        batch_size: Source rows per fetch round. Defaults to configuration.
    """

    index: "IndexDefinition"
    parallel: ParallelValue | None = None
    batch_size: int | None = None
    logger: Logger | None = None
    _data: tuple[list[Row], list[Row]] | None = field(
        default=None, init=False, repr=False
    )
    _delta: SyncDelta | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        settings = self.index.config.sync
        if self.parallel is None:
            self.parallel = settings.parallel
        if self.batch_size is None:
            self.batch_size = settings.batch_size
        if self.logger is None:
            self.logger = get_logger(
                __name__,
                component="syncer",
                index=self.index.name,
            )

    @property
    def pool(self) -> ParallelOptions | None:
        return resolve_parallel(self.parallel)

    @property
    def tracks_freshness(self) -> bool:
        return self.index.outdated_sync_field is not None

    def perform(self) -> int | None:
        """Reimport missing and outdated ids.

        Returns the number of ids imported, ``0`` when nothing drifted, or
        ``None`` when the import reported errors.
        """

        ids = self.delta().ids
        if not ids:
            self.logger.info("sync-clean")
            return 0

        result = self.index.import_(ids, parallel=self.parallel or False)
        self.logger.info(
            "sync-performed",
            ids=len(ids),
            success=result,
        )
        return len(ids) if result else None

    def delta(self) -> SyncDelta:
        if self._delta is None:
            self._delta = SyncDelta(
                missing_ids=tuple(self.missing_ids()),
                outdated_ids=tuple(self.outdated_ids()),
            )
        return self._delta

    def missing_ids(self) -> list[str]:
        """Ids present on one side only; source-only ones come first."""

        source, indexed = self._source_and_index()
        source_ids = [identifier for identifier, _ in source]
        index_ids = [identifier for identifier, _ in indexed]
        source_set, index_set = set(source_ids), set(index_ids)
        return [
            *(item for item in source_ids if item not in index_set),
            *(item for item in index_ids if item not in source_set),
        ]

    def outdated_ids(self) -> list[str]:
        if not self.tracks_freshness:
            return []
        source, indexed = self._source_and_index()
        if not source or not indexed:
            return []

        lookup = dict(source)
        field_type = self.index.outdated_sync_field_type
        pool = self.pool
        if pool is None:
            return _outdated_partition(field_type, lookup, indexed)

        size = max(1, math.ceil(len(indexed) / pool.workers))
        partitions = [
            indexed[start : start + size]
            for start in range(0, len(indexed), size)
        ]
        results = pool.map(
            _outdated_partition,
            repeat(field_type),
            repeat(lookup),
            partitions,
            name=f"sync-{self.index.name}",
        )
        return [identifier for chunk in results for identifier in chunk]

    def fetch_source_data(self) -> list[Row]:
        fields: list[str] = []
        if self.tracks_freshness:
            fields = [self.index.outdated_sync_field]
        rows: list[Row] = []
        for batch in self.index.adapter.resolve_fields(
            None,
            fields=fields,
            batch_size=self.batch_size,
        ):
            for row in batch:
                value = row[1] if fields else None
                rows.append((normalize_id(row[0]), value))
        return rows

    def fetch_index_data(self) -> list[Row]:
        field_name = self.index.outdated_sync_field
        source: list[str] | bool = [field_name] if field_name else False
        try:
            pages: Iterable[list[dict[str, Any]]] = self.index.client.scroll(
                self.index.name,
                None,
                source=source,
                size=self.batch_size,
            )
            rows: list[Row] = []
            for page in pages:
                for hit in page:
                    value = None
                    if field_name:
                        value = hit.get("_source", {}).get(field_name)
                    rows.append((normalize_id(hit["_id"]), value))
            return rows
        except IndexMissingError:
            return []

    def _source_and_index(self) -> tuple[list[Row], list[Row]]:
        if self._data is None:
            pool = self.pool
            if pool is None:
                self._data = (
                    self.fetch_source_data(),
                    self.fetch_index_data(),
                )
            else:
                source, indexed = pool.map(
                    _fetch,
                    repeat(self),
                    ("source", "index"),
                    name=f"sync-{self.index.name}",
                )
                self._data = (source, indexed)
            self.logger.debug(
                "sync-fetched",
                source=len(self._data[0]),
                index=len(self._data[1]),
            )
        return self._data
