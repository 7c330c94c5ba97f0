"""Top-level import entry point: linear and parallel passes."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from itertools import chain, repeat
from typing import TYPE_CHECKING, Any, Sequence

from indexsync.adapters import as_objects, slices
from indexsync.core.logging import get_logger
from indexsync.errors import (
    ErrorMap,
    JournalStorageError,
    UnknownStrategyError,
)
from indexsync.importing.bulk import BulkError, group_errors
from indexsync.importing.options import ImportOptions
from indexsync.importing.routine import ImportRoutine, WorkerResult
from indexsync.instrumentation import IMPORT_OBJECTS
from indexsync.parallel import ParallelOptions
from indexsync.strategy.deferred import enqueue_import

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = ["ImportResult", "import_index"]

_IMMEDIATE_STRATEGIES = frozenset({"urgent"})
_DEFERRED_STRATEGIES = frozenset({"deferred"})

logger = get_logger(__name__, component="import")


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Outcome of one top-level import call."""

    success: bool
    stats: dict[str, int] = field(default_factory=dict)
    errors: ErrorMap = field(default_factory=dict)
    enqueued: bool = False

    def __bool__(self) -> bool:
        return self.success


def import_index(
    index: "IndexDefinition",
    selector: Any = None,
    **options: Any,
) -> ImportResult:
    """Import ``selector`` (ids or objects, ``None`` for everything).

    A single id or object is treated as a one-element selector.

    Options override the index defaults, which override configuration; see
    :class:`ImportOptions`. Passing ``strategy="deferred"`` serializes the
    call onto the index queue instead of importing now.
    """

    if selector is not None:
        selector = as_objects(selector)
        if not selector:
            return ImportResult(success=True)

    strategy = options.pop("strategy", None)
    if strategy is not None and strategy not in _IMMEDIATE_STRATEGIES:
        if strategy not in _DEFERRED_STRATEGIES:
            raise UnknownStrategyError(
                f"Import cannot run with strategy {strategy!r}"
            )
        enqueue_import(index, selector, options)
        return ImportResult(success=True, enqueued=True)

    resolved = index.import_options(options)
    if resolved.journal:
        try:
            index.journal.create()
        except JournalStorageError:
            logger.exception("journal-create-failed", index=index.name)
    index.ensure_exists()

    with index.events.instrument(IMPORT_OBJECTS, index=index.name) as payload:
        pool = resolved.parallel_options()
        if pool is None:
            stats, errors = _import_linear(index, selector, resolved)
        else:
            stats, errors = _import_parallel(index, selector, resolved, pool)
        grouped = group_errors(errors)
        payload["import"] = dict(stats)
        if grouped:
            payload["errors"] = grouped

    return ImportResult(success=not grouped, stats=dict(stats), errors=grouped)


def _import_linear(
    index: "IndexDefinition",
    selector: Sequence[Any] | None,
    options: ImportOptions,
) -> tuple[Counter[str], list[BulkError]]:
    routine = ImportRoutine(index, options)
    groups = index.adapter.resolve(
        selector,
        batch_size=options.batch_size,
        direct_import=options.direct_import,
    )
    for group in groups:
        routine.process(group)
    routine.perform_leftovers()
    return routine.stats, routine.errors


def _import_parallel(
    index: "IndexDefinition",
    selector: Sequence[Any] | None,
    options: ImportOptions,
    pool: ParallelOptions,
) -> tuple[Counter[str], list[BulkError]]:
    batches = list(
        index.adapter.references(selector, batch_size=options.batch_size)
    )
    name = f"import-{index.name}"
    results: list[WorkerResult] = pool.map(
        _import_worker,
        repeat(index),
        repeat(options),
        batches,
        name=name,
    )

    stats: Counter[str] = Counter()
    errors: list[BulkError] = []
    for result in results:
        stats.update(result.stats)
        errors.extend(result.errors)

    leftovers = list(
        chain.from_iterable(result.leftovers for result in results)
    )
    if leftovers:
        retried = pool.map(
            _leftovers_worker,
            repeat(index),
            repeat(options),
            list(slices(leftovers, options.batch_size)),
            name=name,
        )
        errors.extend(chain.from_iterable(retried))

    logger.debug(
        "import-parallel-joined",
        index=index.name,
        workers=pool.workers,
        kind=pool.kind,
        batches=len(batches),
        leftovers=len(leftovers),
    )
    return stats, errors


def _import_worker(
    index: "IndexDefinition",
    options: ImportOptions,
    batch: Sequence[Any],
) -> WorkerResult:
    routine = ImportRoutine(index, options)
    groups = index.adapter.resolve(
        batch,
        batch_size=options.batch_size,
        direct_import=options.direct_import,
    )
    for group in groups:
        routine.process(group)
    return routine.result()


def _leftovers_worker(
    index: "IndexDefinition",
    options: ImportOptions,
    leftovers: Sequence[Any],
) -> list[BulkError]:
    return ImportRoutine(index, options).perform_leftovers(leftovers)
