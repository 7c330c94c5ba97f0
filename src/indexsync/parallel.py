"""Worker pool selection shared by parallel import and sync."""

from __future__ import annotations

import os
from collections.abc import Mapping as MappingABC
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
)
from dataclasses import dataclass
from typing import Any, Callable, Iterable, TypeVar

__all__ = ["ParallelOptions", "resolve_parallel"]

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ParallelOptions:
    """Resolved pool shape: worker count and threads versus processes.

    Process pools pickle the mapped callable and its arguments, so index
    definitions handed to them must be picklable.
    """

    workers: int
    processes: bool = False

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    @property
    def kind(self) -> str:
        return "processes" if self.processes else "threads"

    def executor(self, *, name: str = "indexsync") -> Executor:
        if self.processes:
            return ProcessPoolExecutor(max_workers=self.workers)
        return ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix=name,
        )

    def map(
        self,
        fn: Callable[..., T],
        *iterables: Iterable[Any],
        name: str = "indexsync",
    ) -> list[T]:
        """Run ``fn`` over ``iterables`` and wait for every result.

        Results keep input order. The first worker exception propagates once
        all submitted work has been joined.
        """

        with self.executor(name=name) as executor:
            return list(executor.map(fn, *iterables))


def _cpu_count() -> int:
    return max(1, os.cpu_count() or 1)


def resolve_parallel(value: Any) -> ParallelOptions | None:
    """Translate a ``parallel`` option into :class:`ParallelOptions`.

    ``False``/``None`` disable parallelism, ``True`` uses one thread per CPU,
    an integer sets the thread count, and ``{"in_threads": n}`` or
    ``{"in_processes": n}`` select the pool kind explicitly.

    Example:
        >>> resolve_parallel({"in_processes": 2})
        ParallelOptions(workers=2, processes=True)
        >>> resolve_parallel(False) is None
        True
    """

    if value is None or value is False:
        return None
    if isinstance(value, ParallelOptions):
        return value
    if value is True:
        return ParallelOptions(workers=_cpu_count())
    if isinstance(value, int):
        return ParallelOptions(workers=value)
    if isinstance(value, MappingABC):
        if "in_processes" in value:
            return ParallelOptions(
                workers=int(value["in_processes"]), processes=True
            )
        if "in_threads" in value:
            return ParallelOptions(workers=int(value["in_threads"]))
        if not value:
            return ParallelOptions(workers=_cpu_count())
    raise ValueError(f"Unsupported parallel option: {value!r}")
