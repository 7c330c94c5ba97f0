"""Error hierarchy raised by the synchronization engine."""

from __future__ import annotations

from typing import Mapping, Sequence

__all__ = [
    "ErrorMap",
    "IndexSyncError",
    "UndefinedUpdateStrategy",
    "StackUnderflow",
    "UnknownStrategyError",
    "ImportFailed",
    "JournalStorageError",
    "IndexNotRegisteredError",
]

ErrorMap = Mapping[str, Mapping[str, Sequence[str]]]
"""Grouped bulk errors: ``action -> error signature -> [ids]``."""


class IndexSyncError(RuntimeError):
    """Base error for :mod:`indexsync`."""


class UndefinedUpdateStrategy(IndexSyncError):
    """Raised when an index update arrives under the base strategy."""

    def __init__(self, index_name: str) -> None:
        self.index_name = index_name
        super().__init__(
            f"Index update for {index_name!r} requested without an update "
            "strategy; wrap the call in strategy('atomic'), "
            "strategy('urgent') or another policy."
        )


class StackUnderflow(IndexSyncError):
    """Raised when popping would remove the root strategy frame."""


class UnknownStrategyError(IndexSyncError):
    """Raised when a strategy name has no registered policy."""


class IndexNotRegisteredError(IndexSyncError):
    """Raised when an index name cannot be resolved from a registry."""


class JournalStorageError(IndexSyncError):
    """Raised when journal storage cannot be created or written."""


class ImportFailed(IndexSyncError):
    """Raised by ``import_or_raise`` when unresolved document errors remain."""

    def __init__(self, index_name: str, errors: ErrorMap) -> None:
        self.index_name = index_name
        self.errors = {
            action: {
                signature: list(ids) for signature, ids in grouped.items()
            }
            for action, grouped in errors.items()
        }
        super().__init__(self._render())

    def _render(self) -> str:
        lines = [f"Import failed for {self.index_name!r} with:"]
        for action, grouped in self.errors.items():
            lines.append(f"    {action.capitalize()} errors:")
            for signature, ids in grouped.items():
                lines.append(f"      `{signature}`")
                lines.append(f"        on {len(ids)} documents: {ids}")
        return "\n".join(lines)
