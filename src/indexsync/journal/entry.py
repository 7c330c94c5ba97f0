"""Journal entry model and the grouping helpers used during replay."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Sequence

from indexsync.adapters import DELETE, INDEX

__all__ = ["JournalEntry"]

_ACTIONS = (INDEX, DELETE)


def _as_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise TypeError(f"{field} must be an integer timestamp")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"{field} must be an integer timestamp (got {value!r})"
        ) from exc


@dataclass(frozen=True, slots=True)
class JournalEntry:
    """An accepted import action recorded for later replay.

    ``created_at`` holds integer epoch seconds.
    """

    index_name: str
    type_name: str
    action: str
    object_ids: tuple[str, ...]
    created_at: int

    def __post_init__(self) -> None:
        if self.action not in _ACTIONS:
            raise ValueError(f"Unsupported journal action: {self.action!r}")
        object.__setattr__(
            self,
            "object_ids",
            tuple(str(identifier) for identifier in self.object_ids),
        )
        object.__setattr__(
            self,
            "created_at",
            _as_int(self.created_at, field="created_at"),
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.index_name, self.type_name)

    @property
    def full_type_name(self) -> str:
        return f"{self.index_name}#{self.type_name}"

    def merge(self, other: "JournalEntry") -> "JournalEntry":
        """Union ids of two entries for the same index and type."""

        if other.key != self.key:
            raise ValueError(
                f"Cannot merge {other.full_type_name!r} "
                f"into {self.full_type_name!r}"
            )
        ids = tuple(dict.fromkeys((*self.object_ids, *other.object_ids)))
        return replace(
            self,
            object_ids=ids,
            created_at=max(self.created_at, other.created_at),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "index_name": self.index_name,
            "type_name": self.type_name,
            "action": self.action,
            "object_ids": list(self.object_ids),
            "created_at": self.created_at,
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "JournalEntry":
        return cls(
            index_name=str(document["index_name"]),
            type_name=str(document.get("type_name") or "default"),
            action=str(document["action"]),
            object_ids=tuple(document.get("object_ids") or ()),
            created_at=document["created_at"],
        )

    # ------------------------------------------------------------------
    # Replay helpers
    # ------------------------------------------------------------------
    @staticmethod
    def group(entries: Iterable["JournalEntry"]) -> list["JournalEntry"]:
        """Merge entries sharing ``(index_name, type_name)``, keeping order."""

        grouped: dict[tuple[str, str], JournalEntry] = {}
        for entry in entries:
            current = grouped.get(entry.key)
            if current is not None:
                entry = current.merge(entry)
            grouped[entry.key] = entry
        return list(grouped.values())

    @staticmethod
    def subtract(
        entries: Sequence["JournalEntry"],
        already: Sequence["JournalEntry"],
    ) -> list["JournalEntry"]:
        """Drop ids of ``entries`` that ``already`` covers for the key."""

        if not already:
            return list(entries)
        covered: dict[tuple[str, str], set[str]] = {}
        for entry in already:
            covered.setdefault(entry.key, set()).update(entry.object_ids)

        remaining: list[JournalEntry] = []
        for entry in entries:
            skip = covered.get(entry.key, set())
            ids = tuple(i for i in entry.object_ids if i not in skip)
            if ids:
                remaining.append(replace(entry, object_ids=ids))
        return remaining

    @staticmethod
    def recent_timestamp(entries: Iterable["JournalEntry"]) -> int | None:
        stamps = [entry.created_at for entry in entries]
        return max(stamps) if stamps else None
