"""Tests for :mod:`indexsync.index`."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from indexsync.client import MemoryIndexClient
from indexsync.errors import IndexNotRegisteredError
from indexsync.importing.bulk import BulkOperation
from indexsync.index import IndexDefinition, IndexRegistry
from indexsync.journal import Journal


@dataclass
class _Address:
    city: str


@dataclass
class _User:
    id: int
    name: str
    address: _Address | None = None


def test_compose_reads_dotted_paths_and_callables(
    build_index: Callable[..., IndexDefinition],
) -> None:
    index = build_index(
        fields={
            "name": None,
            "city": "address.city",
            "shout": lambda user: user.name.upper(),
        }
    )
    user = _User(1, "ann", _Address("Oslo"))

    assert index.compose(user) == {
        "name": "ann",
        "city": "Oslo",
        "shout": "ANN",
    }
    assert index.compose(_User(2, "bob")) == {
        "name": "bob",
        "city": None,
        "shout": "BOB",
    }
    assert index.compose(user, fields=["city"]) == {"city": "Oslo"}


def test_compose_without_layout_indexes_public_attributes(
    build_index: Callable[..., IndexDefinition],
) -> None:
    index = build_index(fields=None)

    class _Plain:
        def __init__(self) -> None:
            self.id = 3
            self.name = "cy"
            self._secret = "hidden"

    assert index.compose(_Plain()) == {"id": 3, "name": "cy"}
    assert index.compose(_User(1, "ann"), fields=["name"]) == {"name": "ann"}
    with pytest.raises(TypeError):
        index.compose(42)


def test_blank_index_name_is_rejected(
    build_index: Callable[..., IndexDefinition],
) -> None:
    with pytest.raises(ValueError):
        build_index("  ")


def test_registry_rejects_duplicates_and_resolves_by_name(
    build_index: Callable[..., IndexDefinition],
    registry: IndexRegistry,
) -> None:
    users = build_index("users")
    accounts = build_index("accounts")

    assert registry.names() == ("accounts", "users")
    assert registry.resolve("users") is users
    with pytest.raises(ValueError, match="already registered"):
        build_index("users")

    replacement = build_index("accounts", registry=None)
    registry.register(replacement, replace=True)
    assert registry.resolve("accounts") is replacement
    assert registry.resolve("accounts") is not accounts

    snapshot = registry.snapshot()
    with pytest.raises(TypeError):
        snapshot["other"] = users  # type: ignore[index]

    assert registry.unregister("users") is users
    assert "users" not in registry
    with pytest.raises(IndexNotRegisteredError):
        registry.resolve("users")


def test_bulk_journals_submitted_operations(
    users: IndexDefinition,
    client: MemoryIndexClient,
    journal: Journal,
) -> None:
    client.put("users", 2, {"name": "gone"})

    errors = users.bulk(
        [
            BulkOperation("index", "1", {"name": "A"}),
            BulkOperation("delete", "2"),
        ],
        journal=True,
    )

    assert errors == []
    assert client.documents("users") == {"1": {"name": "A"}}
    recorded = {
        (entry.action, entry.object_ids)
        for entry in journal.entries_since(0)
    }
    assert recorded == {("index", ("1",)), ("delete", ("2",))}


def test_bulk_skips_journal_by_default(
    users: IndexDefinition,
    journal: Journal,
) -> None:
    users.bulk([BulkOperation("index", "1", {"name": "A"})])

    assert journal.entries_since(0) == []


def test_journal_property_is_built_lazily(
    build_index: Callable[..., IndexDefinition],
    registry: IndexRegistry,
    config: Any,
) -> None:
    index = build_index(journal_store=None)

    journal = index.journal

    assert journal is index.journal
    assert journal.registry is registry
    assert journal.index_name == config.journal.index_name
