"""Tests for :mod:`indexsync.importing`."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import pytest

from indexsync.client import MemoryIndexClient
from indexsync.errors import (
    ImportFailed,
    JournalStorageError,
    UnknownStrategyError,
)
from indexsync.index import IndexDefinition
from indexsync.instrumentation import Event
from indexsync.journal import Journal
from indexsync.strategy import DeferredImportMessage, MemoryQueue

STAMP = datetime(2024, 1, 1, 12, 0, 0)


def _build_record(identifier: int, name: str) -> dict[str, Any]:
    return {"id": identifier, "name": name, "updated_at": STAMP}


def _seed(records: dict[str, dict[str, Any]], count: int) -> list[str]:
    for number in range(1, count + 1):
        records[str(number)] = _build_record(number, f"name-{number}")
    return [str(number) for number in range(1, count + 1)]


def _imports(received: list[Event]) -> list[Event]:
    return [event for event in received if event.name == "import_objects"]


class _BrokenJournal:
    """Journal double whose storage always fails."""

    registry: Any = None

    def timestamp(self) -> int:
        return 1

    def create(self) -> None:
        raise JournalStorageError("journal offline")

    def append(self, entries: Any) -> int:
        raise JournalStorageError("journal offline")


def test_import_indexes_new_record_end_to_end(
    build_index: Callable[..., IndexDefinition],
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    index = build_index("users", fields={"name": None})
    records["1"] = _build_record(1, "A")

    result = index.import_result(["1"])

    assert result.success
    assert result.stats == {"index": 1}
    assert result.errors == {}
    assert client.documents("users") == {"1": {"name": "A"}}


def test_import_deletes_ids_missing_from_source(
    users: IndexDefinition,
    client: MemoryIndexClient,
) -> None:
    client.put("users", "9", {"name": "gone"})

    result = users.import_result(["9"])

    assert result.stats == {"delete": 1}
    assert client.documents("users") == {}


def test_import_whole_source_when_selector_is_none(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 3)

    assert users.import_() is True
    assert sorted(client.documents("users")) == ids


def test_import_twice_is_idempotent(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 3)

    users.import_(ids)
    first = client.documents("users")
    users.import_(ids)

    assert client.documents("users") == first


def test_empty_selector_is_a_no_op(
    users: IndexDefinition,
    client: MemoryIndexClient,
    received: list[Event],
) -> None:
    assert users.import_([]) is True
    assert client.requests == []
    assert received == []


def test_single_string_id_is_not_split_into_characters(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    records["12"] = _build_record(12, "twelve")
    client.put("users", 1, {"name": "one"})
    client.put("users", 2, {"name": "two"})

    result = users.import_result("12")

    assert result.stats == {"index": 1}
    assert sorted(client.documents("users"), key=int) == ["1", "2", "12"]


def test_single_int_id_is_imported(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    records["5"] = _build_record(5, "five")

    result = users.import_result(5)

    assert result.success
    assert result.stats == {"index": 1}
    assert client.documents("users")["5"]["name"] == "five"


def test_batch_size_controls_fetch_rounds(
    build_index: Callable[..., IndexDefinition],
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    index = build_index("users")
    ids = _seed(records, 5)

    assert index.import_(ids, batch_size=2)

    assert index.adapter.fetch_rounds == 3
    assert len(client.bulk_requests("users")) == 3


def test_bulk_size_splits_one_round_into_chunks(
    build_index: Callable[..., IndexDefinition],
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    index = build_index("users", fields={"name": None})
    ids = _seed(records, 2)

    # Each operation serializes to about 40 bytes; 60 usable bytes fit one.
    assert index.import_(ids, batch_size=2, bulk_size=1024 + 60)

    assert index.adapter.fetch_rounds == 1
    requests = client.bulk_requests("users")
    assert [record.operations for record in requests] == [
        [("index", "1")],
        [("index", "2")],
    ]


def test_update_failover_reindexes_missing_documents(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 3)
    client.put("users", "1", {"name": "stale", "updated_at": STAMP})

    result = users.import_result(ids, update_fields=["name"])

    assert result.success
    assert result.errors == {}
    assert [record.operations for record in client.bulk_requests("users")] == [
        [("update", "1"), ("update", "2"), ("update", "3")],
        [("index", "2"), ("index", "3")],
    ]
    documents = client.documents("users")
    assert documents["1"] == {
        "name": "name-1",
        "updated_at": STAMP.isoformat(),
    }
    assert documents["2"]["name"] == "name-2"
    assert documents["3"]["name"] == "name-3"


def test_update_without_failover_reports_missing_documents(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 2)
    client.put("users", "1", {"name": "stale"})

    result = users.import_result(
        ids,
        update_fields="name",
        update_failover=False,
    )

    assert not result.success
    assert list(result.errors) == ["update"]
    (affected,) = result.errors["update"].values()
    assert affected == ["2"]
    assert len(client.bulk_requests("users")) == 1


def test_import_or_raise_carries_grouped_errors(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 3)
    failure = {"type": "mapper_parsing_exception", "reason": "failed to parse"}
    client.fail_ids["2"] = failure

    assert users.import_(ids) is False
    with pytest.raises(ImportFailed) as excinfo:
        users.import_or_raise(ids)

    error = excinfo.value
    assert error.index_name == "users"
    assert list(error.errors) == ["index"]
    assert list(error.errors["index"].values()) == [["2"]]
    assert "Index errors" in str(error)
    assert "on 1 documents: ['2']" in str(error)
    assert sorted(client.documents("users")) == ["1", "3"]


def test_import_emits_single_aggregated_event(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
    received: list[Event],
) -> None:
    ids = _seed(records, 4)
    client.fail_ids["4"] = {"type": "version_conflict", "reason": "conflict"}

    users.import_(ids, batch_size=2)

    (event,) = _imports(received)
    assert event.payload["index"] == "users"
    assert event.payload["import"] == {"index": 4}
    assert list(event.payload["errors"]["index"].values()) == [["4"]]


def test_parallel_import_matches_linear_result(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 7)

    result = users.import_result(ids, batch_size=2, parallel=3)

    assert result.success
    assert result.stats == {"index": 7}
    assert sorted(client.documents("users")) == sorted(ids)
    assert len(client.bulk_requests("users")) == 4


def test_parallel_failover_runs_over_all_leftovers(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    ids = _seed(records, 4)
    client.put("users", "1", {"name": "stale"})

    result = users.import_result(
        ids,
        batch_size=1,
        update_fields=["name"],
        parallel={"in_threads": 2},
    )

    assert result.success
    operations = [
        op
        for record in client.bulk_requests("users")
        for op in record.operations
    ]
    updates = [op for op in operations if op[0] == "update"]
    reindexed = sorted(
        identifier for action, identifier in operations if action == "index"
    )
    assert len(updates) == 4
    assert reindexed == ["2", "3", "4"]
    assert sorted(client.documents("users")) == ids


def test_direct_import_skips_reload(
    users: IndexDefinition,
    client: MemoryIndexClient,
) -> None:
    objects = [_build_record(5, "direct")]

    assert users.import_(objects, direct_import=True)

    assert users.adapter.fetch_rounds == 0
    assert client.documents("users")["5"]["name"] == "direct"


def test_journal_records_accepted_actions(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
    journal: Journal,
) -> None:
    ids = _seed(records, 2)
    client.put("users", "7", {"name": "gone"})

    assert users.import_([*ids, "7"], journal=True)

    entries = journal.entries_since(0)
    assert {(entry.action, entry.object_ids) for entry in entries} == {
        ("index", ("1", "2")),
        ("delete", ("7",)),
    }
    assert {entry.created_at for entry in entries} == {journal.timestamp()}


def test_journal_failure_does_not_fail_import(
    build_index: Callable[..., IndexDefinition],
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
) -> None:
    index = build_index("users", journal_store=_BrokenJournal())
    ids = _seed(records, 2)

    assert index.import_(ids, journal=True)
    assert sorted(client.documents("users")) == ids


def test_deferred_strategy_enqueues_instead_of_importing(
    users: IndexDefinition,
    records: dict[str, dict[str, Any]],
    client: MemoryIndexClient,
    queue: MemoryQueue,
) -> None:
    ids = _seed(records, 2)

    result = users.import_result(ids, strategy="deferred", refresh=False)

    assert result.success and result.enqueued
    assert client.requests == []
    (message,) = queue.messages()
    assert message == DeferredImportMessage(
        index_name="users",
        ids=ids,
        options={"refresh": False},
    )


def test_unknown_strategy_option_is_rejected(users: IndexDefinition) -> None:
    with pytest.raises(UnknownStrategyError):
        users.import_(["1"], strategy="sometime")
