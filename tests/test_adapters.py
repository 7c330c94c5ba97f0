"""Tests for :mod:`indexsync.adapters` and :mod:`indexsync.client`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from indexsync.adapters import (
    ActionGroup,
    ObjectAdapter,
    as_objects,
    object_id,
    slices,
)
from indexsync.client import (
    IndexMissingError,
    MemoryIndexClient,
    matches_query,
)


@dataclass
class _User:
    id: int
    name: str
    banned: bool = False


def _build_adapter(users: dict[str, _User], **kwargs: Any) -> ObjectAdapter:
    return ObjectAdapter(
        loader=lambda ids: [users[i] for i in ids if i in users],
        all_ids=lambda: list(users),
        **kwargs,
    )


def test_object_id_handles_ids_objects_and_mappings() -> None:
    assert object_id(5) == "5"
    assert object_id(_User(7, "A")) == "7"
    assert object_id({"uid": 3}, attribute="uid") == "3"
    assert object_id({"name": "anonymous"}) is None


def test_as_objects_keeps_single_references_whole() -> None:
    user = _User(1, "A")

    assert as_objects(None) == []
    assert as_objects("12") == ["12"]
    assert as_objects(12) == [12]
    assert as_objects({"id": 1}) == [{"id": 1}]
    assert as_objects(user) == [user]
    assert as_objects(("1", 2)) == ["1", 2]
    assert as_objects(str(n) for n in range(2)) == ["0", "1"]


def test_slices_rejects_empty_size() -> None:
    assert list(slices(range(5), 2)) == [[0, 1], [2, 3], [4]]
    with pytest.raises(ValueError):
        list(slices([1], 0))


def test_resolve_splits_existing_and_absent_ids() -> None:
    users = {"1": _User(1, "A"), "2": _User(2, "B")}
    adapter = _build_adapter(users)

    groups = list(adapter.resolve(["1", "3", 2, "1"], batch_size=10))

    assert groups == [
        ActionGroup(index=[users["1"], users["2"]], delete=["3"]),
    ]
    assert adapter.fetch_rounds == 1


def test_resolve_honors_delete_predicate() -> None:
    users = {"1": _User(1, "A", banned=True), "2": _User(2, "B")}
    adapter = _build_adapter(users, delete_if=lambda user: user.banned)

    (group,) = adapter.resolve(None, batch_size=10)

    assert group.index == (users["2"],)
    assert group.delete == (users["1"],)
    assert dict(group.items()) == {
        "index": (users["2"],),
        "delete": (users["1"],),
    }


def test_resolve_fields_yields_id_and_values() -> None:
    users = {"1": _User(1, "A"), "2": _User(2, "B")}
    adapter = _build_adapter(users)

    batches = list(adapter.resolve_fields(None, fields=["name"], batch_size=1))

    assert batches == [[("1", "A")], [("2", "B")]]


def test_memory_client_reports_missing_update_target() -> None:
    client = MemoryIndexClient()
    body = (
        b'{"update":{"_id":"1"}}\n{"doc":{"name":"A"}}\n'
        b'{"delete":{"_id":"2"}}\n'
    )

    response = client.submit_bulk("users", body)

    assert response["errors"] is True
    update, delete = response["items"]
    assert update["update"]["error"]["type"] == "document_missing_exception"
    assert delete["delete"]["status"] == 404
    assert "error" not in delete["delete"]


def test_memory_client_search_and_scroll() -> None:
    client = MemoryIndexClient()
    for number in range(5):
        tag = "even" if number % 2 == 0 else "odd"
        client.put("users", number, {"rank": number, "tag": tag})

    query = {
        "bool": {
            "filter": [
                {"term": {"tag": "even"}},
                {"range": {"rank": {"gte": 2}}},
            ]
        }
    }

    assert [hit["_id"] for hit in client.search("users", query)] == ["2", "4"]
    assert client.count("users", {"ids": {"values": [1, 3, 9]}}) == 2
    assert [len(page) for page in client.scroll("users", size=2)] == [2, 2, 1]
    with pytest.raises(IndexMissingError):
        client.search("accounts")


def test_matches_query_supports_must_not_and_should() -> None:
    source = {"tag": "a", "rank": 3}
    query = {
        "bool": {
            "must_not": [{"term": {"tag": "b"}}],
            "should": [{"terms": {"rank": [1, 3]}}, {"match_all": {}}],
        }
    }

    assert matches_query("1", source, query)
    excluded = {"bool": {"must_not": [{"match_all": {}}]}}
    assert not matches_query("1", source, excluded)
