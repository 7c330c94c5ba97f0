"""Tests for :mod:`indexsync.elastic` against a fake Elasticsearch client."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

pytest.importorskip("elasticsearch")

import indexsync.elastic as elastic  # noqa: E402
from indexsync.adapters import ObjectAdapter  # noqa: E402
from indexsync.client import BulkClient, IndexMissingError  # noqa: E402
from indexsync.elastic import ElasticsearchBulkClient  # noqa: E402
from indexsync.index import IndexDefinition  # noqa: E402


class _NotFound(Exception):
    pass


class _BadRequest(Exception):
    pass


class _FakeIndices:
    def __init__(self, existing: set[str]) -> None:
        self.existing = existing
        self.created: list[str] = []
        self.race = False

    def exists(self, *, index: str) -> bool:
        return index in self.existing

    def create(self, *, index: str) -> dict[str, Any]:
        if self.race:
            self.existing.add(index)
            raise _BadRequest("resource_already_exists_exception")
        self.created.append(index)
        self.existing.add(index)
        return {"acknowledged": True}


class _FakeElasticsearch:
    """Records calls and answers like a single-node cluster."""

    def __init__(self, existing: set[str] | None = None) -> None:
        self.indices = _FakeIndices(set(existing or ()))
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.documents: dict[str, list[dict[str, Any]]] = {}

    def bulk(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("bulk", kwargs))
        return {
            "errors": False,
            "items": [{"index": {"_id": "1", "status": 201}}],
        }

    def search(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("search", kwargs))
        if kwargs["index"] not in self.indices.existing:
            raise _NotFound("index_not_found_exception")
        hits = self.documents.get(kwargs["index"], [])[: kwargs["size"]]
        return {"hits": {"hits": hits}}

    def count(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("count", kwargs))
        if kwargs["index"] not in self.indices.existing:
            raise _NotFound("index_not_found_exception")
        return {"count": len(self.documents.get(kwargs["index"], []))}


def _build_client(
    monkeypatch: pytest.MonkeyPatch,
    existing: set[str] | None = None,
) -> tuple[ElasticsearchBulkClient, _FakeElasticsearch, list[dict[str, Any]]]:
    fake = _FakeElasticsearch(existing)
    scans: list[dict[str, Any]] = []

    def _scan(client: Any, **kwargs: Any):
        scans.append(kwargs)
        yield from fake.documents.get(kwargs["index"], [])

    monkeypatch.setattr(elastic, "scan", _scan)
    monkeypatch.setattr(elastic, "NotFoundError", _NotFound)
    monkeypatch.setattr(elastic, "BadRequestError", _BadRequest)
    client = ElasticsearchBulkClient(es=fake)  # type: ignore[arg-type]
    return client, fake, scans


def test_client_satisfies_bulk_protocol(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client, _, _ = _build_client(monkeypatch)

    assert isinstance(client, BulkClient)


def test_submit_bulk_forwards_ndjson_body(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client, fake, _ = _build_client(monkeypatch, {"users"})
    body = b'{"index":{"_id":"1"}}\n{"name":"A"}\n'

    response = client.submit_bulk("users", body, refresh=False)

    assert response["errors"] is False
    assert fake.calls == [
        ("bulk", {"index": "users", "operations": body, "refresh": False})
    ]


def test_scroll_pages_scan_results(monkeypatch: pytest.MonkeyPatch) -> None:
    client, fake, scans = _build_client(monkeypatch, {"users"})
    fake.documents["users"] = [
        {"_id": str(number), "_source": {"rank": number}}
        for number in range(5)
    ]

    pages = list(
        client.scroll("users", {"term": {"tag": "a"}}, source=["rank"], size=2)
    )

    assert [len(page) for page in pages] == [2, 2, 1]
    assert pages[0][0] == {"_id": "0", "_source": {"rank": 0}}
    (call,) = scans
    assert call["query"] == {
        "query": {"term": {"tag": "a"}},
        "_source": ["rank"],
    }
    assert call["scroll"] == "5m"
    assert call["size"] == 2


def test_missing_index_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _, _ = _build_client(monkeypatch)

    with pytest.raises(IndexMissingError):
        client.scroll("users")
    with pytest.raises(IndexMissingError):
        client.count("users")
    with pytest.raises(IndexMissingError):
        client.search("users", size=1)


def test_search_and_count_default_to_match_all(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client, fake, _ = _build_client(monkeypatch, {"users"})
    fake.documents["users"] = [{"_id": "1"}, {"_id": "2"}]

    hits = client.search("users", source=False, size=1)

    assert hits == [{"_id": "1", "_source": {}}]
    assert client.count("users") == 2
    assert fake.calls[0][1]["query"] == {"match_all": {}}
    assert fake.calls[0][1]["source"] is False


def test_create_index_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    client, fake, _ = _build_client(monkeypatch)

    client.create_index("users")
    client.create_index("users")
    fake.indices.race = True
    client.create_index("posts")

    assert fake.indices.created == ["users"]
    assert client.index_exists("posts")


def test_index_imports_through_elasticsearch_client(
    monkeypatch: pytest.MonkeyPatch,
    build_index: Callable[..., IndexDefinition],
) -> None:
    client, fake, _ = _build_client(monkeypatch)
    records = {"1": {"id": 1, "name": "A"}}
    index = build_index(
        "users",
        client=client,
        adapter=ObjectAdapter(
            loader=lambda ids: [records[i] for i in ids if i in records],
            all_ids=lambda: list(records),
        ),
    )

    assert index.import_(["1"])

    assert fake.indices.created == ["users"]
    ((name, call),) = [call for call in fake.calls if call[0] == "bulk"]
    assert call["index"] == "users"
    assert call["operations"].startswith(b'{"index":{"_id":"1"}}\n')
