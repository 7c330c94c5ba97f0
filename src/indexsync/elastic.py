"""Elasticsearch-backed :class:`~indexsync.client.BulkClient`.

Requires the ``elasticsearch`` extra. Bulk bodies built by
:mod:`indexsync.importing.bulk` are already NDJSON, so they are forwarded
unchanged; scrolling goes through :func:`elasticsearch.helpers.scan`.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import islice
from typing import Any, Iterator, Mapping, Sequence

from elasticsearch import BadRequestError, Elasticsearch, NotFoundError
from elasticsearch.helpers import scan

from indexsync.client import Hit, IndexMissingError, Query
from indexsync.core.logging import Logger, get_logger

__all__ = ["ElasticsearchBulkClient"]

_MATCH_ALL: dict[str, Any] = {"match_all": {}}


def _body(response: Any) -> Any:
    """Unwrap an ``ObjectApiResponse`` into its decoded body."""

    return getattr(response, "body", response)


def _hit(raw: Mapping[str, Any]) -> Hit:
    return {"_id": raw["_id"], "_source": dict(raw.get("_source") or {})}


@dataclass(slots=True)
class ElasticsearchBulkClient:
    """Run engine requests against an Elasticsearch cluster.

    Args:
        es: Configured ``elasticsearch.Elasticsearch`` client.
        keep_alive: Scroll context lifetime passed to scroll requests.

    Example:
        >>> client = ElasticsearchBulkClient.from_hosts(
        ...     "http://localhost:9200"
        ... )  # doctest: +SKIP
    """

    es: Elasticsearch
    keep_alive: str = "5m"
    logger: Logger | None = None

    def __post_init__(self) -> None:
        if self.logger is None:
            self.logger = get_logger(__name__, component="elasticsearch")

    @classmethod
    def from_hosts(
        cls,
        hosts: str | Sequence[str],
        **client_options: Any,
    ) -> "ElasticsearchBulkClient":
        return cls(es=Elasticsearch(hosts, **client_options))

    def submit_bulk(
        self,
        index: str,
        body: bytes,
        **options: Any,
    ) -> Mapping[str, Any]:
        response = _body(self.es.bulk(index=index, operations=body, **options))
        self.logger.debug(
            "elasticsearch-bulk",
            index=index,
            operations=len(response.get("items", ())),
            errors=bool(response.get("errors")),
        )
        return response

    def search(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int | None = None,
    ) -> list[Hit]:
        if size is None:
            pages = self.scroll(index, query, source=source)
            return [hit for page in pages for hit in page]
        try:
            response = _body(
                self.es.search(
                    index=index,
                    query=dict(query or _MATCH_ALL),
                    source=_source(source),
                    size=size,
                )
            )
        except NotFoundError as exc:
            raise IndexMissingError(index) from exc
        return [_hit(raw) for raw in response["hits"]["hits"]]

    def count(self, index: str, query: Query | None = None) -> int:
        try:
            response = _body(
                self.es.count(index=index, query=dict(query or _MATCH_ALL))
            )
        except NotFoundError as exc:
            raise IndexMissingError(index) from exc
        return int(response["count"])

    def scroll(
        self,
        index: str,
        query: Query | None = None,
        *,
        source: Sequence[str] | bool = True,
        size: int = 1000,
    ) -> Iterator[list[Hit]]:
        if not self.index_exists(index):
            raise IndexMissingError(index)
        hits = scan(
            self.es,
            index=index,
            query={
                "query": dict(query or _MATCH_ALL),
                "_source": _source(source),
            },
            scroll=self.keep_alive,
            size=size,
        )
        return self._pages(hits, size)

    @staticmethod
    def _pages(
        hits: Iterator[Mapping[str, Any]],
        size: int,
    ) -> Iterator[list[Hit]]:
        while True:
            page = [_hit(raw) for raw in islice(hits, size)]
            if not page:
                return
            yield page

    def index_exists(self, index: str) -> bool:
        return bool(self.es.indices.exists(index=index))

    def create_index(self, index: str) -> None:
        if self.index_exists(index):
            return
        try:
            self.es.indices.create(index=index)
        except BadRequestError:
            # Lost a creation race; anything else is a real failure.
            if not self.index_exists(index):
                raise
            return
        self.logger.info("elasticsearch-index-created", index=index)


def _source(source: Sequence[str] | bool) -> bool | list[str]:
    return source if isinstance(source, bool) else list(source)
