"""Shared pytest fixtures for the synchronization engine."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

import pytest

from indexsync.adapters import ObjectAdapter
from indexsync.client import MemoryIndexClient
from indexsync.core.config import (
    AppConfig,
    load_config,
    load_packaged_defaults,
)
from indexsync.index import IndexDefinition, IndexRegistry
from indexsync.instrumentation import Event, Instrumentation
from indexsync.journal import Journal
from indexsync.strategy import MemoryQueue, StrategyStack, use_stack

Records = dict[str, dict[str, Any]]


@dataclass
class FakeClock:
    """Settable epoch-seconds clock for journal timestamps."""

    now: int = 1_700_000_000

    def __call__(self) -> int:
        return self.now


def make_adapter(records: Records) -> ObjectAdapter:
    """Adapter reading from ``records`` at call time."""

    return ObjectAdapter(
        loader=lambda ids: [dict(records[i]) for i in ids if i in records],
        all_ids=lambda: list(records),
    )


@pytest.fixture
def records() -> Records:
    return {}


@pytest.fixture
def client() -> MemoryIndexClient:
    return MemoryIndexClient()


@pytest.fixture
def adapter(records: Records) -> ObjectAdapter:
    return make_adapter(records)


@pytest.fixture
def events() -> Instrumentation:
    return Instrumentation()


@pytest.fixture
def registry() -> IndexRegistry:
    return IndexRegistry()


@pytest.fixture
def config() -> AppConfig:
    """Packaged defaults only, unaffected by ``INDEXSYNC_*`` variables."""

    return load_config(defaults=load_packaged_defaults())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture
def journal(
    client: MemoryIndexClient,
    config: AppConfig,
    registry: IndexRegistry,
    events: Instrumentation,
    clock: FakeClock,
) -> Journal:
    return Journal(
        client=client,
        settings=config.journal,
        registry=registry,
        events=events,
        clock=clock,
    )


@pytest.fixture
def build_index(
    adapter: ObjectAdapter,
    client: MemoryIndexClient,
    events: Instrumentation,
    registry: IndexRegistry,
    config: AppConfig,
    journal: Journal,
    queue: MemoryQueue,
) -> Callable[..., IndexDefinition]:
    """Return a factory building indices wired to the shared fixtures."""

    def _build(name: str = "users", **overrides: Any) -> IndexDefinition:
        settings: dict[str, Any] = {
            "adapter": adapter,
            "client": client,
            "fields": {"name": None, "updated_at": None},
            "events": events,
            "registry": registry,
            "config": config,
            "journal_store": journal,
            "queue": queue,
        }
        settings.update(overrides)
        return IndexDefinition(name=name, **settings)

    return _build


@pytest.fixture
def users(build_index: Callable[..., IndexDefinition]) -> IndexDefinition:
    return build_index("users", outdated_sync_field="updated_at")


@pytest.fixture
def received(events: Instrumentation) -> Iterator[list[Event]]:
    """Collect every ``import_objects`` and ``apply_journal`` event."""

    captured: list[Event] = []
    with events.subscribed("import_objects", captured.append):
        with events.subscribed("apply_journal", captured.append):
            yield captured


@pytest.fixture(autouse=True)
def strategy_stack() -> Iterator[StrategyStack]:
    """Give every test its own strategy stack rooted at ``base``."""

    with use_stack(StrategyStack(root="base")) as stack:
        yield stack
