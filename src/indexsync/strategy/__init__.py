"""Strategy stack and update policies."""

from __future__ import annotations

from indexsync.strategy.deferred import (
    DeferredImportMessage,
    DeferredImportWorker,
    MemoryQueue,
    MessageQueue,
    enqueue_import,
)
from indexsync.strategy.delayed import (
    DelayedImportWorker,
    DelayedJob,
    TimeChunkScheduler,
)
from indexsync.strategy.policies import (
    Atomic,
    AtomicNoRefresh,
    Base,
    Bypass,
    Deferred,
    Delayed,
    Policy,
    Urgent,
)
from indexsync.strategy.registry import StrategyRegistry, strategies
from indexsync.strategy.stack import (
    StrategyStack,
    current_stack,
    strategy,
    use_stack,
)

__all__ = [
    "Atomic",
    "AtomicNoRefresh",
    "Base",
    "Bypass",
    "Deferred",
    "DeferredImportMessage",
    "DeferredImportWorker",
    "Delayed",
    "DelayedImportWorker",
    "DelayedJob",
    "MemoryQueue",
    "MessageQueue",
    "Policy",
    "StrategyRegistry",
    "StrategyStack",
    "TimeChunkScheduler",
    "current_stack",
    "enqueue_import",
    "strategies",
    "strategy",
    "use_stack",
]
