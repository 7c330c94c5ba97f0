"""Per-task stack of strategy frames."""

from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Hashable, Iterator, TypeVar

from indexsync.core.config import default_config
from indexsync.core.logging import Logger, get_logger
from indexsync.errors import StackUnderflow
from indexsync.strategy.policies import Policy
from indexsync.strategy.registry import StrategyRegistry, strategies

if TYPE_CHECKING:  # pragma: no cover - typing only
    from indexsync.index import IndexDefinition

__all__ = ["StrategyStack", "current_stack", "strategy", "use_stack"]

T = TypeVar("T")


@dataclass(slots=True)
class StrategyStack:
    """Stack of policies where only the top frame handles updates.

    The root frame, built from ``root`` (configuration when unset), can never
    be popped. Popping a frame calls its ``leave`` hook, which is where
    buffering policies flush.

    Example:
        >>> stack = StrategyStack(root="base")
        >>> with stack.wrap("bypass"):
        ...     stack.current.name
        'bypass'
        >>> stack.current.name
        'base'
    """

    root: str | None = None
    registry: StrategyRegistry = field(default_factory=lambda: strategies)
    logger: Logger | None = None
    _frames: list[Policy] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.root is None:
            self.root = default_config().strategy.root
        if self.logger is None:
            self.logger = get_logger(__name__, component="strategy-stack")
        self._frames.append(self.registry.create(self.root))

    @property
    def current(self) -> Policy:
        return self._frames[-1]

    @property
    def depth(self) -> int:
        return len(self._frames)

    def push(self, policy: str | Policy) -> Policy:
        if isinstance(policy, str):
            frame = self.registry.create(policy)
        else:
            frame = policy
        self._frames.append(frame)
        self.logger.debug(
            "strategy-push", depth=self.depth, strategy=frame.name
        )
        return frame

    def pop(self) -> Policy:
        if len(self._frames) == 1:
            raise StackUnderflow("Can't pop root strategy")
        self.logger.debug(
            "strategy-pop", depth=self.depth, strategy=self.current.name
        )
        frame = self._frames.pop()
        frame.leave()
        return frame

    @contextmanager
    def wrap(self, policy: str | Policy) -> Iterator[Policy]:
        """Push ``policy`` for the block and pop it on every exit path."""

        frame = self.push(policy)
        try:
            yield frame
        finally:
            self.pop()

    def run(
        self,
        policy: str | Policy,
        block: Callable[..., T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Call ``block`` inside :meth:`wrap` and return its value."""

        with self.wrap(policy):
            return block(*args, **kwargs)

    def update(
        self,
        index: "IndexDefinition",
        objects: Any,
        **options: Any,
    ) -> None:
        self.current.update(index, objects, **options)


@dataclass(frozen=True, slots=True)
class _Binding:
    owner: Hashable
    stack: StrategyStack


_binding: ContextVar[_Binding | None] = ContextVar(
    "indexsync_strategy_stack", default=None
)


def _owner() -> Hashable:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    if task is not None:
        return ("task", id(task))
    return ("thread", threading.get_ident())


def current_stack() -> StrategyStack:
    """Return the stack of the running thread or asyncio task.

    Tasks inherit their parent's context, so the binding is tagged with its
    owner and a task that finds a foreign binding starts its own stack.
    """

    owner = _owner()
    binding = _binding.get()
    if binding is None or binding.owner != owner:
        binding = _Binding(owner=owner, stack=StrategyStack())
        _binding.set(binding)
    return binding.stack


@contextmanager
def use_stack(stack: StrategyStack) -> Iterator[StrategyStack]:
    """Bind ``stack`` as the current stack for the enclosed block."""

    token = _binding.set(_Binding(owner=_owner(), stack=stack))
    try:
        yield stack
    finally:
        _binding.reset(token)


@contextmanager
def strategy(policy: str | Policy) -> Iterator[Policy]:
    """Run the block under ``policy`` on the current stack."""

    with current_stack().wrap(policy) as frame:
        yield frame
