"""Static name to policy map used to resolve strategies."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from indexsync.errors import UnknownStrategyError
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

__all__ = [
    "BUILTIN_POLICIES",
    "PolicyFactory",
    "StrategyRegistry",
    "strategies",
]

PolicyFactory = Callable[[], Policy]

BUILTIN_POLICIES: tuple[type[Policy], ...] = (
    Base,
    Bypass,
    Urgent,
    Atomic,
    AtomicNoRefresh,
    Deferred,
    Delayed,
)


def _normalize(name: str) -> str:
    normalized = name.strip().lower()
    if not normalized:
        raise ValueError("strategy name cannot be blank")
    return normalized


@dataclass(slots=True)
class StrategyRegistry:
    """Registry keeping strategy names mapped to policy factories.

    Example:
        >>> registry = StrategyRegistry.with_builtins()
        >>> registry.create("urgent").name
        'urgent'
    """

    _factories: dict[str, PolicyFactory] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def with_builtins(cls) -> "StrategyRegistry":
        registry = cls()
        for policy in BUILTIN_POLICIES:
            registry.register(policy.name, policy)
        return registry

    def register(
        self,
        name: str,
        factory: PolicyFactory,
        *,
        replace: bool = False,
    ) -> None:
        """Register ``factory`` under ``name``.

        Raises:
            ValueError: If ``name`` is taken and ``replace`` is ``False``.
        """

        key = _normalize(name)
        with self._lock:
            if key in self._factories and not replace:
                raise ValueError(f"Strategy {key!r} is already registered")
            self._factories[key] = factory

    def unregister(self, name: str) -> None:
        with self._lock:
            self._factories.pop(_normalize(name), None)

    def get_factory(self, name: str) -> PolicyFactory:
        key = _normalize(name)
        with self._lock:
            factory = self._factories.get(key)
        if factory is None:
            raise UnknownStrategyError(f"Can't find update strategy {key!r}")
        return factory

    def create(self, name: str) -> Policy:
        return self.get_factory(name)()

    def names(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._factories))

    def snapshot(self) -> Mapping[str, PolicyFactory]:
        with self._lock:
            return MappingProxyType(dict(self._factories))

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        with self._lock:
            return name.strip().lower() in self._factories


strategies = StrategyRegistry.with_builtins()
"""Process-wide registry holding the built-in policies."""
