"""Function registry mapping function keys to task handlers."""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from taskq.errors import FunctionNotRegisteredError, RegistryFrozenError
from taskq.termination import TerminationPolicy


@dataclass(slots=True, frozen=True)
class TaskContext:
    """Execution context handed to a handler together with the raw payload."""

    task_id: int
    function_name: str
    retry_count: int
    created_at: datetime
    stop_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        """True once the worker loop was asked to stop."""

        return self.stop_event.is_set()


Handler = Callable[[TaskContext, str], None]
"""Task handler. Returning normally means success, raising means failure."""


@dataclass(slots=True, frozen=True)
class RegisteredFunction:
    key: str
    handler: Handler
    policy: TerminationPolicy | None = None


class FunctionRegistry:
    """Read-only lookup table built by ``RegistryBuilder``."""

    def __init__(
        self,
        functions: Mapping[str, RegisteredFunction],
        *,
        default_policy: TerminationPolicy,
    ) -> None:
        self._functions = MappingProxyType(dict(functions))
        self.default_policy = default_policy

    def __contains__(self, key: object) -> bool:
        return key in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._functions))

    def resolve(self, key: str) -> Handler:
        """Return the handler for ``key`` or raise ``FunctionNotRegisteredError``."""

        function = self._functions.get(key)
        if function is None:
            raise FunctionNotRegisteredError(key)
        return function.handler

    def policy_for(self, key: str) -> TerminationPolicy:
        """Termination policy of ``key``, falling back to the registry default."""

        function = self._functions.get(key)
        if function is None or function.policy is None:
            return self.default_policy
        return function.policy


class RegistryBuilder:
    """Collects handler registrations at startup and freezes them once.

    Registration is last-write-wins. After ``build()`` the builder rejects
    further registrations, so the worker only ever sees an immutable map.
    """

    def __init__(self, *, default_policy: TerminationPolicy | None = None) -> None:
        self.default_policy = default_policy or TerminationPolicy()
        self._functions: dict[str, RegisteredFunction] = {}
        self._built = False

    def register(
        self,
        key: str,
        handler: Handler,
        *,
        policy: TerminationPolicy | None = None,
    ) -> RegistryBuilder:
        if self._built:
            raise RegistryFrozenError(f"Cannot register {key!r}: registry already built")
        if not key:
            raise ValueError("Function key must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler for {key!r} is not callable: {handler!r}")
        self._functions[key] = RegisteredFunction(key=key, handler=handler, policy=policy)
        return self

    def build(self) -> FunctionRegistry:
        self._built = True
        return FunctionRegistry(self._functions, default_policy=self.default_policy)
