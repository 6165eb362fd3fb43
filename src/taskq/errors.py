"""Exception hierarchy for the task queue."""

from __future__ import annotations


class TaskQueueError(Exception):
    """Base class for all task queue errors."""


class PayloadEncodeError(TaskQueueError, ValueError):
    """Payload could not be serialized; the task was not created."""


class StoreError(TaskQueueError, RuntimeError):
    """The backing store rejected a read or write."""


class FunctionNotRegisteredError(TaskQueueError, LookupError):
    """No handler is registered for the task's function key."""

    def __init__(self, function_name: str) -> None:
        super().__init__(f"function {function_name} not registered")
        self.function_name = function_name


class RegistryFrozenError(TaskQueueError, RuntimeError):
    """Handlers can no longer be registered once the registry was built."""


class ClaimLostError(StoreError):
    """The claim lease expired and another worker took the task over."""
