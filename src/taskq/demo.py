"""Example handlers and the registry factory used by ``taskq worker`` by default.

Production deployments point ``TASKQ_HANDLERS`` at their own
``<module>:<factory>``; the factory receives the default termination policy
and returns a built ``FunctionRegistry``.
"""

from __future__ import annotations

import logging

import click

from taskq.registry import FunctionRegistry, RegistryBuilder, TaskContext
from taskq.termination import TerminationPolicy

ECHO_KEY = "echo"
LOG_PAYLOAD_KEY = "log_payload"


def echo(_: TaskContext, payload: str) -> None:
    click.echo(f"echo is running {payload}")


class PayloadLogger:
    """Handler with an injected dependency, registered through a bound method."""

    def __init__(self, log: logging.Logger) -> None:
        self.log = log

    def execute(self, context: TaskContext, payload: str) -> None:
        self.log.info("Task %s payload: %s", context.task_id, payload)


def build_registry(default_policy: TerminationPolicy | None = None) -> FunctionRegistry:
    builder = RegistryBuilder(default_policy=default_policy)
    builder.register(ECHO_KEY, echo)
    builder.register(
        LOG_PAYLOAD_KEY,
        PayloadLogger(logging.getLogger("taskq.demo.payload")).execute,
    )
    return builder.build()
