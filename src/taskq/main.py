"""CLI entrypoint for taskq."""

import rich_click as click

from taskq import __version__
from taskq.controllers import (
    EnqueueCommand,
    InitDbCommand,
    ListTasksCommand,
    ShowTaskCommand,
    TaskqCliController,
    WorkerCommand,
)
from taskq.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskqCliController()

DATABASE_URL_OPTION = click.option(
    "--database-url",
    default=None,
    help="Store URL. Defaults to TASKQ_DATABASE_URL, then DATABASE_URL.",
)


@click.group()
@click.version_option(version=__version__, prog_name="taskq")
def taskq() -> None:
    """Durable SQL-backed task queue."""


@taskq.command("init-db")
@DATABASE_URL_OPTION
def init_db(database_url: str | None) -> None:
    """Apply schema migrations to the store."""

    _emit_lines(CONTROLLER.init_db(InitDbCommand(database_url=database_url)))


@taskq.command("enqueue")
@DATABASE_URL_OPTION
@click.argument("function_name")
@click.argument("payload_json", default="null")
def enqueue(database_url: str | None, function_name: str, payload_json: str) -> None:
    """Enqueue FUNCTION_NAME with a JSON payload."""

    try:
        lines = CONTROLLER.enqueue(
            EnqueueCommand(
                database_url=database_url,
                function_name=function_name,
                payload_json=payload_json,
            ),
        )
    except ValueError as error:
        raise click.BadParameter(str(error), param_hint="PAYLOAD_JSON") from error
    _emit_lines(lines)


@taskq.command("worker")
@DATABASE_URL_OPTION
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one claim-execute cycle or poll until stopped.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed tasks in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty polls (default: never).",
)
@click.option(
    "--handlers",
    default=None,
    help="Registry factory as '<module>:<factory>'. Defaults to TASKQ_HANDLERS.",
)
def worker(
    database_url: str | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int | None,
    handlers: str | None,
) -> None:
    """Run a task worker until SIGINT/SIGTERM."""

    _emit_lines(
        CONTROLLER.run_worker(
            WorkerCommand(
                database_url=database_url,
                once=once,
                max_tasks=max_tasks,
                max_idle_polls=max_idle_polls,
                handlers=handlers,
            ),
        ),
    )


@taskq.command("tasks")
@DATABASE_URL_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks(database_url: str | None, status: str | None, limit: int) -> None:
    """List tasks, newest first."""

    _emit_lines(
        CONTROLLER.list_tasks(
            ListTasksCommand(database_url=database_url, status=status, limit=limit),
        ),
    )


@taskq.command("show")
@DATABASE_URL_OPTION
@click.argument("task_id", type=int)
def show(database_url: str | None, task_id: int) -> None:
    """Show one task."""

    _emit_lines(CONTROLLER.show_task(ShowTaskCommand(database_url=database_url, task_id=task_id)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskq()
