"""CLI entrypoint for shipyard."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from shipyard import __version__
from shipyard.config import Settings
from shipyard.deployment.controllers import (
    DeployDeleteCommand,
    DeployHistoryCommand,
    DeployListCommand,
    DeploymentCliController,
    DeployRunCommand,
    DeployStatusCommand,
    DomainCommand,
    PlatformsCommand,
    SubdomainCheckCommand,
)
from shipyard.errors import ShipyardError
from shipyard.queue.controllers import (
    TaskCompleteCommand,
    TaskEnqueueCommand,
    TaskFailCommand,
    TaskListCommand,
    TaskQueueCliController,
    TaskQueueViewCommand,
    TaskShowCommand,
    TaskStatsCommand,
    WorkerRunCommand,
)
from shipyard.queue.models import TaskStatus, TaskType

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = TaskQueueCliController()
DEPLOYMENT_CONTROLLER = DeploymentCliController()

PLATFORM_CHOICE = click.Choice(["netlify", "vercel"], case_sensitive=False)
CommandT = TypeVar("CommandT")


@click.group()
@click.version_option(version=__version__, prog_name="shipyard")
def shipyard() -> None:
    """Shipyard: priority task queue and multi-provider deployment orchestrator."""

    logging.basicConfig(
        level=Settings.from_env().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@shipyard.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--type",
    "task_type",
    type=click.Choice([item.value for item in TaskType], case_sensitive=False),
    required=True,
    help="Task type.",
)
@click.option("--payload", "payload_json", default=None, help="Task payload as JSON.")
@click.option(
    "--priority",
    type=int,
    default=None,
    help="Dispatch priority; higher runs first. Defaults to SHIPYARD_QUEUE_DEFAULT_PRIORITY.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of starts before the task is exhausted.",
)
@click.option("--project-id", default=None, help="Optional owning project identifier.")
@click.option(
    "--delay",
    "delay_seconds",
    type=click.FloatRange(min=0),
    default=0.0,
    show_default=True,
    help="Schedule the task this many seconds in the future.",
)
def tasks_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    task_type: str,
    payload_json: str | None,
    priority: int | None,
    max_attempts: int | None,
    project_id: str | None,
    delay_seconds: float,
) -> None:
    """Add a task to the queue."""

    _run(
        QUEUE_CONTROLLER.enqueue,
        TaskEnqueueCommand(
            db_path=db_path,
            task_type=task_type,
            payload_json=payload_json,
            priority=priority,
            max_attempts=max_attempts,
            project_id=project_id,
            delay_seconds=delay_seconds,
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([item.value for item in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--project-id", default=None, help="Optional project filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Maximum rows to show.",
)
def tasks_list(
    db_path: Path | None,
    status: str | None,
    project_id: str | None,
    limit: int,
) -> None:
    """List tasks, newest first."""

    _run(
        QUEUE_CONTROLLER.list_tasks,
        TaskListCommand(db_path=db_path, status=status, project_id=project_id, limit=limit),
    )


@tasks.command("pending")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
def tasks_pending(db_path: Path | None, limit: int) -> None:
    """Show dispatchable tasks in dispatch order."""

    _run(QUEUE_CONTROLLER.pending, TaskQueueViewCommand(db_path=db_path, limit=limit))


@tasks.command("active")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
def tasks_active(db_path: Path | None, limit: int) -> None:
    """Show pending and processing tasks in dispatch order."""

    _run(QUEUE_CONTROLLER.active, TaskQueueViewCommand(db_path=db_path, limit=limit))


@tasks.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_show(db_path: Path | None, task_id: str) -> None:
    """Show one task with its event history."""

    _run(QUEUE_CONTROLLER.show, TaskShowCommand(db_path=db_path, task_id=task_id))


@tasks.command("start")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_start(db_path: Path | None, task_id: str) -> None:
    """Claim a pending task manually."""

    _run(QUEUE_CONTROLLER.start, TaskShowCommand(db_path=db_path, task_id=task_id))


@tasks.command("complete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--result", "result_json", default=None, help="Result as JSON.")
@click.argument("task_id")
def tasks_complete(db_path: Path | None, result_json: str | None, task_id: str) -> None:
    """Mark a processing task completed."""

    _run(
        QUEUE_CONTROLLER.complete,
        TaskCompleteCommand(db_path=db_path, task_id=task_id, result_json=result_json),
    )


@tasks.command("fail")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--error", required=True, help="Failure description.")
@click.option(
    "--requeue/--no-requeue",
    default=False,
    show_default=True,
    help="Return the task to pending while attempts remain.",
)
@click.argument("task_id")
def tasks_fail(db_path: Path | None, error: str, requeue: bool, task_id: str) -> None:
    """Mark a processing task failed, optionally re-queueing it."""

    _run(
        QUEUE_CONTROLLER.fail,
        TaskFailCommand(db_path=db_path, task_id=task_id, error=error, requeue=requeue),
    )


@tasks.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def tasks_stats(db_path: Path | None) -> None:
    """Show queue counters."""

    _run(QUEUE_CONTROLLER.stats, TaskStatsCommand(db_path=db_path))


@shipyard.group()
def worker() -> None:
    """Background worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, help="Process at most one task and exit.")
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after processing this many tasks.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Stop after this many empty polls; 0 keeps polling until interrupted.",
)
@click.option(
    "--wait-for-ready",
    is_flag=True,
    help="Wait for each deployment to reach a terminal status before completing its task.",
)
def worker_run(
    db_path: Path | None,
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int,
    wait_for_ready: bool,
) -> None:
    """Run the queue worker."""

    _run(
        QUEUE_CONTROLLER.run_worker,
        WorkerRunCommand(
            db_path=db_path,
            once=once,
            max_tasks=max_tasks,
            max_idle_polls=max_idle_polls,
            wait_for_ready=wait_for_ready,
        ),
    )


@shipyard.group()
def deploy() -> None:
    """Deployment commands."""


@deploy.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.option("--project-name", required=True, help="Provider project/site name.")
@click.option(
    "--files-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory whose files are uploaded directly.",
)
@click.option("--git-url", default=None, help="Git repository URL to build from.")
@click.option("--branch", default="main", show_default=True, help="Git branch.")
@click.option("--build-command", default=None, help="Build command for git deploys.")
@click.option("--output-directory", default=None, help="Build output directory for git deploys.")
@click.option("--subdomain", default=None, help="Custom subdomain under the base domain.")
@click.option("--env", multiple=True, help="Environment variable KEY=VALUE. Can be repeated.")
@click.option("--wait", is_flag=True, help="Wait for a terminal deployment status.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Wait timeout in seconds.",
)
def deploy_run(  # noqa: PLR0913
    db_path: Path | None,
    platform: str,
    project_name: str,
    files_dir: Path | None,
    git_url: str | None,
    branch: str,
    build_command: str | None,
    output_directory: str | None,
    subdomain: str | None,
    env: tuple[str, ...],
    wait: bool,
    timeout_seconds: float | None,
) -> None:
    """Deploy files or a git repository right away, bypassing the queue."""

    _run(
        DEPLOYMENT_CONTROLLER.deploy,
        DeployRunCommand(
            db_path=db_path,
            platform=platform,
            project_name=project_name,
            files_dir=files_dir,
            git_url=git_url,
            branch=branch,
            build_command=build_command,
            output_directory=output_directory,
            subdomain=subdomain,
            env=env,
            wait=wait,
            timeout_seconds=timeout_seconds,
        ),
    )


@deploy.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.argument("deployment_id")
def deploy_status(db_path: Path | None, platform: str, deployment_id: str) -> None:
    """Fetch the current status of a deployment."""

    _run(
        DEPLOYMENT_CONTROLLER.status,
        DeployStatusCommand(db_path=db_path, platform=platform, deployment_id=deployment_id),
    )


@deploy.command("wait")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Wait timeout in seconds. Defaults to SHIPYARD_DEPLOY_STATUS_WAIT_TIMEOUT_SECONDS.",
)
@click.argument("deployment_id")
def deploy_wait(
    db_path: Path | None,
    platform: str,
    timeout_seconds: float | None,
    deployment_id: str,
) -> None:
    """Poll a deployment until it is ready, errored or cancelled."""

    _run(
        DEPLOYMENT_CONTROLLER.status,
        DeployStatusCommand(
            db_path=db_path,
            platform=platform,
            deployment_id=deployment_id,
            wait=True,
            timeout_seconds=timeout_seconds,
        ),
    )


@deploy.command("setup-domain")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.option("--project-id", default=None, help="Provider project/site identifier.")
@click.argument("subdomain")
def deploy_setup_domain(
    db_path: Path | None,
    platform: str,
    project_id: str | None,
    subdomain: str,
) -> None:
    """Attach `<subdomain>.<base domain>` to a project."""

    _run(
        DEPLOYMENT_CONTROLLER.setup_domain,
        DomainCommand(
            db_path=db_path,
            platform=platform,
            subdomain=subdomain,
            project_id=project_id,
        ),
    )


@deploy.command("verify-domain")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.option("--project-id", default=None, help="Provider project/site identifier.")
@click.argument("domain")
def deploy_verify_domain(
    db_path: Path | None,
    platform: str,
    project_id: str | None,
    domain: str,
) -> None:
    """Check whether a custom domain is verified. Accepts a bare subdomain label."""

    _run(
        DEPLOYMENT_CONTROLLER.verify_domain,
        DomainCommand(
            db_path=db_path,
            platform=platform,
            subdomain=domain,
            project_id=project_id,
        ),
    )


@deploy.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, required=True, help="Hosting provider.")
@click.argument("deployment_id")
def deploy_delete(db_path: Path | None, platform: str, deployment_id: str) -> None:
    """Delete a deployment."""

    _run(
        DEPLOYMENT_CONTROLLER.delete,
        DeployDeleteCommand(db_path=db_path, platform=platform, deployment_id=deployment_id),
    )


@deploy.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=None,
    help="Maximum deployments to show. Defaults to SHIPYARD_DEPLOY_DEFAULT_LIST_LIMIT.",
)
def deploy_list(db_path: Path | None, limit: int | None) -> None:
    """List deployments across every configured platform, newest first."""

    _run(DEPLOYMENT_CONTROLLER.list_deployments, DeployListCommand(db_path=db_path, limit=limit))


@deploy.command("history")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--platform", type=PLATFORM_CHOICE, default=None, help="Optional platform filter.")
@click.option("--task-id", default=None, help="Optional task filter.")
@click.option("--limit", type=click.IntRange(min=1), default=20, show_default=True)
def deploy_history(
    db_path: Path | None,
    platform: str | None,
    task_id: str | None,
    limit: int,
) -> None:
    """Show locally recorded deploy attempts."""

    _run(
        DEPLOYMENT_CONTROLLER.history,
        DeployHistoryCommand(
            db_path=db_path,
            platform=platform.lower() if platform else None,
            task_id=task_id,
            limit=limit,
        ),
    )


@deploy.command("platforms")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--subdomain", default=None, help="Subdomain to render DNS guidance for.")
@click.option(
    "--platform",
    "platforms",
    type=PLATFORM_CHOICE,
    multiple=True,
    help="Limit guidance to this platform. Can be repeated.",
)
def deploy_platforms(
    db_path: Path | None,
    subdomain: str | None,
    platforms: tuple[str, ...],
) -> None:
    """Show configured platforms and DNS setup guidance."""

    _run(
        DEPLOYMENT_CONTROLLER.platforms,
        PlatformsCommand(db_path=db_path, subdomain=subdomain, platforms=platforms),
    )


@deploy.command("check-subdomain")
@click.option("--suggest", is_flag=True, help="Always print alternative suggestions.")
@click.argument("subdomain")
def deploy_check_subdomain(suggest: bool, subdomain: str) -> None:
    """Validate a subdomain label and suggest alternatives."""

    _run(
        DEPLOYMENT_CONTROLLER.check_subdomain,
        SubdomainCheckCommand(subdomain=subdomain, suggest=suggest),
    )


def _run(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (ShipyardError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    shipyard()
