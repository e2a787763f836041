"""Built-in task handlers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from shipyard.deployment.manager import DeploymentManager
from shipyard.deployment.models import (
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    GitSource,
)
from shipyard.errors import DeploymentFailedError, DeploymentTimeoutError
from shipyard.queue.models import TaskView

logger = logging.getLogger(__name__)


class DeploymentTaskHandler:
    """Runs a ``deployment`` task payload through the orchestrator.

    Payload shape::

        {"platform": "vercel", "project_name": "demo",
         "files": {"index.html": "..."} | None,
         "git": {"url": ..., "branch": ..., "build_command": ..., "output_directory": ...},
         "subdomain": "demo", "environment": {...}, "wait": false}
    """

    def __init__(
        self,
        manager: DeploymentManager,
        *,
        wait_for_ready: bool = False,
        wait_timeout_seconds: float | None = None,
    ) -> None:
        self.manager = manager
        self.wait_for_ready = wait_for_ready
        self.wait_timeout_seconds = wait_timeout_seconds

    def __call__(self, task: TaskView) -> dict[str, Any]:
        request = build_deployment_request(task.payload)
        result = self.manager.deploy(request, task_id=task.task_id)

        wait = bool(_payload_mapping(task.payload).get("wait", self.wait_for_ready))
        if wait and result.deployment_id and not result.status.is_terminal:
            logger.info(
                "Task %s waiting for %s deployment %s",
                task.task_id,
                request.platform.value,
                result.deployment_id,
            )
            try:
                final = self.manager.wait_for_deployment(
                    request.platform,
                    result.deployment_id,
                    timeout_seconds=self.wait_timeout_seconds,
                )
            except DeploymentTimeoutError as error:
                # Report the last known status; the remote deployment already exists.
                logger.warning(
                    "Task %s stopped waiting for %s deployment %s: %s",
                    task.task_id,
                    request.platform.value,
                    result.deployment_id,
                    error,
                )
                outcome = self._outcome(result)
                outcome["status"] = error.details.get("last_status", result.status.value)
                outcome["wait_timed_out"] = True
                return outcome

            if final.status in (DeploymentStatus.ERROR, DeploymentStatus.CANCELLED):
                raise DeploymentFailedError(
                    final.error or f"Deployment ended as {final.status.value}",
                    platform=request.platform.value,
                    operation="wait_for_deployment",
                    details={
                        "deployment_id": result.deployment_id,
                        "terminal_status": final.status.value,
                    },
                )
            outcome = self._outcome(result)
            outcome["status"] = final.status.value
            outcome["url"] = final.url or result.url
            return outcome

        return self._outcome(result)

    @staticmethod
    def _outcome(result: DeploymentResult) -> dict[str, Any]:
        return {
            "platform": result.platform.value,
            "deployment_id": result.deployment_id,
            "url": result.url,
            "custom_domain": result.custom_domain,
            "project_id": result.project_id,
            "status": result.status.value,
        }


def build_deployment_request(payload: Any) -> DeploymentRequest:
    """Translate a task payload into a request; shape errors raise ValueError."""

    data = _payload_mapping(payload)
    try:
        platform = DeploymentPlatform(str(data["platform"]).lower())
        project_name = str(data["project_name"])
    except KeyError as error:
        raise ValueError(f"Deployment payload is missing {error.args[0]!r}") from error

    files = data.get("files")
    if files is not None and not isinstance(files, Mapping):
        raise ValueError("Deployment payload 'files' must be a mapping of path to content")

    git: GitSource | None = None
    raw_git = data.get("git")
    if raw_git is not None:
        if isinstance(raw_git, str):
            git = GitSource(url=raw_git)
        elif isinstance(raw_git, Mapping) and raw_git.get("url"):
            git = GitSource(
                url=str(raw_git["url"]),
                branch=str(raw_git.get("branch") or "main"),
                build_command=raw_git.get("build_command"),
                output_directory=raw_git.get("output_directory"),
            )
        else:
            raise ValueError("Deployment payload 'git' must be a URL or a mapping with 'url'")

    environment = data.get("environment") or {}
    if not isinstance(environment, Mapping):
        raise ValueError("Deployment payload 'environment' must be a mapping")

    return DeploymentRequest(
        project_name=project_name,
        platform=platform,
        files={str(path): str(content) for path, content in files.items()}
        if files is not None
        else None,
        git=git,
        subdomain=data.get("subdomain") or None,
        environment={str(key): str(value) for key, value in environment.items()},
    )


def _payload_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError("Deployment task payload must be a JSON object")
    return payload
