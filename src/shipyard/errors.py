"""Error taxonomy shared by the task queue and the deployment orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Stable error identifiers exposed to callers and stored with records."""

    INVALID_CONFIG = "invalid_config"
    INVALID_SUBDOMAIN = "invalid_subdomain"
    SERVICE_NOT_CONFIGURED = "service_not_configured"
    DEPLOYMENT_FAILED = "deployment_failed"
    GIT_DEPLOY_FAILED = "git_deploy_failed"
    PROJECT_CREATION_FAILED = "project_creation_failed"
    DOMAIN_ADD_FAILED = "domain_add_failed"
    DOMAIN_VERIFY_FAILED = "domain_verify_failed"
    STATUS_FETCH_FAILED = "status_fetch_failed"
    DELETE_FAILED = "delete_failed"
    LIST_FAILED = "list_failed"
    DEPLOYMENT_TIMEOUT = "deployment_timeout"
    TASK_NOT_FOUND = "task_not_found"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    TASK_STATE_CONFLICT = "task_state_conflict"


class ShipyardError(RuntimeError):
    """Base class for all domain errors."""

    kind: ErrorKind | None = None


class TaskNotFoundError(ShipyardError):
    """Raised when a task id does not resolve to a stored task."""

    kind = ErrorKind.TASK_NOT_FOUND

    def __init__(self, task_id: str, message: str | None = None) -> None:
        self.task_id = task_id
        super().__init__(message or f"Task not found: {task_id}")


class TaskAlreadyStartedError(TaskNotFoundError):
    """Conditional start lost: the task exists but is no longer pending."""

    kind = ErrorKind.TASK_STATE_CONFLICT

    def __init__(self, task_id: str, status: str) -> None:
        self.status = status
        super().__init__(task_id, f"Task {task_id} is not pending (status={status}).")


class AttemptsExceededError(ShipyardError):
    """Raised when starting a task whose attempt budget is spent."""

    kind = ErrorKind.ATTEMPTS_EXCEEDED

    def __init__(self, task_id: str, attempts: int, max_attempts: int) -> None:
        self.task_id = task_id
        self.attempts = attempts
        self.max_attempts = max_attempts
        super().__init__(
            f"Task {task_id} exhausted its attempts ({attempts}/{max_attempts}).",
        )


class TaskStateConflictError(ShipyardError):
    """Raised when a transition does not apply to the task's current status."""

    kind = ErrorKind.TASK_STATE_CONFLICT

    def __init__(self, task_id: str, operation: str, status: str) -> None:
        self.task_id = task_id
        self.operation = operation
        self.status = status
        super().__init__(f"Cannot {operation} task {task_id} in status {status}.")


class DeploymentError(ShipyardError):
    """Provider-tagged deployment failure."""

    kind = ErrorKind.DEPLOYMENT_FAILED

    def __init__(  # noqa: PLR0913
        self,
        message: str,
        *,
        platform: str | None = None,
        code: str | None = None,
        operation: str | None = None,
        status_code: int | None = None,
        provider_error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.platform = platform
        self.code = code or (self.kind.value if self.kind is not None else "error")
        self.operation = operation
        self.status_code = status_code
        self.provider_error = provider_error
        self.details = dict(details or {})
        super().__init__(self._render())

    def _render(self) -> str:
        prefix = f"[{self.platform}] " if self.platform else ""
        suffix = f" ({self.operation})" if self.operation else ""
        text = f"{prefix}{self.message}{suffix}"
        if self.provider_error:
            text = f"{text}: {self.provider_error}"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value if self.kind is not None else None,
            "code": self.code,
            "message": self.message,
            "platform": self.platform,
            "operation": self.operation,
            "status_code": self.status_code,
            "provider_error": self.provider_error,
            "details": self.details,
        }


class InvalidConfigError(DeploymentError):
    kind = ErrorKind.INVALID_CONFIG


class InvalidSubdomainError(DeploymentError):
    kind = ErrorKind.INVALID_SUBDOMAIN


class ServiceNotConfiguredError(DeploymentError):
    kind = ErrorKind.SERVICE_NOT_CONFIGURED


class DeploymentFailedError(DeploymentError):
    kind = ErrorKind.DEPLOYMENT_FAILED


class GitDeployFailedError(DeploymentError):
    kind = ErrorKind.GIT_DEPLOY_FAILED


class ProjectCreationFailedError(DeploymentError):
    kind = ErrorKind.PROJECT_CREATION_FAILED


class DomainAddFailedError(DeploymentError):
    kind = ErrorKind.DOMAIN_ADD_FAILED


class DomainVerifyFailedError(DeploymentError):
    kind = ErrorKind.DOMAIN_VERIFY_FAILED


class StatusFetchFailedError(DeploymentError):
    kind = ErrorKind.STATUS_FETCH_FAILED


class DeleteFailedError(DeploymentError):
    kind = ErrorKind.DELETE_FAILED


class ListFailedError(DeploymentError):
    kind = ErrorKind.LIST_FAILED


class DeploymentTimeoutError(DeploymentError):
    kind = ErrorKind.DEPLOYMENT_TIMEOUT


NON_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {
        ErrorKind.INVALID_CONFIG,
        ErrorKind.INVALID_SUBDOMAIN,
        ErrorKind.SERVICE_NOT_CONFIGURED,
    },
)
