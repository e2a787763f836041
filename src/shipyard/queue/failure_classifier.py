"""Deterministic handler failure classification for worker retry policy."""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus

import httpx

from shipyard.errors import NON_RETRYABLE_KINDS, DeploymentError, DeploymentTimeoutError
from shipyard.queue.models import FailureClass

TASK_FAILURE_CLASSIFIER_VERSION = 1


@dataclass(slots=True)
class TaskFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str

    @property
    def retryable(self) -> bool:
        return self.failure_class == FailureClass.TRANSIENT

    def to_event_details(self) -> dict[str, object]:
        """Serialize classifier diagnostics for task events."""

        return {
            "classifier_version": TASK_FAILURE_CLASSIFIER_VERSION,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
        }


def classify_task_failure(error: BaseException) -> TaskFailureClassification:
    """Classify a handler exception into a retryable or terminal class."""

    if isinstance(error, DeploymentError):
        return _classify_deployment_error(error)

    if isinstance(error, httpx.TimeoutException | TimeoutError):
        return TaskFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code="timeout",
            matched_rule="timeout",
        )
    if isinstance(error, httpx.TransportError | ConnectionError):
        return TaskFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code="network_error",
            matched_rule="transport_error",
        )
    if isinstance(error, ValueError | TypeError | KeyError):
        return TaskFailureClassification(
            failure_class=FailureClass.INVALID_INPUT,
            reason_code=type(error).__name__.lower(),
            matched_rule="invalid_input",
        )

    return TaskFailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        reason_code=type(error).__name__.lower(),
        matched_rule="fallback_non_retryable",
    )


def _classify_deployment_error(error: DeploymentError) -> TaskFailureClassification:
    reason_code = f"{error.platform or 'deployment'}_{error.kind.value if error.kind else 'error'}"
    if error.kind in NON_RETRYABLE_KINDS:
        return TaskFailureClassification(
            failure_class=FailureClass.INVALID_INPUT,
            reason_code=reason_code,
            matched_rule="non_retryable_kind",
        )
    if isinstance(error, DeploymentTimeoutError):
        return TaskFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=reason_code,
            matched_rule="deployment_timeout",
        )

    if error.details.get("terminal_status"):
        return TaskFailureClassification(
            failure_class=FailureClass.NON_RETRYABLE,
            reason_code=f"{reason_code}_{error.details['terminal_status']}",
            matched_rule="deployment_terminal_status",
        )

    status_code = error.status_code
    if status_code is None:
        # No HTTP response: transport failure or timeout on the way to the provider.
        return TaskFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=reason_code,
            matched_rule="no_response",
        )
    if (
        status_code == HTTPStatus.TOO_MANY_REQUESTS
        or status_code >= HTTPStatus.INTERNAL_SERVER_ERROR
    ):
        return TaskFailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code=f"{reason_code}_{status_code}",
            matched_rule="provider_transient_status",
        )
    return TaskFailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        reason_code=f"{reason_code}_{status_code}",
        matched_rule="provider_rejected",
    )
