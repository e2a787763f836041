"""In-memory collaborators for orchestrator tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import httpx

from shipyard.deployment.analytics import AnalyticsEvent
from shipyard.deployment.models import (
    CustomDomainConfig,
    DeleteResult,
    DeploymentListing,
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    DeploymentSummary,
    DnsRecord,
    DomainSetupResult,
    DomainVerification,
)
from shipyard.errors import DeploymentError


class FakeAdapter:
    """Scriptable adapter; set attributes to shape responses or raise."""

    def __init__(self, platform: DeploymentPlatform) -> None:
        self.platform = platform
        self.calls: list[tuple[str, Any]] = []
        self.deploy_error: Exception | None = None
        self.deploy_status = DeploymentStatus.BUILDING
        self.statuses: list[DeploymentStatus] = []
        self.listing = DeploymentListing(success=True)
        self.list_error: Exception | None = None
        self.domain_result: DomainSetupResult | None = None
        self.domain_error: DeploymentError | None = None
        self.verified = True
        self.closed = False

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        self.calls.append(("deploy", request))
        if self.deploy_error is not None:
            raise self.deploy_error
        return DeploymentResult(
            success=True,
            platform=self.platform,
            status=self.deploy_status,
            deployment_id="dep-1",
            url=f"https://{request.project_name}.example.app",
            project_id="proj-1",
        )

    def get_deployment_status(self, deployment_id: str) -> DeploymentResult:
        self.calls.append(("status", deployment_id))
        status = self.statuses.pop(0) if self.statuses else DeploymentStatus.READY
        return DeploymentResult(
            success=status == DeploymentStatus.READY,
            platform=self.platform,
            status=status,
            deployment_id=deployment_id,
            url="https://final.example.app",
        )

    def setup_custom_domain(
        self,
        config: CustomDomainConfig,
        project_id: str | None = None,
    ) -> DomainSetupResult:
        self.calls.append(("setup_domain", (config, project_id)))
        if self.domain_error is not None:
            raise self.domain_error
        if self.domain_result is not None:
            return self.domain_result
        return DomainSetupResult(
            success=True,
            domain=config.domain,
            dns_records=(DnsRecord(type="TXT", name="_verify", value="token-123"),),
        )

    def verify_custom_domain(
        self,
        domain: str,
        project_id: str | None = None,
    ) -> DomainVerification:
        self.calls.append(("verify_domain", (domain, project_id)))
        return DomainVerification(success=True, verified=self.verified, domain=domain)

    def delete_deployment(self, deployment_id: str) -> DeleteResult:
        self.calls.append(("delete", deployment_id))
        return DeleteResult(success=True, deployment_id=deployment_id)

    def list_deployments(self, limit: int = 20) -> DeploymentListing:
        self.calls.append(("list", limit))
        if self.list_error is not None:
            raise self.list_error
        return self.listing

    def close(self) -> None:
        self.closed = True


class RecordingAnalytics:
    def __init__(self, *, fail: bool = False) -> None:
        self.events: list[AnalyticsEvent] = []
        self.fail = fail

    def track(self, event: AnalyticsEvent) -> None:
        if self.fail:
            raise RuntimeError("analytics down")
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.event for event in self.events]


class SteppingClock:
    """Monotonic clock that only moves when the fake sleep is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def summary(
    deployment_id: str,
    platform: DeploymentPlatform,
    *,
    day: int,
) -> DeploymentSummary:
    return DeploymentSummary(
        deployment_id=deployment_id,
        name=f"site-{deployment_id}",
        url=f"https://{deployment_id}.example.app",
        status=DeploymentStatus.READY,
        created_at=datetime(2026, 10, day, tzinfo=UTC),
        platform=platform,
    )


class RouteTable:
    """``httpx.MockTransport`` handler keyed by ``(method, path)``."""

    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "no route"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]

    def json_body(self, method: str, path: str) -> Any:
        for request in self.requests:
            if request.method == method and request.url.path == path:
                return json.loads(request.content)
        raise AssertionError(f"No {method} {path} request recorded")
