"""Vercel adapter: projects, v13 deployments and project domains."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any

from shipyard.deployment.base import HttpDeploymentAdapter, map_status
from shipyard.deployment.git_urls import GitRepoRef
from shipyard.deployment.models import (
    CustomDomainConfig,
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    DeploymentSummary,
    DnsRecord,
    DomainSetupResult,
    DomainVerification,
    GitSource,
)
from shipyard.errors import (
    DeleteFailedError,
    DeploymentError,
    DeploymentFailedError,
    DomainAddFailedError,
    DomainVerifyFailedError,
    GitDeployFailedError,
    ListFailedError,
    ProjectCreationFailedError,
    StatusFetchFailedError,
)
from shipyard.storage.common import utc_now

logger = logging.getLogger(__name__)

VERCEL_API_URL = "https://api.vercel.com"
VERCEL_CNAME_TARGET = "cname.vercel-dns.com"
VERCEL_A_RECORD = "76.76.19.61"
DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_OUTPUT_DIRECTORY = "dist"
DEFAULT_INSTALL_COMMAND = "npm install"

VERCEL_STATE_MAP: dict[str, DeploymentStatus] = {
    "INITIALIZING": DeploymentStatus.PENDING,
    "QUEUED": DeploymentStatus.PENDING,
    "BUILDING": DeploymentStatus.BUILDING,
    "READY": DeploymentStatus.READY,
    "ERROR": DeploymentStatus.ERROR,
    "CANCELED": DeploymentStatus.CANCELLED,
}


class VercelAdapter(HttpDeploymentAdapter):
    """Deploys to Vercel projects, scoped to ``team_id`` when given."""

    platform = DeploymentPlatform.VERCEL
    base_url = VERCEL_API_URL

    def _default_params(self) -> Mapping[str, Any]:
        return {"teamId": self.team_id} if self.team_id else {}

    def get_deployment_status(self, deployment_id: str) -> DeploymentResult:
        response = self._request(
            "GET",
            f"/v13/deployments/{deployment_id}",
            operation="get_deployment_status",
            error_cls=StatusFetchFailedError,
        )
        deployment = self._json_object(
            response,
            operation="get_deployment_status",
            error_cls=StatusFetchFailedError,
        )
        status = map_status(_native_state(deployment), VERCEL_STATE_MAP)
        return DeploymentResult(
            success=status == DeploymentStatus.READY,
            platform=self.platform,
            status=status,
            deployment_id=_deployment_id(deployment) or deployment_id,
            url=_https(deployment.get("url")),
            project_id=deployment.get("projectId"),
            error=deployment.get("errorMessage"),
            metadata={
                "alias": deployment.get("alias"),
                "target": deployment.get("target"),
                "checks_state": deployment.get("checksState"),
                "checks_conclusion": deployment.get("checksConclusion"),
            },
        )

    def _deploy_files(self, request: DeploymentRequest) -> DeploymentResult:
        project = self._ensure_project(request.project_name, git=None)
        files = [
            {"file": path.lstrip("/"), "data": content}
            for path, content in (request.files or {}).items()
        ]
        response = self._request(
            "POST",
            "/v13/deployments",
            operation="deploy_files",
            error_cls=DeploymentFailedError,
            json={
                "name": request.project_name,
                "files": files,
                "target": "production",
                "project": project["id"],
                "projectSettings": {
                    "buildCommand": None,
                    "outputDirectory": None,
                    "installCommand": DEFAULT_INSTALL_COMMAND,
                },
                "env": dict(request.environment),
            },
        )
        deployment = self._json_object(response, operation="deploy_files")
        return self._deployment_result(deployment, project=project, extra={})

    def _deploy_git(
        self,
        request: DeploymentRequest,
        git: GitSource,
        git_ref: GitRepoRef,
    ) -> DeploymentResult:
        project = self._ensure_project(request.project_name, git=git)
        build_command = git.build_command or DEFAULT_BUILD_COMMAND
        output_directory = git.output_directory or DEFAULT_OUTPUT_DIRECTORY

        self._request(
            "PATCH",
            f"/v9/projects/{project['id']}",
            operation="link_git",
            error_cls=GitDeployFailedError,
            json={
                "gitRepository": {"repo": git_ref.path, "type": git_ref.provider},
                "buildCommand": build_command,
                "outputDirectory": output_directory,
            },
        )
        response = self._request(
            "POST",
            "/v13/deployments",
            operation="deploy_git",
            error_cls=GitDeployFailedError,
            json={
                "name": request.project_name,
                "gitSource": {
                    "type": git_ref.provider,
                    "repo": git_ref.path,
                    "ref": git.branch,
                },
                "target": "production",
                "project": project["id"],
                "projectSettings": {
                    "buildCommand": build_command,
                    "outputDirectory": output_directory,
                    "installCommand": DEFAULT_INSTALL_COMMAND,
                },
                "env": dict(request.environment),
            },
        )
        deployment = self._json_object(
            response,
            operation="deploy_git",
            error_cls=GitDeployFailedError,
        )
        return self._deployment_result(
            deployment,
            project=project,
            extra={
                "git_repo": git_ref.path,
                "git_provider": git_ref.provider,
                "branch": git.branch,
            },
        )

    def _ensure_project(self, name: str, *, git: GitSource | None) -> dict[str, Any]:
        existing = self._request(
            "GET",
            f"/v9/projects/{name}",
            operation="get_project",
            error_cls=ProjectCreationFailedError,
            allow_status=(HTTPStatus.NOT_FOUND,),
        )
        if existing.status_code != HTTPStatus.NOT_FOUND:
            return self._json_object(
                existing,
                operation="get_project",
                error_cls=ProjectCreationFailedError,
                required=("id",),
            )

        body: dict[str, Any] = {"name": name}
        if git is not None:
            body.update(
                {
                    "buildCommand": git.build_command or DEFAULT_BUILD_COMMAND,
                    "outputDirectory": git.output_directory or DEFAULT_OUTPUT_DIRECTORY,
                    "installCommand": DEFAULT_INSTALL_COMMAND,
                },
            )
        created = self._request(
            "POST",
            "/v10/projects",
            operation="create_project",
            error_cls=ProjectCreationFailedError,
            json=body,
        )
        project = self._json_object(
            created,
            operation="create_project",
            error_cls=ProjectCreationFailedError,
            required=("id",),
        )
        logger.info("Created Vercel project %s (%s)", project.get("name"), project.get("id"))
        return project

    def _deployment_result(
        self,
        deployment: dict[str, Any],
        *,
        project: dict[str, Any],
        extra: dict[str, Any],
    ) -> DeploymentResult:
        return DeploymentResult(
            success=True,
            platform=self.platform,
            status=map_status(_native_state(deployment), VERCEL_STATE_MAP),
            deployment_id=_deployment_id(deployment),
            url=_https(deployment.get("url")),
            project_id=project["id"],
            metadata={
                "project_id": project["id"],
                "alias": deployment.get("alias"),
                "target": deployment.get("target"),
                **extra,
            },
        )

    def _setup_custom_domain_impl(
        self,
        config: CustomDomainConfig,
        project_id: str,
    ) -> DomainSetupResult:
        response = self._request(
            "POST",
            f"/v10/projects/{project_id}/domains",
            operation="setup_custom_domain",
            error_cls=DomainAddFailedError,
            json={"name": config.domain},
            allow_status=(HTTPStatus.CONFLICT,),
        )
        if response.status_code == HTTPStatus.CONFLICT:
            # Already attached here succeeds; attached to another project raises.
            response = self._request(
                "GET",
                f"/v9/projects/{project_id}/domains/{config.domain}",
                operation="setup_custom_domain",
                error_cls=DomainAddFailedError,
            )
        domain = self._json_object(
            response,
            operation="setup_custom_domain",
            error_cls=DomainAddFailedError,
        )

        records = self._fetch_dns_records(config)
        for challenge in domain.get("verification") or []:
            if isinstance(challenge, dict) and challenge.get("type") and challenge.get("domain"):
                records.append(
                    DnsRecord(
                        type=challenge["type"],
                        name=challenge["domain"],
                        value=challenge.get("value", ""),
                        description=challenge.get("reason"),
                    ),
                )
        return DomainSetupResult(
            success=True,
            domain=config.domain,
            verified=bool(domain.get("verified", False)),
            dns_records=tuple(records),
        )

    def _fetch_dns_records(self, config: CustomDomainConfig) -> list[DnsRecord]:
        try:
            response = self._request(
                "GET",
                f"/v6/domains/{config.domain}/config",
                operation="get_domain_config",
                error_cls=DomainAddFailedError,
            )
            payload = self._json_object(
                response,
                operation="get_domain_config",
                error_cls=DomainAddFailedError,
            )
        except DeploymentError as error:
            logger.debug("Vercel domain config lookup for %s failed: %s", config.domain, error)
            return []

        configured_by = payload.get("configuredBy")
        if configured_by == "CNAME":
            return [DnsRecord(type="CNAME", name=config.subdomain, value=VERCEL_CNAME_TARGET)]
        if configured_by == "A":
            return [DnsRecord(type="A", name=config.subdomain, value=VERCEL_A_RECORD)]
        return []

    def _verify_custom_domain_impl(self, domain: str, project_id: str) -> DomainVerification:
        response = self._request(
            "GET",
            f"/v9/projects/{project_id}/domains/{domain}",
            operation="verify_custom_domain",
            error_cls=DomainVerifyFailedError,
        )
        payload = self._json_object(
            response,
            operation="verify_custom_domain",
            error_cls=DomainVerifyFailedError,
        )
        return DomainVerification(
            success=True,
            verified=bool(payload.get("verified", False)),
            domain=domain,
        )

    def _delete_deployment_impl(self, deployment_id: str) -> None:
        self._request(
            "DELETE",
            f"/v13/deployments/{deployment_id}",
            operation="delete_deployment",
            error_cls=DeleteFailedError,
        )

    def _list_deployments_impl(self, limit: int) -> list[DeploymentSummary]:
        response = self._request(
            "GET",
            "/v6/deployments",
            operation="list_deployments",
            error_cls=ListFailedError,
            params={"limit": limit},
        )
        payload = self._json_object(
            response,
            operation="list_deployments",
            error_cls=ListFailedError,
        )
        return [
            DeploymentSummary(
                deployment_id=_deployment_id(item) or "",
                name=item.get("name", ""),
                url=_https(item.get("url")) or "",
                status=map_status(_native_state(item), VERCEL_STATE_MAP),
                created_at=_from_epoch_ms(item.get("created") or item.get("createdAt")),
                platform=self.platform,
            )
            for item in (payload.get("deployments") or [])[:limit]
            if isinstance(item, dict)
        ]


def _native_state(deployment: dict[str, Any]) -> str | None:
    return deployment.get("readyState") or deployment.get("state")


def _deployment_id(deployment: dict[str, Any]) -> str | None:
    return deployment.get("id") or deployment.get("uid")


def _https(host: str | None) -> str | None:
    if not host:
        return None
    if host.startswith(("http://", "https://")):
        return host
    return f"https://{host}"


def _from_epoch_ms(value: int | float | None) -> datetime:
    if value is None:
        return utc_now()
    return datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
