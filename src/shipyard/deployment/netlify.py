"""Netlify adapter: sites API for projects, deploys and custom domains."""

from __future__ import annotations

import logging
from datetime import datetime
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
from shipyard.storage.common import to_utc_aware_datetime, utc_now

logger = logging.getLogger(__name__)

NETLIFY_API_URL = "https://api.netlify.com/api/v1"
DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_PUBLISH_DIR = "dist"

NETLIFY_STATE_MAP: dict[str, DeploymentStatus] = {
    "new": DeploymentStatus.PENDING,
    "uploading": DeploymentStatus.PENDING,
    "uploaded": DeploymentStatus.PENDING,
    "enqueued": DeploymentStatus.PENDING,
    "preparing": DeploymentStatus.BUILDING,
    "prepared": DeploymentStatus.BUILDING,
    "processing": DeploymentStatus.BUILDING,
    "building": DeploymentStatus.BUILDING,
    "ready": DeploymentStatus.READY,
    "error": DeploymentStatus.ERROR,
    "rejected": DeploymentStatus.ERROR,
}


class NetlifyAdapter(HttpDeploymentAdapter):
    """Deploys to Netlify sites; the site id is the project id."""

    platform = DeploymentPlatform.NETLIFY
    base_url = NETLIFY_API_URL

    def get_deployment_status(self, deployment_id: str) -> DeploymentResult:
        response = self._request(
            "GET",
            f"/deploys/{deployment_id}",
            operation="get_deployment_status",
            error_cls=StatusFetchFailedError,
        )
        deploy = self._json_object(
            response,
            operation="get_deployment_status",
            error_cls=StatusFetchFailedError,
        )
        status = map_status(deploy.get("state"), NETLIFY_STATE_MAP)
        return DeploymentResult(
            success=status == DeploymentStatus.READY,
            platform=self.platform,
            status=status,
            deployment_id=deploy.get("id", deployment_id),
            url=_deploy_url(deploy),
            project_id=deploy.get("site_id"),
            error=deploy.get("error_message"),
            metadata={
                "admin_url": deploy.get("admin_url"),
                "build_id": deploy.get("build_id"),
            },
        )

    def _deploy_files(self, request: DeploymentRequest) -> DeploymentResult:
        site = self._ensure_site(request.project_name)
        files = {path.lstrip("/"): content for path, content in (request.files or {}).items()}
        response = self._request(
            "POST",
            f"/sites/{site['id']}/deploys",
            operation="deploy_files",
            error_cls=DeploymentFailedError,
            json={"files": files, "async": False},
        )
        deploy = self._json_object(response, operation="deploy_files", required=("id",))
        return DeploymentResult(
            success=True,
            platform=self.platform,
            status=map_status(deploy.get("state"), NETLIFY_STATE_MAP),
            deployment_id=deploy.get("id"),
            url=_deploy_url(deploy),
            project_id=site["id"],
            metadata={
                "site_id": site["id"],
                "site_name": site.get("name"),
                "admin_url": deploy.get("admin_url") or site.get("admin_url"),
                "site_url": site.get("ssl_url") or site.get("url"),
                "created_at": deploy.get("created_at"),
            },
        )

    def _deploy_git(
        self,
        request: DeploymentRequest,
        git: GitSource,
        git_ref: GitRepoRef,
    ) -> DeploymentResult:
        site = self._ensure_site(request.project_name)
        build_command = git.build_command or DEFAULT_BUILD_COMMAND
        publish_dir = git.output_directory or DEFAULT_PUBLISH_DIR

        self._request(
            "PATCH",
            f"/sites/{site['id']}",
            operation="link_git",
            error_cls=GitDeployFailedError,
            json={
                "repo": {
                    "provider": git_ref.provider,
                    "repo": git_ref.path,
                    "branch": git.branch,
                    "cmd": build_command,
                    "dir": publish_dir,
                },
                "build_settings": {
                    "cmd": build_command,
                    "dir": publish_dir,
                    "env": dict(request.environment),
                },
            },
        )
        response = self._request(
            "POST",
            f"/sites/{site['id']}/builds",
            operation="deploy_git",
            error_cls=GitDeployFailedError,
        )
        build = self._json_object(response, operation="deploy_git", error_cls=GitDeployFailedError)
        return DeploymentResult(
            success=True,
            platform=self.platform,
            status=DeploymentStatus.BUILDING if not build.get("done") else DeploymentStatus.READY,
            deployment_id=build.get("deploy_id") or build.get("id") or site["id"],
            url=site.get("ssl_url") or site.get("url"),
            project_id=site["id"],
            metadata={
                "site_id": site["id"],
                "site_name": site.get("name"),
                "admin_url": site.get("admin_url"),
                "build_id": build.get("id"),
                "git_repo": git_ref.path,
                "git_provider": git_ref.provider,
                "branch": git.branch,
            },
        )

    def _ensure_site(self, name: str) -> dict[str, Any]:
        existing = self._request(
            "GET",
            f"/sites/{name}.netlify.app",
            operation="get_site",
            error_cls=ProjectCreationFailedError,
            allow_status=(HTTPStatus.NOT_FOUND,),
        )
        if existing.status_code != HTTPStatus.NOT_FOUND:
            site = self._json_object(
                existing,
                operation="get_site",
                error_cls=ProjectCreationFailedError,
                required=("id",),
            )
            logger.debug("Reusing Netlify site %s (%s)", site.get("name"), site.get("id"))
            return site

        path = f"/{self.team_id}/sites" if self.team_id else "/sites"
        created = self._request(
            "POST",
            path,
            operation="create_site",
            error_cls=ProjectCreationFailedError,
            json={"name": name, "build_settings": {}},
        )
        site = self._json_object(
            created,
            operation="create_site",
            error_cls=ProjectCreationFailedError,
            required=("id",),
        )
        logger.info("Created Netlify site %s (%s)", site.get("name"), site.get("id"))
        return site

    def _setup_custom_domain_impl(
        self,
        config: CustomDomainConfig,
        project_id: str,
    ) -> DomainSetupResult:
        site = self._json_object(
            self._request(
                "GET",
                f"/sites/{project_id}",
                operation="setup_custom_domain",
                error_cls=DomainAddFailedError,
            ),
            operation="setup_custom_domain",
            error_cls=DomainAddFailedError,
        )
        if site.get("custom_domain") != config.domain:
            response = self._request(
                "PATCH",
                f"/sites/{project_id}",
                operation="setup_custom_domain",
                error_cls=DomainAddFailedError,
                json={"custom_domain": config.domain},
            )
            site = self._json_object(
                response,
                operation="setup_custom_domain",
                error_cls=DomainAddFailedError,
            )

        records: list[DnsRecord] = []
        default_domain = site.get("default_domain") or (
            f"{site['name']}.netlify.app" if site.get("name") else None
        )
        if default_domain:
            records.append(
                DnsRecord(type="CNAME", name=config.subdomain, value=default_domain),
            )
        records.extend(self._fetch_dns_records(project_id))
        return DomainSetupResult(
            success=True,
            domain=config.domain,
            verified=False,
            dns_records=tuple(records),
        )

    def _fetch_dns_records(self, site_id: str) -> list[DnsRecord]:
        try:
            response = self._request(
                "GET",
                f"/sites/{site_id}/dns",
                operation="get_dns",
                error_cls=DomainAddFailedError,
            )
            payload = self._json(response, operation="get_dns", error_cls=DomainAddFailedError)
        except DeploymentError as error:
            logger.debug("Netlify DNS lookup for site %s failed: %s", site_id, error)
            return []

        zones = payload if isinstance(payload, list) else [payload]
        records: list[DnsRecord] = []
        for zone in zones:
            if not isinstance(zone, dict):
                continue
            for record in zone.get("records") or []:
                if not isinstance(record, dict):
                    continue
                if not record.get("type") or not record.get("hostname"):
                    continue
                records.append(
                    DnsRecord(
                        type=record["type"],
                        name=record["hostname"],
                        value=record.get("value", ""),
                    ),
                )
        return records

    def _verify_custom_domain_impl(self, domain: str, project_id: str) -> DomainVerification:
        response = self._request(
            "GET",
            f"/sites/{project_id}",
            operation="verify_custom_domain",
            error_cls=DomainVerifyFailedError,
        )
        site = self._json_object(
            response,
            operation="verify_custom_domain",
            error_cls=DomainVerifyFailedError,
        )
        aliases = site.get("domain_aliases") or []
        verified = site.get("custom_domain") == domain or domain in aliases
        return DomainVerification(success=True, verified=verified, domain=domain)

    def _delete_deployment_impl(self, deployment_id: str) -> None:
        response = self._request(
            "GET",
            f"/deploys/{deployment_id}",
            operation="delete_deployment",
            error_cls=DeleteFailedError,
        )
        deploy = self._json_object(
            response,
            operation="delete_deployment",
            error_cls=DeleteFailedError,
        )
        site_id = deploy.get("site_id")
        if not site_id:
            raise DeleteFailedError(
                "Site id not found in deployment data",
                platform=self.platform.value,
                operation="delete_deployment",
            )
        # Netlify removes deploys together with their site.
        self._request(
            "DELETE",
            f"/sites/{site_id}",
            operation="delete_deployment",
            error_cls=DeleteFailedError,
        )

    def _list_deployments_impl(self, limit: int) -> list[DeploymentSummary]:
        response = self._request(
            "GET",
            "/sites",
            operation="list_deployments",
            error_cls=ListFailedError,
            params={"per_page": limit},
        )
        sites = self._json(response, operation="list_deployments", error_cls=ListFailedError)
        if not isinstance(sites, list):
            raise ListFailedError(
                "Netlify returned an unexpected site listing",
                platform=self.platform.value,
                operation="list_deployments",
                status_code=response.status_code,
            )
        summaries: list[DeploymentSummary] = []
        for site in sites[:limit]:
            if not isinstance(site, dict) or not site.get("id"):
                continue
            published = site.get("published_deploy") or {}
            summaries.append(
                DeploymentSummary(
                    deployment_id=published.get("id") or site["id"],
                    name=site.get("name", ""),
                    url=site.get("ssl_url") or site.get("url", ""),
                    status=(
                        map_status(published.get("state"), NETLIFY_STATE_MAP)
                        if published
                        else DeploymentStatus.READY
                    ),
                    created_at=_parse_timestamp(site.get("created_at")),
                    platform=self.platform,
                ),
            )
        return summaries


def _deploy_url(deploy: dict[str, Any]) -> str | None:
    return deploy.get("deploy_ssl_url") or deploy.get("ssl_url") or deploy.get("deploy_url")


def _parse_timestamp(value: str | None) -> datetime:
    if not value:
        return utc_now()
    try:
        return to_utc_aware_datetime(datetime.fromisoformat(value))
    except ValueError:
        logger.debug("Unparseable Netlify timestamp %r", value)
        return utc_now()
