"""Adapter contract and shared HTTP plumbing for hosting providers."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import replace
from typing import Any, Protocol

import httpx

from shipyard import __version__
from shipyard.deployment.git_urls import GitRepoRef, parse_git_url
from shipyard.deployment.models import (
    CustomDomainConfig,
    DeleteResult,
    DeploymentListing,
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    DeploymentSummary,
    DomainSetupResult,
    DomainVerification,
    GitSource,
)
from shipyard.deployment.subdomains import full_domain
from shipyard.errors import (
    DeploymentError,
    DeploymentFailedError,
    ErrorKind,
    InvalidConfigError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
MIN_LIST_LIMIT = 1
MAX_LIST_LIMIT = 100
_PROVIDER_ERROR_MAX_CHARS = 2_000
USER_AGENT = f"shipyard-deployment-service/{__version__}"
# Project names become URL path segments on both providers.
PROJECT_NAME_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,99}")


class DeploymentAdapter(Protocol):
    """Protocol implemented by every hosting provider adapter."""

    platform: DeploymentPlatform

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Create or reuse a remote project and deploy files or a git source."""

    def get_deployment_status(self, deployment_id: str) -> DeploymentResult:
        """Fetch one deployment and map its state onto ``DeploymentStatus``."""

    def setup_custom_domain(
        self,
        config: CustomDomainConfig,
        project_id: str | None = None,
    ) -> DomainSetupResult:
        """Attach a domain; re-attaching an attached domain succeeds."""

    def verify_custom_domain(
        self,
        domain: str,
        project_id: str | None = None,
    ) -> DomainVerification:
        """Read-only verification check."""

    def delete_deployment(self, deployment_id: str) -> DeleteResult: ...

    def list_deployments(self, limit: int = 20) -> DeploymentListing: ...

    def close(self) -> None: ...


def clamp_limit(limit: int) -> int:
    """Clamp a caller-supplied page size into the providers' accepted range."""

    return max(MIN_LIST_LIMIT, min(MAX_LIST_LIMIT, int(limit)))


def map_status(
    native_state: str | None,
    state_map: Mapping[str, DeploymentStatus],
) -> DeploymentStatus:
    """Map a provider state; unknown states are pending, never ready."""

    if native_state is None:
        return DeploymentStatus.PENDING
    return state_map.get(native_state, DeploymentStatus.PENDING)


class HttpDeploymentAdapter:
    """Base class with an authenticated ``httpx.Client`` and the shared deploy flow.

    Subclasses implement the provider-specific ``_deploy_files``, ``_deploy_git``
    and the ``_..._impl`` hooks; this class owns validation, error wrapping and
    the degraded-result conversions.
    """

    platform: DeploymentPlatform
    base_url: str

    def __init__(  # noqa: PLR0913
        self,
        access_token: str,
        *,
        team_id: str | None = None,
        base_domain: str = "shipyard.link",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        max_retries: int = 1,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not access_token:
            raise InvalidConfigError(
                "Access token is required",
                platform=self.platform.value,
                operation="init",
            )
        self.team_id = team_id
        self.base_domain = base_domain
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport or httpx.HTTPTransport(retries=max_retries),
        )

    def close(self) -> None:
        """Close the HTTP connection pool."""

        self._client.close()

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """Validate, deploy, then attach ``request.subdomain`` on a best-effort basis."""

        git_ref = self._validate_request(request)
        if request.git is not None and git_ref is not None:
            result = self._deploy_git(request, request.git, git_ref)
        else:
            result = self._deploy_files(request)

        if request.subdomain:
            result = self._attach_domain_best_effort(result, request.subdomain)
        return result

    def setup_custom_domain(
        self,
        config: CustomDomainConfig,
        project_id: str | None = None,
    ) -> DomainSetupResult:
        if not project_id:
            return DomainSetupResult(
                success=False,
                domain=config.domain,
                error=f"Project id is required for {self.platform.value} domain setup",
                error_kind=ErrorKind.INVALID_CONFIG,
            )
        try:
            return self._setup_custom_domain_impl(config, project_id)
        except DeploymentError as error:
            return DomainSetupResult(
                success=False,
                domain=config.domain,
                error=str(error),
                error_kind=error.kind,
            )

    def verify_custom_domain(
        self,
        domain: str,
        project_id: str | None = None,
    ) -> DomainVerification:
        if not project_id:
            return DomainVerification(
                success=False,
                verified=False,
                domain=domain,
                error=f"Project id is required for {self.platform.value} domain verification",
                error_kind=ErrorKind.INVALID_CONFIG,
            )
        try:
            return self._verify_custom_domain_impl(domain, project_id)
        except DeploymentError as error:
            return DomainVerification(
                success=False,
                verified=False,
                domain=domain,
                error=str(error),
                error_kind=error.kind,
            )

    def delete_deployment(self, deployment_id: str) -> DeleteResult:
        try:
            self._delete_deployment_impl(deployment_id)
        except DeploymentError as error:
            return DeleteResult(
                success=False,
                deployment_id=deployment_id,
                error=str(error),
                error_kind=error.kind,
            )
        return DeleteResult(success=True, deployment_id=deployment_id)

    def list_deployments(self, limit: int = 20) -> DeploymentListing:
        try:
            deployments = self._list_deployments_impl(clamp_limit(limit))
        except DeploymentError as error:
            return DeploymentListing(success=False, error=str(error), error_kind=error.kind)
        return DeploymentListing(success=True, deployments=tuple(deployments))

    def _validate_request(self, request: DeploymentRequest) -> GitRepoRef | None:
        if not request.project_name or not request.project_name.strip():
            raise InvalidConfigError(
                "Project name is required",
                platform=self.platform.value,
                operation="deploy",
            )
        if not PROJECT_NAME_PATTERN.fullmatch(request.project_name):
            raise InvalidConfigError(
                "Project name may only contain letters, digits, dots, underscores and hyphens",
                platform=self.platform.value,
                operation="deploy",
                details={"project_name": request.project_name},
            )
        has_files = request.files is not None
        has_git = request.git is not None
        if has_files == has_git:
            raise InvalidConfigError(
                "Exactly one of files or git source must be provided for deployment",
                platform=self.platform.value,
                operation="deploy",
                details={"has_files": has_files, "has_git": has_git},
            )
        if request.git is None:
            return None

        git_ref = parse_git_url(request.git.url)
        if git_ref.is_empty or git_ref.provider is None:
            raise InvalidConfigError(
                f"Unsupported or malformed git repository URL: {request.git.url!r}",
                platform=self.platform.value,
                operation="deploy",
            )
        return git_ref

    def _attach_domain_best_effort(
        self,
        result: DeploymentResult,
        subdomain: str,
    ) -> DeploymentResult:
        domain = full_domain(subdomain, self.base_domain)
        setup = self.setup_custom_domain(
            CustomDomainConfig(subdomain=subdomain, domain=domain),
            result.project_id,
        )
        if setup.success:
            return replace(result, custom_domain=setup.domain)

        logger.warning(
            "%s deployment %s succeeded but domain %s was not attached: %s",
            self.platform.value,
            result.deployment_id,
            domain,
            setup.error,
        )
        metadata = dict(result.metadata)
        metadata["domain_error"] = setup.error
        metadata["domain_error_kind"] = setup.error_kind.value if setup.error_kind else None
        return replace(result, custom_domain=None, metadata=metadata)

    def _request(  # noqa: PLR0913
        self,
        method: str,
        path: str,
        *,
        operation: str,
        error_cls: type[DeploymentError] = DeploymentFailedError,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        allow_status: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Send one request; transport errors and non-2xx become ``error_cls``."""

        merged_params = dict(self._default_params())
        if params:
            merged_params.update(params)
        try:
            response = self._client.request(
                method,
                path,
                json=json,
                params=merged_params or None,
            )
        except httpx.TimeoutException as exc:
            raise error_cls(
                f"{self.platform.value} request timed out",
                platform=self.platform.value,
                operation=operation,
                details={"method": method, "path": path},
            ) from exc
        except httpx.HTTPError as exc:
            raise error_cls(
                f"{self.platform.value} request failed: {exc}",
                platform=self.platform.value,
                operation=operation,
                details={"method": method, "path": path},
            ) from exc

        if response.is_success or response.status_code in allow_status:
            return response
        raise error_cls(
            f"{self.platform.value} returned HTTP {response.status_code}",
            platform=self.platform.value,
            operation=operation,
            status_code=response.status_code,
            provider_error=response.text[:_PROVIDER_ERROR_MAX_CHARS],
        )

    def _json(
        self,
        response: httpx.Response,
        *,
        operation: str,
        error_cls: type[DeploymentError] = DeploymentFailedError,
    ) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise error_cls(
                f"{self.platform.value} returned a non-JSON body",
                platform=self.platform.value,
                operation=operation,
                status_code=response.status_code,
                provider_error=response.text[:_PROVIDER_ERROR_MAX_CHARS],
            ) from exc

    def _json_object(
        self,
        response: httpx.Response,
        *,
        operation: str,
        error_cls: type[DeploymentError] = DeploymentFailedError,
        required: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        """Decode a JSON object body; other shapes or missing ``required`` keys raise."""

        payload = self._json(response, operation=operation, error_cls=error_cls)
        if not isinstance(payload, dict):
            raise error_cls(
                f"{self.platform.value} returned {type(payload).__name__} instead of an object",
                platform=self.platform.value,
                operation=operation,
                status_code=response.status_code,
                provider_error=response.text[:_PROVIDER_ERROR_MAX_CHARS],
            )
        missing = [key for key in required if not payload.get(key)]
        if missing:
            raise error_cls(
                f"{self.platform.value} response is missing {', '.join(missing)}",
                platform=self.platform.value,
                operation=operation,
                status_code=response.status_code,
                provider_error=response.text[:_PROVIDER_ERROR_MAX_CHARS],
                details={"missing": missing},
            )
        return payload

    def _default_params(self) -> Mapping[str, Any]:
        return {}

    def _deploy_files(self, request: DeploymentRequest) -> DeploymentResult:
        raise NotImplementedError

    def _deploy_git(
        self,
        request: DeploymentRequest,
        git: GitSource,
        git_ref: GitRepoRef,
    ) -> DeploymentResult:
        raise NotImplementedError

    def _setup_custom_domain_impl(
        self,
        config: CustomDomainConfig,
        project_id: str,
    ) -> DomainSetupResult:
        raise NotImplementedError

    def _verify_custom_domain_impl(self, domain: str, project_id: str) -> DomainVerification:
        raise NotImplementedError

    def _delete_deployment_impl(self, deployment_id: str) -> None:
        raise NotImplementedError

    def _list_deployments_impl(self, limit: int) -> list[DeploymentSummary]:
        raise NotImplementedError
