"""Deployment orchestrator: adapter selection, domain sequencing, lifecycle events."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from shipyard.deployment.analytics import (
    AnalyticsEvent,
    AnalyticsSink,
    NullAnalytics,
    PostHogAnalytics,
)
from shipyard.deployment.base import DeploymentAdapter, clamp_limit
from shipyard.deployment.models import (
    CustomDomainConfig,
    DeleteResult,
    DeploymentListing,
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentSummary,
    DnsRecord,
    DomainSetupResult,
    DomainVerification,
    PlatformInstructions,
)
from shipyard.deployment.netlify import NetlifyAdapter
from shipyard.deployment.repository import DeploymentRecordRepository
from shipyard.deployment.subdomains import full_domain, is_valid_subdomain
from shipyard.deployment.vercel import VERCEL_CNAME_TARGET, VercelAdapter
from shipyard.errors import (
    DeploymentError,
    DeploymentTimeoutError,
    InvalidSubdomainError,
    ServiceNotConfiguredError,
)

if TYPE_CHECKING:
    from shipyard.config import Settings

logger = logging.getLogger(__name__)

INVALID_SUBDOMAIN_MESSAGE = (
    "Invalid subdomain format. Must be 3-63 characters, alphanumeric and hyphens only."
)
NETLIFY_PLACEHOLDER_TARGET = "your-netlify-site.netlify.app"


class DeploymentManager:
    """Routes deployment calls to the adapter registered for each platform.

    The adapter registry is injected; ``from_settings`` builds it from whichever
    provider credentials are present.
    """

    def __init__(  # noqa: PLR0913
        self,
        adapters: Mapping[DeploymentPlatform, DeploymentAdapter],
        *,
        base_domain: str = "shipyard.link",
        analytics: AnalyticsSink | None = None,
        records: DeploymentRecordRepository | None = None,
        poll_initial_seconds: float = 2.0,
        poll_max_seconds: float = 30.0,
        wait_timeout_seconds: float = 600.0,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._adapters = dict(adapters)
        self.base_domain = base_domain
        self.analytics = analytics or NullAnalytics()
        self.records = records
        self.poll_initial_seconds = poll_initial_seconds
        self.poll_max_seconds = poll_max_seconds
        self.wait_timeout_seconds = wait_timeout_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        records: DeploymentRecordRepository | None = None,
    ) -> DeploymentManager:
        """Register one adapter per credentialed platform; none is not an error."""

        deployment = settings.deployment
        adapters: dict[DeploymentPlatform, DeploymentAdapter] = {}
        common: dict[str, Any] = {
            "base_domain": deployment.base_domain,
            "timeout_seconds": deployment.request_timeout_seconds,
            "connect_timeout_seconds": deployment.connect_timeout_seconds,
            "max_retries": deployment.http_retries,
        }
        for platform in deployment.credentialed_platforms():
            if platform == DeploymentPlatform.NETLIFY:
                adapters[platform] = NetlifyAdapter(
                    deployment.netlify_access_token or "",
                    team_id=deployment.netlify_team_id,
                    **common,
                )
            else:
                adapters[platform] = VercelAdapter(
                    deployment.vercel_access_token or "",
                    team_id=deployment.vercel_team_id,
                    **common,
                )
            logger.info("%s deployment adapter registered", platform.value)
        if not adapters:
            logger.warning("No deployment platforms configured; set provider access tokens")

        analytics: AnalyticsSink
        if settings.analytics.active and settings.analytics.posthog_api_key:
            analytics = PostHogAnalytics(
                api_key=settings.analytics.posthog_api_key,
                host=settings.analytics.posthog_host,
                timeout_seconds=settings.analytics.timeout_seconds,
            )
        else:
            analytics = NullAnalytics()

        return cls(
            adapters,
            base_domain=deployment.base_domain,
            analytics=analytics,
            records=records,
            poll_initial_seconds=deployment.status_poll_initial_seconds,
            poll_max_seconds=deployment.status_poll_max_seconds,
            wait_timeout_seconds=deployment.status_wait_timeout_seconds,
        )

    def close(self) -> None:
        """Release adapter and analytics HTTP clients."""

        for adapter in self._adapters.values():
            adapter.close()
        close = getattr(self.analytics, "close", None)
        if callable(close):
            close()

    def get_available_platforms(self) -> list[DeploymentPlatform]:
        return list(self._adapters)

    def deploy(
        self,
        request: DeploymentRequest,
        *,
        task_id: str | None = None,
    ) -> DeploymentResult:
        """Validate, run the adapter and emit lifecycle events; adapter errors propagate."""

        if request.subdomain and not is_valid_subdomain(request.subdomain):
            raise InvalidSubdomainError(
                INVALID_SUBDOMAIN_MESSAGE,
                platform=request.platform.value,
                operation="deploy",
                details={"subdomain": request.subdomain},
            )
        adapter = self._adapter(request.platform, operation="deploy")

        logger.info(
            "Starting %s deployment of %s (subdomain=%s)",
            request.platform.value,
            request.project_name,
            request.subdomain,
        )
        base_properties = {
            "platform": request.platform.value,
            "project_name": request.project_name,
            "subdomain": request.subdomain or "",
        }
        self._track(
            "deployment_started",
            {
                **base_properties,
                "has_git_repo": request.git is not None,
                "has_files": request.files is not None,
            },
        )

        started = self._monotonic()
        try:
            result = adapter.deploy(request)
        except Exception as error:
            duration_ms = self._elapsed_ms(started)
            kind = getattr(error, "kind", None)
            self._track(
                "deployment_failed",
                {
                    **base_properties,
                    "duration_ms": duration_ms,
                    "success": False,
                    "error_kind": kind.value if kind else None,
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                },
            )
            logger.error(
                "%s deployment of %s failed after %dms: %s",
                request.platform.value,
                request.project_name,
                duration_ms,
                error,
            )
            if self.records is not None:
                self.records.record_failure(request, error, task_id=task_id)
            raise

        duration_ms = self._elapsed_ms(started)
        self._track(
            "deployment_completed" if result.success else "deployment_failed",
            {
                **base_properties,
                "deployment_id": result.deployment_id,
                "duration_ms": duration_ms,
                "success": result.success,
                "error_message": result.error,
                "custom_domain": result.custom_domain,
                "status": result.status.value,
            },
        )
        logger.info(
            "%s deployment %s finished in %dms: url=%s custom_domain=%s status=%s",
            request.platform.value,
            result.deployment_id,
            duration_ms,
            result.url,
            result.custom_domain,
            result.status.value,
        )
        if self.records is not None:
            self.records.record_result(request, result, task_id=task_id)
        return result

    def get_deployment_status(
        self,
        platform: DeploymentPlatform,
        deployment_id: str,
    ) -> DeploymentResult:
        adapter = self._adapter(platform, operation="get_deployment_status")
        result = adapter.get_deployment_status(deployment_id)
        if self.records is not None:
            self.records.update_status(result)
        return result

    def wait_for_deployment(
        self,
        platform: DeploymentPlatform,
        deployment_id: str,
        *,
        timeout_seconds: float | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> DeploymentResult:
        """Poll with exponential backoff until a terminal status or the timeout.

        Raises ``DeploymentTimeoutError`` when the deadline passes first or when
        ``should_stop`` asks to abandon the wait. Abandoning never cancels the
        remote deployment.
        """

        timeout = self.wait_timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = self._monotonic() + max(0.0, timeout)
        delay = self.poll_initial_seconds
        polls = 0
        while True:
            result = self.get_deployment_status(platform, deployment_id)
            polls += 1
            if result.status.is_terminal:
                logger.info(
                    "%s deployment %s reached %s after %d poll(s)",
                    platform.value,
                    deployment_id,
                    result.status.value,
                    polls,
                )
                return result

            remaining = deadline - self._monotonic()
            if remaining <= 0 or (should_stop is not None and should_stop()):
                raise DeploymentTimeoutError(
                    f"Deployment still {result.status.value} after {polls} poll(s)",
                    platform=platform.value,
                    operation="wait_for_deployment",
                    details={
                        "deployment_id": deployment_id,
                        "last_status": result.status.value,
                        "timeout_seconds": timeout,
                    },
                )
            self._sleep(min(delay, remaining))
            delay = min(self.poll_max_seconds, delay * 2)

    def setup_custom_subdomain(
        self,
        subdomain: str,
        platform: DeploymentPlatform,
        project_id: str | None = None,
    ) -> DomainSetupResult:
        """Attach ``<subdomain>.<base_domain>``; failures degrade to ``success=False``."""

        domain = full_domain(subdomain, self.base_domain)
        try:
            if not is_valid_subdomain(subdomain):
                raise InvalidSubdomainError(
                    INVALID_SUBDOMAIN_MESSAGE,
                    platform=platform.value,
                    operation="setup_custom_subdomain",
                    details={"subdomain": subdomain},
                )
            adapter = self._adapter(platform, operation="setup_custom_subdomain")
            logger.info("Setting up %s on %s (project=%s)", domain, platform.value, project_id)
            result = adapter.setup_custom_domain(
                CustomDomainConfig(subdomain=subdomain, domain=domain),
                project_id,
            )
        except DeploymentError as error:
            logger.warning("Custom subdomain setup for %s failed: %s", domain, error)
            return DomainSetupResult(
                success=False,
                domain=domain,
                error=str(error),
                error_kind=error.kind,
            )

        self._track(
            "domain_configured",
            {
                "platform": platform.value,
                "subdomain": subdomain,
                "custom_domain": domain,
                "project_id": project_id,
                "success": result.success,
                "error_message": result.error,
            },
        )
        if not result.success:
            logger.warning("Custom subdomain setup for %s failed: %s", domain, result.error)
            return DomainSetupResult(
                success=False,
                domain=domain,
                error=result.error,
                error_kind=result.error_kind,
            )

        logger.info("Custom subdomain %s configured (verified=%s)", domain, result.verified)
        return DomainSetupResult(
            success=True,
            domain=domain,
            verified=result.verified,
            dns_records=build_dns_instructions(
                subdomain,
                platform,
                result.dns_records,
                base_domain=self.base_domain,
            ),
        )

    def verify_custom_domain(
        self,
        domain: str,
        platform: DeploymentPlatform,
        project_id: str | None = None,
    ) -> DomainVerification:
        """Read-only verification; failures degrade to ``success=False``."""

        try:
            adapter = self._adapter(platform, operation="verify_custom_domain")
            result = adapter.verify_custom_domain(domain, project_id)
        except DeploymentError as error:
            logger.warning("Domain verification for %s failed: %s", domain, error)
            return DomainVerification(
                success=False,
                verified=False,
                domain=domain,
                error=str(error),
                error_kind=error.kind,
            )

        self._track(
            "domain_verified",
            {
                "platform": platform.value,
                "custom_domain": domain,
                "project_id": project_id,
                "success": result.success,
                "verified": result.verified,
                "error_message": result.error,
            },
        )
        logger.info(
            "Domain verification for %s on %s: success=%s verified=%s",
            domain,
            platform.value,
            result.success,
            result.verified,
        )
        return result

    def delete_deployment(self, platform: DeploymentPlatform, deployment_id: str) -> DeleteResult:
        try:
            adapter = self._adapter(platform, operation="delete_deployment")
            result = adapter.delete_deployment(deployment_id)
        except DeploymentError as error:
            logger.warning(
                "Deleting %s deployment %s failed: %s",
                platform.value,
                deployment_id,
                error,
            )
            return DeleteResult(
                success=False,
                deployment_id=deployment_id,
                error=str(error),
                error_kind=error.kind,
            )
        logger.info(
            "Deleted %s deployment %s: success=%s",
            platform.value,
            deployment_id,
            result.success,
        )
        return result

    def list_all_deployments(self, limit: int = 20) -> DeploymentListing:
        """Merge every adapter's listing newest-first; failing providers are skipped."""

        if not self._adapters:
            return DeploymentListing(success=True)

        limit = clamp_limit(limit)
        platforms = list(self._adapters)
        with ThreadPoolExecutor(
            max_workers=len(platforms),
            thread_name_prefix="shipyard-list",
        ) as executor:
            futures = {
                platform: executor.submit(self._adapters[platform].list_deployments, limit)
                for platform in platforms
            }

        merged: list[DeploymentSummary] = []
        failed: list[DeploymentPlatform] = []
        for platform, future in futures.items():
            try:
                listing = future.result()
            except Exception as error:  # noqa: BLE001
                logger.warning("Failed to list deployments from %s: %s", platform.value, error)
                failed.append(platform)
                continue
            if not listing.success:
                logger.warning(
                    "Failed to list deployments from %s: %s",
                    platform.value,
                    listing.error,
                )
                failed.append(platform)
                continue
            merged.extend(_with_platform(item, platform) for item in listing.deployments)

        merged.sort(key=lambda item: item.created_at, reverse=True)
        return DeploymentListing(
            success=True,
            deployments=tuple(merged[:limit]),
            failed_platforms=tuple(failed),
        )

    def get_platform_instructions(
        self,
        platform: DeploymentPlatform,
        subdomain: str | None = None,
    ) -> PlatformInstructions:
        return get_platform_instructions(platform, subdomain, base_domain=self.base_domain)

    def _adapter(self, platform: DeploymentPlatform, *, operation: str) -> DeploymentAdapter:
        adapter = self._adapters.get(platform)
        if adapter is None:
            raise ServiceNotConfiguredError(
                f"{platform.value} service not configured",
                platform=platform.value,
                operation=operation,
            )
        return adapter

    def _track(self, event: str, properties: dict[str, Any]) -> None:
        try:
            self.analytics.track(AnalyticsEvent(event=event, properties=properties))
        except Exception as error:  # noqa: BLE001
            logger.warning("Failed to track analytics event %s: %s", event, error)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._monotonic() - started) * 1000)


def build_dns_instructions(
    subdomain: str,
    platform: DeploymentPlatform,
    adapter_records: tuple[DnsRecord, ...] = (),
    *,
    base_domain: str,
) -> tuple[DnsRecord, ...]:
    """Platform default record first, then adapter records, deduplicated."""

    domain = full_domain(subdomain, base_domain)
    if platform == DeploymentPlatform.NETLIFY:
        default = DnsRecord(
            type="CNAME",
            name=subdomain,
            value=NETLIFY_PLACEHOLDER_TARGET,
            description=f"Point {domain} to your Netlify site",
        )
    else:
        default = DnsRecord(
            type="CNAME",
            name=subdomain,
            value=VERCEL_CNAME_TARGET,
            description=f"Point {domain} to Vercel's CDN",
        )

    instructions: list[DnsRecord] = [default]
    seen: set[tuple[str, str, str]] = {default.key()}
    for record in adapter_records:
        if record.key() in seen:
            continue
        seen.add(record.key())
        instructions.append(
            DnsRecord(
                type=record.type,
                name=record.name,
                value=record.value,
                description=record.description
                or f"{platform.value} DNS record: {record.type} record for {record.name}",
            ),
        )
    return tuple(instructions)


def get_platform_instructions(
    platform: DeploymentPlatform,
    subdomain: str | None = None,
    *,
    base_domain: str,
) -> PlatformInstructions:
    label = subdomain or "yourname"
    domain = f"{label}.{base_domain}"
    if platform == DeploymentPlatform.NETLIFY:
        return PlatformInstructions(
            platform=platform,
            title="Netlify Deployment with Custom Subdomain",
            steps=(
                "Deploy your site to Netlify",
                "Get your Netlify site URL (e.g., awesome-site-123.netlify.app)",
                f"Configure {domain} to point to your Netlify site",
                "Add the custom domain in your Netlify site settings",
                "Wait for DNS propagation (usually 5-10 minutes)",
            ),
            dns_record=DnsRecord(
                type="CNAME",
                name=label,
                value=NETLIFY_PLACEHOLDER_TARGET,
                description="Point your subdomain to your Netlify site URL",
            ),
        )
    return PlatformInstructions(
        platform=platform,
        title="Vercel Deployment with Custom Subdomain",
        steps=(
            "Deploy your project to Vercel",
            "Get your Vercel project URL (e.g., myproject.vercel.app)",
            f"Configure {domain} to point to Vercel",
            "Add the custom domain in your Vercel project settings",
            "Verify the domain and wait for SSL certificate provisioning",
        ),
        dns_record=DnsRecord(
            type="CNAME",
            name=label,
            value=VERCEL_CNAME_TARGET,
            description="Point your subdomain to Vercel's CDN",
        ),
    )


def _with_platform(item: DeploymentSummary, platform: DeploymentPlatform) -> DeploymentSummary:
    if item.platform == platform:
        return item
    return DeploymentSummary(
        deployment_id=item.deployment_id,
        name=item.name,
        url=item.url,
        status=item.status,
        created_at=item.created_at,
        platform=platform,
    )
