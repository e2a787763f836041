"""Controllers for deployment CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from shipyard.config import Settings
from shipyard.deployment.manager import DeploymentManager
from shipyard.deployment.models import (
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DnsRecord,
    GitSource,
)
from shipyard.deployment.repository import DeploymentRecordRepository
from shipyard.deployment.subdomains import suggest_subdomains, validate_subdomain_detailed
from shipyard.storage.alembic_runner import upgrade_head


@dataclass(slots=True)
class DeployRunCommand:
    """CLI input for a direct (non-queued) deploy."""

    db_path: Path | None
    platform: str
    project_name: str
    files_dir: Path | None = None
    git_url: str | None = None
    branch: str = "main"
    build_command: str | None = None
    output_directory: str | None = None
    subdomain: str | None = None
    env: tuple[str, ...] = ()
    wait: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class DeployStatusCommand:
    db_path: Path | None
    platform: str
    deployment_id: str
    wait: bool = False
    timeout_seconds: float | None = None


@dataclass(slots=True)
class DomainCommand:
    """CLI input for custom subdomain setup and verification."""

    db_path: Path | None
    platform: str
    subdomain: str
    project_id: str | None = None


@dataclass(slots=True)
class DeployDeleteCommand:
    db_path: Path | None
    platform: str
    deployment_id: str


@dataclass(slots=True)
class DeployListCommand:
    db_path: Path | None
    limit: int | None = None


@dataclass(slots=True)
class DeployHistoryCommand:
    db_path: Path | None
    platform: str | None = None
    task_id: str | None = None
    limit: int = 20


@dataclass(slots=True)
class PlatformsCommand:
    db_path: Path | None
    subdomain: str | None = None
    platforms: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class SubdomainCheckCommand:
    subdomain: str
    suggest: bool = False


class DeploymentCliController:
    """Coordinates deploy, status, domain and listing commands."""

    def deploy(self, command: DeployRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        request = DeploymentRequest(
            project_name=command.project_name,
            platform=_parse_platform(command.platform),
            files=_read_files(command.files_dir) if command.files_dir is not None else None,
            git=(
                GitSource(
                    url=command.git_url,
                    branch=command.branch,
                    build_command=command.build_command,
                    output_directory=command.output_directory,
                )
                if command.git_url
                else None
            ),
            subdomain=command.subdomain,
            environment=_parse_env(command.env),
        )

        with deployment_manager(settings) as manager:
            result = manager.deploy(request)
            lines = _result_lines("Deployment started", result)
            if command.wait and result.deployment_id and not result.status.is_terminal:
                final = manager.wait_for_deployment(
                    request.platform,
                    result.deployment_id,
                    timeout_seconds=command.timeout_seconds,
                )
                lines.append(f"Final status: {final.status.value}")
        domain_error = result.metadata.get("domain_error")
        if domain_error:
            lines.append(f"Custom domain not attached: {domain_error}")
        return lines

    def status(self, command: DeployStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        platform = _parse_platform(command.platform)
        with deployment_manager(settings) as manager:
            if command.wait:
                result = manager.wait_for_deployment(
                    platform,
                    command.deployment_id,
                    timeout_seconds=command.timeout_seconds,
                )
            else:
                result = manager.get_deployment_status(platform, command.deployment_id)
        return _result_lines("Deployment", result)

    def setup_domain(self, command: DomainCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with deployment_manager(settings) as manager:
            outcome = manager.setup_custom_subdomain(
                command.subdomain,
                _parse_platform(command.platform),
                project_id=command.project_id,
            )
        if not outcome.success:
            return [f"Domain setup failed: {outcome.error}"]
        lines = [
            f"Domain: {outcome.domain}",
            f"Verified: {'yes' if outcome.verified else 'no'}",
            f"DNS records: {len(outcome.dns_records)}",
        ]
        lines.extend(_dns_line(record) for record in outcome.dns_records)
        return lines

    def verify_domain(self, command: DomainCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with deployment_manager(settings) as manager:
            domain = command.subdomain
            if "." not in domain:
                domain = f"{domain.lower()}.{manager.base_domain}"
            outcome = manager.verify_custom_domain(
                domain,
                _parse_platform(command.platform),
                project_id=command.project_id,
            )
        if not outcome.success:
            return [f"Domain verification failed: {outcome.error}"]
        return [f"Domain {outcome.domain}: {'verified' if outcome.verified else 'not verified'}"]

    def delete(self, command: DeployDeleteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with deployment_manager(settings) as manager:
            outcome = manager.delete_deployment(
                _parse_platform(command.platform),
                command.deployment_id,
            )
        if not outcome.success:
            return [f"Delete failed: {outcome.error}"]
        return [f"Deleted: {outcome.deployment_id}"]

    def list_deployments(self, command: DeployListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        limit = command.limit or settings.deployment.default_list_limit
        with deployment_manager(settings) as manager:
            listing = manager.list_all_deployments(limit)

        lines = [f"Deployments: {len(listing.deployments)}"]
        for item in listing.deployments:
            lines.append(
                f"  [{item.platform.value}] {item.deployment_id} {item.name} "
                f"status={item.status.value} created_at={item.created_at.isoformat()} {item.url}",
            )
        if listing.failed_platforms:
            lines.append(
                "Unavailable platforms: "
                + ", ".join(platform.value for platform in listing.failed_platforms),
            )
        if not listing.success and listing.error:
            lines.append(f"Error: {listing.error}")
        return lines

    def history(self, command: DeployHistoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _records(settings) as records:
            views = records.list_records(
                platform=command.platform,
                task_id=command.task_id,
                limit=command.limit,
            )
        lines = [f"Deployment records: {len(views)}"]
        for view in views:
            lines.append(
                f"  #{view.record_id} [{view.platform}] {view.project_name} "
                f"deployment={view.deployment_id or '-'} status={view.status} "
                f"task={view.task_id or '-'} created_at={view.created_at.isoformat()}",
            )
            if view.error:
                lines.append(f"    error: {view.error}")
        return lines

    def platforms(self, command: PlatformsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with deployment_manager(settings) as manager:
            available = manager.get_available_platforms()
            requested = (
                [_parse_platform(name) for name in command.platforms]
                if command.platforms
                else list(DeploymentPlatform)
            )
            guides = [
                manager.get_platform_instructions(platform, command.subdomain)
                for platform in requested
            ]

        lines = [
            "Configured platforms: "
            + (", ".join(platform.value for platform in available) or "none"),
        ]
        for guide in guides:
            lines.append(guide.title)
            lines.extend(f"  {index}. {step}" for index, step in enumerate(guide.steps, start=1))
            lines.append(_dns_line(guide.dns_record))
        return lines

    def check_subdomain(self, command: SubdomainCheckCommand) -> list[str]:
        settings = Settings.from_env()
        validation = validate_subdomain_detailed(command.subdomain)
        lines = [f"Subdomain {command.subdomain}: {'valid' if validation.valid else 'invalid'}"]
        lines.extend(f"  error: {message}" for message in validation.errors)
        lines.extend(f"  warning: {message}" for message in validation.warnings)
        if command.suggest or not validation.valid:
            suggestions = suggest_subdomains(
                command.subdomain,
                base_domain=settings.deployment.base_domain,
            )
            if suggestions:
                lines.append("Suggestions:")
                lines.extend(
                    f"  {item.domain}{'' if item.available else ' (reserved)'}"
                    for item in suggestions
                )
        return lines


@contextmanager
def deployment_manager(settings: Settings) -> Iterator[DeploymentManager]:
    """Manager wired to the deployment record log in the configured DB."""

    with _records(settings) as records:
        manager = DeploymentManager.from_settings(settings, records=records)
        try:
            yield manager
        finally:
            manager.close()


@contextmanager
def _records(settings: Settings) -> Iterator[DeploymentRecordRepository]:
    upgrade_head(settings.db_path)
    records = DeploymentRecordRepository(
        db_path=settings.db_path,
        busy_timeout_ms=settings.busy_timeout_ms,
    )
    try:
        yield records
    finally:
        records.close()


def _parse_platform(value: str) -> DeploymentPlatform:
    try:
        return DeploymentPlatform(value.strip().lower())
    except ValueError as error:
        supported = ", ".join(platform.value for platform in DeploymentPlatform)
        raise ValueError(f"Unknown platform {value!r}; supported: {supported}") from error


def _parse_env(pairs: tuple[str, ...]) -> dict[str, str]:
    environment: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Environment entries must be KEY=VALUE, got {pair!r}")
        environment[key.strip()] = value
    return environment


def _read_files(root: Path) -> dict[str, str]:
    """Collect every file under ``root`` keyed by its POSIX relative path."""

    if not root.is_dir():
        raise ValueError(f"Files directory does not exist: {root}")
    files: dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        try:
            files[relative] = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as error:
            raise ValueError(f"Only UTF-8 text files can be deployed: {relative}") from error
    if not files:
        raise ValueError(f"Files directory is empty: {root}")
    return files


def _result_lines(title: str, result: DeploymentResult) -> list[str]:
    lines = [
        f"{title}: platform={result.platform.value} id={result.deployment_id or '-'} "
        f"status={result.status.value}",
        f"URL: {result.url or '-'}",
    ]
    if result.custom_domain:
        lines.append(f"Custom domain: {result.custom_domain}")
    if result.project_id:
        lines.append(f"Project: {result.project_id}")
    if result.error:
        lines.append(f"Error: {result.error}")
    return lines


def _dns_line(record: DnsRecord) -> str:
    suffix = f"  # {record.description}" if record.description else ""
    return f"  {record.type} {record.name} -> {record.value}{suffix}"
