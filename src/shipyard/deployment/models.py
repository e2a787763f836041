"""Provider-neutral deployment value objects."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from shipyard.errors import ErrorKind


class DeploymentPlatform(str, Enum):
    """Hosting providers with a registered adapter implementation."""

    NETLIFY = "netlify"
    VERCEL = "vercel"


class DeploymentStatus(str, Enum):
    """Shared status vocabulary every provider state maps onto."""

    PENDING = "pending"
    BUILDING = "building"
    READY = "ready"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {DeploymentStatus.READY, DeploymentStatus.ERROR, DeploymentStatus.CANCELLED}


@dataclass(slots=True)
class GitSource:
    """Linked git repository to build from."""

    url: str
    branch: str = "main"
    build_command: str | None = None
    output_directory: str | None = None


@dataclass(slots=True)
class DeploymentRequest:
    """One deployment ask; exactly one of ``files`` or ``git`` must be set."""

    project_name: str
    platform: DeploymentPlatform
    files: Mapping[str, str] | None = None
    git: GitSource | None = None
    subdomain: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class DeploymentResult:
    """Outcome of a deploy or status poll; never mutated after return."""

    success: bool
    platform: DeploymentPlatform
    status: DeploymentStatus
    deployment_id: str | None = None
    url: str | None = None
    custom_domain: str | None = None
    project_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DnsRecord:
    """DNS record the caller must publish for a custom domain."""

    type: str
    name: str
    value: str
    description: str | None = None

    def key(self) -> tuple[str, str, str]:
        return (self.type.upper(), self.name.lower(), self.value.lower())


@dataclass(slots=True)
class CustomDomainConfig:
    """Subdomain label plus the fully-qualified domain it resolves to."""

    subdomain: str
    domain: str
    verified: bool = False
    dns_records: tuple[DnsRecord, ...] = ()


@dataclass(slots=True)
class DomainSetupResult:
    """Degraded-on-failure result of attaching a custom domain."""

    success: bool
    domain: str | None = None
    verified: bool = False
    dns_records: tuple[DnsRecord, ...] = ()
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(slots=True)
class DomainVerification:
    """Read-only domain verification outcome."""

    success: bool
    verified: bool
    domain: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(slots=True)
class DeleteResult:
    success: bool
    deployment_id: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(slots=True)
class DeploymentSummary:
    """One listed deployment, tagged with its originating platform."""

    deployment_id: str
    name: str
    url: str
    status: DeploymentStatus
    created_at: datetime
    platform: DeploymentPlatform


@dataclass(slots=True)
class DeploymentListing:
    success: bool
    deployments: tuple[DeploymentSummary, ...] = ()
    error: str | None = None
    error_kind: ErrorKind | None = None
    failed_platforms: tuple[DeploymentPlatform, ...] = ()


@dataclass(slots=True)
class PlatformInstructions:
    """Human-readable setup guide for pointing a subdomain at a platform."""

    platform: DeploymentPlatform
    title: str
    steps: tuple[str, ...]
    dns_record: DnsRecord
