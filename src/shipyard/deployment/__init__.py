"""Provider-agnostic deployment adapters and orchestration."""

from shipyard.deployment.manager import DeploymentManager
from shipyard.deployment.models import (
    DeploymentPlatform,
    DeploymentRequest,
    DeploymentResult,
    DeploymentStatus,
    GitSource,
)

__all__ = [
    "DeploymentManager",
    "DeploymentPlatform",
    "DeploymentRequest",
    "DeploymentResult",
    "DeploymentStatus",
    "GitSource",
]
