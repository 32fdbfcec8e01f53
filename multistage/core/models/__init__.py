"""
Domain models — Pydantic types for pod generation.

All models are re-exported here for convenient access:

    from multistage.core.models import StepDescriptor, JobSpec, CompileRequest
"""

from multistage.core.models.job import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_TIMEOUT,
    DecorationState,
    JobSpec,
)
from multistage.core.models.options import (
    ClaimRelease,
    ClusterClaim,
    ClusterProfile,
    ExecutionFlags,
    GeneratePodOptions,
    VPNConfig,
)
from multistage.core.models.request import CompileRequest, CompileResult
from multistage.core.models.step import (
    CredentialReference,
    DNSConfig,
    ImageStreamTagReference,
    Observer,
    ResourceRequirements,
    StepDependency,
    StepDescriptor,
    StepParameter,
)

__all__ = [
    "ClaimRelease",
    "ClusterClaim",
    "ClusterProfile",
    "CompileRequest",
    "CompileResult",
    "CredentialReference",
    "DEFAULT_GRACE_PERIOD",
    "DEFAULT_TIMEOUT",
    "DNSConfig",
    "DecorationState",
    "ExecutionFlags",
    "GeneratePodOptions",
    "ImageStreamTagReference",
    "JobSpec",
    "Observer",
    "ResourceRequirements",
    "StepDependency",
    "StepDescriptor",
    "StepParameter",
    "VPNConfig",
]
