"""
Options that toggle cross-cutting pod decorations.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

LATEST_RELEASE_NAME = "latest"


class ExecutionFlags(BaseModel):
    """Skip and best-effort policy for a step list."""

    model_config = ConfigDict(frozen=True)

    allow_best_effort_post_steps: bool = False
    allow_skip_on_success: bool = False
    has_prev_errs: bool = False


class GeneratePodOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_observer: bool = False
    enable_secrets_store_csi_driver: bool = False


class VPNConfig(BaseModel):
    """VPN sidecar attached to every step pod of the test."""

    image: str
    commands: str
    wait_timeout: str | None = None
    namespace_uid: int


class ClusterProfile(BaseModel):
    name: str
    cluster_type: str = ""

    def effective_cluster_type(self) -> str:
        return self.cluster_type or self.name


class ClaimRelease(BaseModel):
    """Release name a claimed cluster is installed from."""

    release_name: str
    override_name: str


class ClusterClaim(BaseModel):
    """Pre-provisioned cluster claimed for the test."""

    release: str = LATEST_RELEASE_NAME

    def claim_release(self, test_name: str) -> ClaimRelease:
        return ClaimRelease(
            release_name=f"{self.release}-{test_name}",
            override_name=self.release,
        )
