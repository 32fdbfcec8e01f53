"""
Job models — the run context shared by every step of a test.
"""

from __future__ import annotations

import hashlib
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from multistage.core.models.step import format_duration, parse_duration

DEFAULT_TIMEOUT = timedelta(hours=2)
DEFAULT_GRACE_PERIOD = timedelta(seconds=15)


class DecorationState(BaseModel):
    """Timeout and grace period handed to the base pod generator.

    Each step's construction receives the current state and returns a
    new one; nothing is written back onto the job.
    """

    model_config = ConfigDict(frozen=True)

    timeout: timedelta = DEFAULT_TIMEOUT
    grace_period: timedelta = DEFAULT_GRACE_PERIOD

    @field_validator("timeout", "grace_period", mode="before")
    @classmethod
    def _parse(cls, v: Any) -> Any:
        return parse_duration(v)

    def to_dict(self) -> dict:
        return {
            "timeout": format_duration(self.timeout),
            "grace_period": format_duration(self.grace_period),
        }


class JobSpec(BaseModel):
    """Identity of the CI run the pods belong to."""

    namespace: str
    job: str = ""
    build_id: str = ""
    node_name: str = ""
    owner: dict[str, Any] | None = None
    decoration: DecorationState = Field(default_factory=DecorationState)

    def job_name_hash(self) -> str:
        """Short, stable hash of the job name."""
        return hashlib.sha256(self.job.encode("utf-8")).hexdigest()[:5]

    def unique_hash(self) -> str:
        """Short hash unique to this run of the job."""
        seed = f"{self.job}{self.build_id}{self.namespace}"
        return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:5]
