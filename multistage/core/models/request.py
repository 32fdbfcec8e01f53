"""
Compile request and result — the I/O contract of pod generation.

A ``CompileRequest`` is loaded from YAML (or built in code) and holds
everything a compilation call needs.  A ``CompileResult`` is what comes
back: pods in input order, best-effort step names, the aggregated error
and any auxiliary resources the pods reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from multistage.core.errors import AggregateError
from multistage.core.models.job import DecorationState, JobSpec
from multistage.core.models.options import (
    ClusterClaim,
    ClusterProfile,
    ExecutionFlags,
    GeneratePodOptions,
    VPNConfig,
)
from multistage.core.models.step import Observer, StepDescriptor


class CompileRequest(BaseModel):
    """Everything needed to compile one multi-stage test."""

    test: str
    job: JobSpec
    steps: list[StepDescriptor] = Field(default_factory=list)
    observers: list[Observer] = Field(default_factory=list)
    flags: ExecutionFlags = Field(default_factory=ExecutionFlags)
    options: GeneratePodOptions = Field(default_factory=GeneratePodOptions)
    vpn: VPNConfig | None = None
    cluster_profile: ClusterProfile | None = None
    cluster_claim: ClusterClaim | None = None
    env: dict[str, str] = Field(default_factory=dict)
    secret_volumes: list[dict[str, Any]] = Field(default_factory=list)
    secret_volume_mounts: list[dict[str, Any]] = Field(default_factory=list)
    digests: dict[str, str] = Field(default_factory=dict)


@dataclass
class CompileResult:
    """Result of compiling a step list."""

    pods: list[dict] = field(default_factory=list)
    best_effort_steps: set[str] = field(default_factory=set)
    error: AggregateError | None = None
    decoration: DecorationState = field(default_factory=DecorationState)
    auxiliary: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def errors(self) -> list[str]:
        if self.error is None:
            return []
        return [str(e) for e in self.error.errors]

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "pods": self.pods,
            "auxiliary": self.auxiliary,
            "best_effort_steps": sorted(self.best_effort_steps),
            "decoration": self.decoration.to_dict(),
            "errors": self.errors,
        }
