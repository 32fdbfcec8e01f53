"""
Step models — the declarative input to pod generation.

Steps are read-only for the duration of one compilation call, so every
model here is frozen.  YAML keys follow the ci-operator configuration
format (``as``, ``from``, ``grace_period``...).
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_RE = re.compile(r"^(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+$")

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> timedelta:
    """Parse a Go-style duration (``"1h30m"``, ``"45s"``) or a number of seconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration: {value!r}")

    text = value.strip()
    if text in ("0", ""):
        return timedelta(0)
    if not _DURATION_RE.match(text):
        raise ValueError(f"invalid duration: {value!r}")

    seconds = 0.0
    for number, unit in _DURATION_PART_RE.findall(text):
        seconds += float(number) * _UNIT_SECONDS[unit]
    return timedelta(seconds=seconds)


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way Go prints durations (``2h0m0s``)."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    hours, rem = divmod(int(total), 3600)
    minutes, seconds = divmod(rem, 60)
    frac = total - int(total)
    secs = f"{seconds + frac:g}"
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class CredentialReference(_Frozen):
    """A named pointer to a secret, scoped to a collection and a mount path."""

    name: str
    collection: str = ""
    mount_path: str
    namespace: str = ""

    @property
    def group_key(self) -> str:
        """Composite ``collection:mountPath`` key used for CSI grouping."""
        return f"{self.collection}:{self.mount_path}"


class StepDependency(_Frozen):
    """An image the step needs, exposed to it through an env variable.

    ``name`` is ``stream:tag`` or a bare pipeline tag.  A non-empty
    ``pull_spec`` is used verbatim and never resolved.
    """

    name: str = ""
    env: str
    pull_spec: str = ""


class StepParameter(_Frozen):
    """An env variable the step accepts, with an optional default."""

    name: str
    default: str | None = None
    documentation: str = ""


class DNSConfig(_Frozen):
    nameservers: list[str] = Field(default_factory=list)
    searches: list[str] = Field(default_factory=list)


class ImageStreamTagReference(_Frozen):
    """``namespace/name:tag`` reference to an image outside the pipeline."""

    namespace: str
    name: str
    tag: str

    def pipeline_tag(self) -> str:
        """Tag this image is imported under in the pipeline stream."""
        return f"{self.namespace}-{self.name}-{self.tag}"


class ResourceRequirements(_Frozen):
    """Raw resource requests/limits, values are quantity strings."""

    requests: dict[str, str] = Field(default_factory=dict)
    limits: dict[str, str] = Field(default_factory=dict)

    @field_validator("requests", "limits", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


class StepDescriptor(_Frozen):
    """One ordered unit of work in a multi-stage test."""

    as_: str = Field(alias="as")
    from_: str = Field(default="", alias="from")
    from_image: ImageStreamTagReference | None = None
    commands: str = ""
    run_as_script: bool = False
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    timeout: timedelta | None = None
    grace_period: timedelta | None = None
    environment: list[StepParameter] = Field(default_factory=list)
    dependencies: list[StepDependency] = Field(default_factory=list)
    credentials: list[CredentialReference] = Field(default_factory=list)
    dns_config: DNSConfig | None = None
    node_architecture: str | None = None
    optional_on_success: bool = False
    best_effort: bool = False
    no_kubeconfig: bool = False
    cli: str = ""

    @field_validator("timeout", "grace_period", mode="before")
    @classmethod
    def _parse_durations(cls, v: Any) -> Any:
        if v is None:
            return None
        return parse_duration(v)

    def from_image_tag(self) -> str | None:
        """Pipeline tag for ``from_image``, or None when ``from`` is used."""
        if self.from_image is None:
            return None
        return self.from_image.pipeline_tag()


class Observer(_Frozen):
    """A passive step that runs alongside the test for monitoring."""

    name: str
    from_: str = Field(default="", alias="from")
    from_image: ImageStreamTagReference | None = None
    commands: str = ""
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    timeout: timedelta | None = None
    grace_period: timedelta | None = None
    environment: list[StepParameter] = Field(default_factory=list)

    @field_validator("timeout", "grace_period", mode="before")
    @classmethod
    def _parse_durations(cls, v: Any) -> Any:
        if v is None:
            return None
        return parse_duration(v)

    def as_step(self) -> StepDescriptor:
        """Adapt this observer to a plain step."""
        return StepDescriptor(
            as_=self.name,
            from_=self.from_,
            from_image=self.from_image,
            commands=self.commands,
            resources=self.resources,
            timeout=self.timeout,
            grace_period=self.grace_period,
            environment=self.environment,
        )
