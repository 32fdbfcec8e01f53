"""
Config check use case — lint multistage.yml without generating pods.

Catches what schema validation cannot: conflicting cluster modes,
duplicate step names (two pods with one name) and names that would not
make valid resource names.  Errors make the config invalid, warnings
do not.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from multistage.core.config.loader import ConfigError, find_test_file, load_request
from multistage.core.models.request import CompileRequest
from multistage.core.services.k8s_common import is_dns_label
from multistage.core.services.k8s_dependencies import needs_resolver
from multistage.core.services.k8s_steps_generate import should_skip


@dataclass
class ConfigCheckResult:
    """Outcome of linting one test config."""

    request: CompileRequest | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.request is not None and not self.errors

    def to_dict(self) -> dict:
        request = self.request
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "test": request.test if request else None,
            "step_count": len(request.steps) if request else 0,
            "observer_count": len(request.observers) if request else 0,
            "errors": self.errors,
            "warnings": self.warnings,
        }


def request_errors(request: CompileRequest) -> list[str]:
    """Problems that would make every or some pods fail to generate."""
    errors: list[str] = []
    if request.cluster_profile is not None and request.cluster_claim is not None:
        errors.append("cluster_profile and cluster_claim are mutually exclusive.")

    if not is_dns_label(request.test):
        errors.append(f"Test name '{request.test}' is not a valid DNS label.")

    seen: set[str] = set()
    dupes: set[str] = set()
    for step in request.steps:
        if step.as_ in seen:
            dupes.add(step.as_)
        seen.add(step.as_)
        if not step.from_ and step.from_image is None:
            errors.append(f"Step '{step.as_}' has neither from nor from_image.")
    if dupes:
        errors.append(f"Duplicate step names: {', '.join(sorted(dupes))}")

    if not request.digests:
        unresolved = [
            s.as_ for s in request.steps
            if needs_resolver(s) and not should_skip(s, request.flags)
        ]
        if unresolved:
            errors.append(
                "Steps declare dependencies without pull specs but no digests are "
                f"configured: {', '.join(unresolved)}"
            )
    return errors


def request_warnings(request: CompileRequest) -> list[str]:
    warnings = [
        f"Step '{step.as_}' runs as a script but has no commands."
        for step in request.steps
        if step.run_as_script and not step.commands
    ]
    if not request.steps:
        warnings.append("No steps defined. Nothing will be generated.")
    return warnings


def check_config(config_path: Path | None = None) -> ConfigCheckResult:
    """Load *config_path* (default: search upward) and lint it."""
    path = config_path or find_test_file()
    result = ConfigCheckResult(config_path=path)

    try:
        result.request = load_request(path)
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    result.errors.extend(request_errors(result.request))
    result.warnings.extend(request_warnings(result.request))
    return result
