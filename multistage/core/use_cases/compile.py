"""
Compile use case — load a test config and generate its pods.

Ties together config loading, digest resolution, pod generation and
metrics.  Returns a result object; only precondition failures and
config errors end up in ``error``, step failures are in the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from multistage.core.config.loader import ConfigError, load_request
from multistage.core.errors import PreconditionError
from multistage.core.models.options import GeneratePodOptions
from multistage.core.models.request import CompileRequest, CompileResult
from multistage.core.observability.metrics import MetricsRegistry
from multistage.core.services.k8s_steps_generate import compile_request

logger = logging.getLogger(__name__)


@dataclass
class GenerateResult:
    """Result of the generate use case."""

    request: CompileRequest | None = None
    result: CompileResult | None = None
    metrics: MetricsRegistry | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.ok

    def manifests(self) -> list[dict]:
        """Pods followed by the auxiliary resources they reference."""
        if self.result is None:
            return []
        return [*self.result.pods, *self.result.auxiliary]

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        data: dict = {"test": self.request.test if self.request else ""}
        if self.result is not None:
            data.update(self.result.to_dict())
        if self.metrics is not None:
            data["metrics"] = self.metrics.to_dict()
        return data


def run_generate(
    config_path: Path | None = None,
    *,
    enable_csi: bool | None = None,
) -> GenerateResult:
    """Generate step pods for the test described in *config_path*.

    Args:
        config_path: Explicit path to multistage.yml (default: search upward).
        enable_csi: Override the config's CSI secrets toggle.
    """
    try:
        request = load_request(config_path)
    except ConfigError as e:
        return GenerateResult(error=str(e))

    if enable_csi is not None:
        request = request.model_copy(update={
            "options": GeneratePodOptions(
                is_observer=request.options.is_observer,
                enable_secrets_store_csi_driver=enable_csi,
            ),
        })

    metrics = MetricsRegistry()
    try:
        with metrics.timer("compile_ms"):
            result = compile_request(request, recorder=metrics)
    except PreconditionError as e:
        return GenerateResult(request=request, metrics=metrics, error=str(e))

    logger.info(
        "Generated %d pod(s) for %s (%d auxiliary resources)",
        len(result.pods), request.test, len(result.auxiliary),
    )
    return GenerateResult(request=request, result=result, metrics=metrics)
