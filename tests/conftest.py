"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from multistage.core.models.job import JobSpec
from multistage.core.models.step import StepDescriptor
from multistage.core.services.k8s_steps_generate import StepPodContext


@pytest.fixture
def job() -> JobSpec:
    """A job running in namespace ``ci-op-1234``."""
    return JobSpec(
        namespace="ci-op-1234",
        job="pull-ci-org-repo-master-e2e",
        build_id="5678",
    )


@pytest.fixture
def ctx(job: JobSpec) -> StepPodContext:
    """Step context for test ``e2e`` with no optional decorations."""
    return StepPodContext(test_name="e2e", job=job)


@pytest.fixture
def make_step():
    """Factory for steps: ``make_step("setup", commands="make")``."""

    def _make(name: str, **kwargs) -> StepDescriptor:
        data = {"as": name, "from": "src", "commands": "echo hello"}
        data.update(kwargs)
        return StepDescriptor.model_validate(data)

    return _make


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a multistage.yml into tmp_path and return its path."""

    def _write(content: str) -> Path:
        path = tmp_path / "multistage.yml"
        path.write_text(textwrap.dedent(content))
        return path

    return _write


MINIMAL_CONFIG = """\
    test: e2e
    job:
      namespace: ci-op-1234
      job: pull-ci-org-repo-master-e2e
      build_id: "5678"
    steps:
      - as: setup
        from: src
        commands: make setup
      - as: run
        from: src
        commands: make test
"""


@pytest.fixture
def minimal_config(write_config) -> Path:
    """A valid two-step config file."""
    return write_config(MINIMAL_CONFIG)
