"""
Base pod skeleton for a step.

Produces the minimal decorated pod every step starts from: one test
container with its command, image and resources, the logs volume and
the entrypoint options carrying timeout and grace period.  The step
pipeline accepts any callable with the same signature, so a different
skeleton generator can be injected.
"""

from __future__ import annotations

import json
import logging
from typing import Protocol

from multistage.core.errors import PodGenerationError
from multistage.core.models.job import DecorationState, JobSpec
from multistage.core.models.step import format_duration
from multistage.core.services.k8s_common import (
    CREATED_BY_CI_LABEL,
    PROW_JOB_ID_LABEL,
    env_var,
)

logger = logging.getLogger(__name__)

LOGS_VOLUME_NAME = "logs"
LOGS_MOUNT_PATH = "/logs"
ARTIFACTS_PATH = "/logs/artifacts"


class BasePodGenerator(Protocol):
    def __call__(
        self,
        job: JobSpec,
        labels: dict[str, str],
        name: str,
        node_name: str,
        container_name: str,
        command: list[str],
        image: str,
        resources: dict,
        artifact_dir: str,
        decoration: DecorationState,
        raw_spec: str,
        extra_mounts: list[dict],
        *,
        propagate_exit_code: bool = False,
    ) -> dict: ...


def generate_base_pod(
    job: JobSpec,
    labels: dict[str, str],
    name: str,
    node_name: str,
    container_name: str,
    command: list[str],
    image: str,
    resources: dict,
    artifact_dir: str,
    decoration: DecorationState,
    raw_spec: str,
    extra_mounts: list[dict],
    *,
    propagate_exit_code: bool = False,
) -> dict:
    """Build the skeleton pod for one step.

    Raises:
        PodGenerationError: If name, image or command is missing.
    """
    if not name:
        raise PodGenerationError("pod name must not be empty")
    if not image:
        raise PodGenerationError(f"pod {name}: image must not be empty")
    if not command:
        raise PodGenerationError(f"pod {name}: command must not be empty")

    entrypoint_options = {
        "timeout": format_duration(decoration.timeout),
        "grace_period": format_duration(decoration.grace_period),
        "artifact_dir": ARTIFACTS_PATH,
        "upload_path": artifact_dir,
        "propagate_exit_code": propagate_exit_code,
    }

    container: dict = {
        "name": container_name,
        "image": image,
        "command": list(command),
        "terminationMessagePolicy": "FallbackToLogsOnError",
        "env": [
            env_var("ARTIFACT_DIR", ARTIFACTS_PATH),
            env_var("ENTRYPOINT_OPTIONS", json.dumps(entrypoint_options, sort_keys=True)),
            env_var("JOB_SPEC", raw_spec),
        ],
        "volumeMounts": [
            {"name": LOGS_VOLUME_NAME, "mountPath": LOGS_MOUNT_PATH},
            *[dict(m) for m in extra_mounts],
        ],
    }
    if resources:
        container["resources"] = resources

    spec: dict = {
        "restartPolicy": "Never",
        "containers": [container],
        "volumes": [{"name": LOGS_VOLUME_NAME, "emptyDir": {}}],
    }
    if node_name:
        spec["nodeName"] = node_name

    pod_labels = {CREATED_BY_CI_LABEL: "true", **labels}
    if job.build_id:
        pod_labels[PROW_JOB_ID_LABEL] = job.build_id

    logger.debug("Generated base pod %s (image %s)", name, image)
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "namespace": job.namespace,
            "labels": pod_labels,
            "annotations": {},
        },
        "spec": spec,
    }


def raw_job_spec(job: JobSpec) -> str:
    """Serialized job identity passed to the test container."""
    return json.dumps(
        {"job": job.job, "buildid": job.build_id, "namespace": job.namespace},
        sort_keys=True,
    )
