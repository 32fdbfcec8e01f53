"""
K8s shared constants and low-level helpers for step pods.

Imported by all k8s_* sub-modules. Must NOT import from any sibling
k8s_* module to avoid circular imports.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════


TEST_CONTAINER_NAME = "test"
VPN_CONTAINER_NAME = "vpn-client"
PROFILE_VOLUME_NAME = "cluster-profile"

HOME_VOLUME_NAME = "home"
HOME_MOUNT_PATH = "/alabama"

SECRET_MOUNT_PATH = "/var/run/secrets/ci.openshift.io/multi-stage"
SECRET_MOUNT_ENV = "SHARED_DIR"
CLUSTER_PROFILE_MOUNT_PATH = "/var/run/secrets/ci.openshift.io/cluster-profile"
CLUSTER_PROFILE_MOUNT_ENV = "CLUSTER_PROFILE_DIR"
CLI_MOUNT_PATH = "/cli"
CLI_ENV = "CLI_DIR"
COMMAND_SCRIPT_MOUNT_PATH = "/var/run/configmaps/ci.openshift.io/multi-stage"
COMMAND_PREFIX = "#!/bin/bash\nset -eu\n"

LABEL_METADATA_STEP = "ci.openshift.io/metadata.step"
MULTI_STAGE_TEST_LABEL = "ci.openshift.io/multi-stage-test"
PROW_JOB_ID_LABEL = "prow.k8s.io/id"
CREATED_BY_CI_LABEL = "created-by-ci"
ANNOTATION_SAVE_CONTAINER_LOGS = "ci-operator.openshift.io/save-container-logs"
LABEL_ARCH = "kubernetes.io/arch"

SHM_RESOURCE = "ci-operator.openshift.io/shm"

PIPELINE_IMAGE_STREAM = "pipeline"
STABLE_IMAGE_STREAM = "stable"

CI_REGISTRY_DOMAIN = "quay-proxy.ci.openshift.org"
ENTRYPOINT_WRAPPER_IMAGE = f"{CI_REGISTRY_DOMAIN}/openshift/ci:ci_entrypoint-wrapper_latest"

CSI_DRIVER = "secrets-store.csi.k8s.io"
GSM_PROJECT = "openshift-ci-secrets"

HIVE_ADMIN_KUBECONFIG_SECRET = "hive-admin-kubeconfig"
HIVE_ADMIN_KUBECONFIG_SECRET_KEY = "kubeconfig"
HIVE_ADMIN_PASSWORD_SECRET = "hive-admin-password"
HIVE_ADMIN_PASSWORD_SECRET_KEY = "password"

# Pod termination window relative to the process grace period. Gives the
# artifact upload time to finish after the test process is killed.
TERMINATION_GRACE_RATIO = (5, 4)

DNS_LABEL_MAX = 63
_DNS_LABEL_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


# ═══════════════════════════════════════════════════════════════════
#  Shared Helpers
# ═══════════════════════════════════════════════════════════════════


def is_dns_label(name: str) -> bool:
    """Whether *name* is a valid RFC 1123 DNS label."""
    return len(name) <= DNS_LABEL_MAX and bool(_DNS_LABEL_RE.match(name))


def name_per_test(name: str, test_name: str) -> str:
    """Per-test resource name, e.g. ``e2e-hive-admin-kubeconfig``."""
    return f"{test_name}-{name}"


def secret_mount_path(secret_name: str) -> str:
    """Where a per-test secret is mounted in the test container."""
    return f"/secrets/{secret_name}"


def env_var(name: str, value: str) -> dict:
    return {"name": name, "value": value}


def pod_spec(pod: dict) -> dict:
    return pod.setdefault("spec", {})


def main_container(pod: dict) -> dict:
    """The first container of the pod (the test container)."""
    return pod_spec(pod)["containers"][0]


def find_container(pod: dict, name: str) -> dict | None:
    for c in pod_spec(pod).get("containers") or []:
        if c.get("name") == name:
            return c
    return None


def add_volume(pod: dict, volume: dict) -> None:
    pod_spec(pod).setdefault("volumes", []).append(volume)


def add_mount(container: dict, name: str, mount_path: str, **extra) -> dict:
    mount = {"name": name, "mountPath": mount_path, **extra}
    container.setdefault("volumeMounts", []).append(mount)
    return mount


def add_env(container: dict, env: list[dict]) -> None:
    if env:
        container.setdefault("env", []).extend(env)


def add_init_container(pod: dict, container: dict) -> None:
    pod_spec(pod).setdefault("initContainers", []).append(container)
