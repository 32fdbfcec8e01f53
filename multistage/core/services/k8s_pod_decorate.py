"""
Step pod decorations — one function per cross-cutting concern.

Every function mutates a pod dict that is still under construction by
the step pipeline (``k8s_steps_generate``).  They are pure dict in →
dict out otherwise: no I/O, no cluster access.
"""

from __future__ import annotations

import logging
import posixpath

from multistage.core.errors import AggregateError
from multistage.core.models.job import JobSpec
from multistage.core.models.options import ClusterProfile, GeneratePodOptions, VPNConfig
from multistage.core.models.step import DNSConfig, StepDescriptor, StepParameter
from multistage.core.services.k8s_common import (
    ANNOTATION_SAVE_CONTAINER_LOGS,
    CLI_ENV,
    CLI_MOUNT_PATH,
    CLUSTER_PROFILE_MOUNT_ENV,
    CLUSTER_PROFILE_MOUNT_PATH,
    COMMAND_PREFIX,
    COMMAND_SCRIPT_MOUNT_PATH,
    ENTRYPOINT_WRAPPER_IMAGE,
    HIVE_ADMIN_KUBECONFIG_SECRET,
    HIVE_ADMIN_KUBECONFIG_SECRET_KEY,
    HIVE_ADMIN_PASSWORD_SECRET,
    HIVE_ADMIN_PASSWORD_SECRET_KEY,
    HOME_MOUNT_PATH,
    HOME_VOLUME_NAME,
    LABEL_ARCH,
    MULTI_STAGE_TEST_LABEL,
    PROFILE_VOLUME_NAME,
    PROW_JOB_ID_LABEL,
    SECRET_MOUNT_ENV,
    SECRET_MOUNT_PATH,
    TEST_CONTAINER_NAME,
    VPN_CONTAINER_NAME,
    add_env,
    add_init_container,
    add_mount,
    add_volume,
    env_var,
    find_container,
    main_container,
    name_per_test,
    pod_spec,
    secret_mount_path,
)
from multistage.core.services.k8s_security import (
    VPN_CAPABILITIES,
    VPN_SELINUX_OPTIONS,
    set_security_contexts,
)

logger = logging.getLogger(__name__)

ENTRYPOINT_WRAPPER_VOLUME = "entrypoint-wrapper"
ENTRYPOINT_WRAPPER_DIR = "/tmp/entrypoint-wrapper"
ENTRYPOINT_WRAPPER_BIN = posixpath.join(ENTRYPOINT_WRAPPER_DIR, "entrypoint-wrapper")

VPN_VOLUME_NAME = "vpn"
VPN_MOUNT_PATH = "/tmp/vpn"
VPN_UP_FILE = "/tmp/vpn/up"
VPN_PROFILE_MOUNT_PATH = "/tmp/profile"
TUN_VOLUME_NAME = "tun"
TUN_DEVICE = "/dev/net/tun"

DSHM_VOLUME_NAME = "dshm"
DSHM_MOUNT_PATH = "/dev/shm"

CLI_VOLUME_NAME = "cli"
COMMANDS_VOLUME_NAME = "commands-script"

# Releases < 4.15 ship no oc.rhel8, hence the fallback to the plain binary.
_CLI_COPY_SCRIPT = (
    "ARCH=$(uname -m | sed 's/x86_64/amd64/;s/aarch64/arm64/'); "
    "if [[ -e /usr/share/openshift/linux_${{ARCH}}/oc.rhel8 ]]; "
    "then /bin/cp /usr/share/openshift/linux_${{ARCH}}/oc.rhel8 {dest}; "
    "else /bin/cp /usr/share/openshift/linux_${{ARCH}}/oc {dir}; fi"
)


# ═══════════════════════════════════════════════════════════════════
#  Metadata, identity and scheduling
# ═══════════════════════════════════════════════════════════════════


def relabel(pod: dict, test_name: str) -> None:
    """Replace platform labels with the multi-stage ones."""
    meta = pod.setdefault("metadata", {})
    labels = meta.setdefault("labels", {})
    labels.pop(PROW_JOB_ID_LABEL, None)
    labels[MULTI_STAGE_TEST_LABEL] = test_name
    meta.setdefault("annotations", {})[ANNOTATION_SAVE_CONTAINER_LOGS] = "true"


def is_kubeconfig_needed(step: StepDescriptor, options: GeneratePodOptions) -> bool:
    """Observers always get a kubeconfig, other steps unless they opt out."""
    return not step.no_kubeconfig or options.is_observer


def set_service_account(pod: dict, test_name: str, needs_kubeconfig: bool) -> None:
    spec = pod_spec(pod)
    if needs_kubeconfig:
        spec["serviceAccountName"] = test_name
    else:
        spec.pop("serviceAccountName", None)
        spec["automountServiceAccountToken"] = False


def apply_dns_config(pod: dict, dns: DNSConfig | None) -> None:
    """Merge step DNS overrides; any nameserver switches DNS policy to None."""
    if dns is None:
        return
    spec = pod_spec(pod)
    cfg = spec.setdefault("dnsConfig", {})
    if dns.nameservers:
        cfg.setdefault("nameservers", []).extend(dns.nameservers)
    if dns.searches:
        cfg.setdefault("searches", []).extend(dns.searches)
    if cfg.get("nameservers"):
        spec["dnsPolicy"] = "None"


def apply_node_architecture(pod: dict, arch: str | None) -> None:
    if arch:
        pod_spec(pod).setdefault("nodeSelector", {})[LABEL_ARCH] = arch


def add_owner_reference(pod: dict, owner: dict | None) -> None:
    if owner:
        pod.setdefault("metadata", {}).setdefault("ownerReferences", []).append(dict(owner))


# ═══════════════════════════════════════════════════════════════════
#  Volumes and wrappers
# ═══════════════════════════════════════════════════════════════════


def add_home_volume(pod: dict, secret_volumes: list[dict]) -> None:
    """Shared home directory plus the caller's pod-level secret volumes."""
    add_volume(pod, {"name": HOME_VOLUME_NAME, "emptyDir": {}})
    for vol in secret_volumes:
        add_volume(pod, dict(vol))
    container = find_container(pod, TEST_CONTAINER_NAME)
    if container is not None:
        add_mount(container, HOME_VOLUME_NAME, HOME_MOUNT_PATH)


def add_secret_wrapper(
    pod: dict,
    vpn: VPNConfig | None,
    skip_kubeconfig: bool,
    is_observer: bool,
) -> None:
    """Run the test command through the entrypoint wrapper.

    An init container copies the wrapper binary into a shared volume;
    the test container's command becomes the wrapper, with the mode
    flags first and the original command and args after them.
    """
    add_volume(pod, {"name": ENTRYPOINT_WRAPPER_VOLUME, "emptyDir": {}})
    mount = {"name": ENTRYPOINT_WRAPPER_VOLUME, "mountPath": ENTRYPOINT_WRAPPER_DIR}
    add_init_container(pod, {
        "name": "cp-entrypoint-wrapper",
        "image": ENTRYPOINT_WRAPPER_IMAGE,
        "command": ["cp"],
        "args": ["/bin/entrypoint-wrapper", ENTRYPOINT_WRAPPER_BIN],
        "volumeMounts": [dict(mount)],
        "terminationMessagePolicy": "FallbackToLogsOnError",
    })

    container = main_container(pod)
    args: list[str] = []
    if vpn is not None and vpn.wait_timeout:
        args += ["--wait-for-file", VPN_UP_FILE, "--wait-timeout", vpn.wait_timeout]
    if skip_kubeconfig:
        args.append("--mode=skip-kubeconfig")
    if is_observer:
        args.append("--mode=observer")
    args += container.get("command") or []
    args += container.get("args") or []
    container["args"] = args
    container["command"] = [ENTRYPOINT_WRAPPER_BIN]
    container.setdefault("volumeMounts", []).append(mount)


def add_vpn_client(pod: dict, vpn: VPNConfig) -> None:
    vpn_mount = {"name": VPN_VOLUME_NAME, "mountPath": VPN_MOUNT_PATH}
    pod_spec(pod)["containers"].append({
        "name": VPN_CONTAINER_NAME,
        "image": vpn.image,
        "command": ["bash", "-c", vpn.commands],
        "workingDir": VPN_PROFILE_MOUNT_PATH,
        "volumeMounts": [
            {"name": TUN_VOLUME_NAME, "mountPath": TUN_DEVICE},
            dict(vpn_mount),
            {"name": "logs", "mountPath": "/logs"},
            {"name": PROFILE_VOLUME_NAME, "mountPath": VPN_PROFILE_MOUNT_PATH},
        ],
    })
    add_volume(pod, {"name": VPN_VOLUME_NAME, "emptyDir": {}})
    add_volume(pod, {
        "name": TUN_VOLUME_NAME,
        "hostPath": {"path": TUN_DEVICE, "type": "CharDevice"},
    })
    main_container(pod).setdefault("volumeMounts", []).append(vpn_mount)


def apply_vpn_security(pod: dict, vpn: VPNConfig) -> None:
    """Only the VPN client may configure networking."""
    set_security_contexts(
        pod,
        VPN_CONTAINER_NAME,
        vpn.namespace_uid,
        VPN_CAPABILITIES,
        VPN_SELINUX_OPTIONS,
    )


def add_dshm_volume(pod: dict, container: dict, size: str) -> None:
    logger.info("Adding dshm volume to pod: %s", pod.get("metadata", {}).get("name"))
    add_volume(pod, {
        "name": DSHM_VOLUME_NAME,
        "emptyDir": {"medium": "Memory", "sizeLimit": size},
    })
    add_mount(container, DSHM_VOLUME_NAME, DSHM_MOUNT_PATH)


def profile_secret_name(test_name: str) -> str:
    return f"{test_name}-cluster-profile"


def add_profile(pod: dict, secret_name: str, profile: ClusterProfile) -> None:
    add_volume(pod, {"name": PROFILE_VOLUME_NAME, "secret": {"secretName": secret_name}})
    container = main_container(pod)
    add_mount(container, PROFILE_VOLUME_NAME, CLUSTER_PROFILE_MOUNT_PATH)
    add_env(container, [
        env_var("CLUSTER_PROFILE_NAME", profile.name),
        env_var("CLUSTER_TYPE", profile.effective_cluster_type()),
        env_var(CLUSTER_PROFILE_MOUNT_ENV, CLUSTER_PROFILE_MOUNT_PATH),
    ])


def add_cli_injector(pod: dict, imagestream: str) -> None:
    """Copy the ``oc`` binary matching the node architecture into ``/cli``."""
    add_volume(pod, {"name": CLI_VOLUME_NAME, "emptyDir": {}})
    script = _CLI_COPY_SCRIPT.format(
        dest=posixpath.join(CLI_MOUNT_PATH, "oc"),
        dir=CLI_MOUNT_PATH,
    )
    add_init_container(pod, {
        "name": "inject-cli",
        "image": f"{imagestream}:cli-artifacts",
        "command": ["/bin/sh"],
        "args": ["-c", script],
        "volumeMounts": [{"name": CLI_VOLUME_NAME, "mountPath": CLI_MOUNT_PATH}],
    })
    container = main_container(pod)
    add_mount(container, CLI_VOLUME_NAME, CLI_MOUNT_PATH)
    add_env(container, [env_var(CLI_ENV, CLI_MOUNT_PATH)])


def add_shared_dir_secret(pod: dict, secret: str) -> None:
    """Mount the test's shared directory secret on the test container."""
    add_volume(pod, {"name": secret, "secret": {"secretName": secret}})
    container = main_container(pod)
    add_mount(container, secret, SECRET_MOUNT_PATH)
    add_env(container, [env_var(SECRET_MOUNT_ENV, SECRET_MOUNT_PATH)])


def command_config_map_for_test(test_name: str) -> str:
    return f"{test_name}-commands"


def add_command_script(pod: dict, config_map: str) -> None:
    add_volume(pod, {
        "name": COMMANDS_VOLUME_NAME,
        "configMap": {"name": config_map, "defaultMode": 0o777},
    })
    add_mount(main_container(pod), COMMANDS_VOLUME_NAME, COMMAND_SCRIPT_MOUNT_PATH)


def build_commands_config_map(
    test_name: str,
    namespace: str,
    steps: list[StepDescriptor],
) -> dict | None:
    """ConfigMap holding the scripts of every step run as a script."""
    data = {
        step.as_: COMMAND_PREFIX + step.commands
        for step in steps
        if step.run_as_script
    }
    if not data:
        return None
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": command_config_map_for_test(test_name),
            "namespace": namespace,
        },
        "data": data,
    }


# ═══════════════════════════════════════════════════════════════════
#  Environment
# ═══════════════════════════════════════════════════════════════════


def identity_env(job: JobSpec, test_name: str) -> list[dict]:
    return [
        env_var("NAMESPACE", job.namespace),
        env_var("JOB_NAME_SAFE", test_name.replace("_", "-")),
        env_var("JOB_NAME_HASH", job.job_name_hash()),
        env_var("UNIQUE_HASH", job.unique_hash()),
    ]


def generate_params(params: list[StepParameter], overrides: dict[str, str]) -> list[dict]:
    """Step parameters: an override wins over the default, else empty."""
    env: list[dict] = []
    for param in params:
        value = param.default if param.default is not None else ""
        if param.name in overrides:
            value = overrides[param.name]
        env.append(env_var(param.name, value))
    return env


def kubeconfig_env() -> list[dict]:
    """Kubeconfig paths inside the shared directory."""
    return [
        env_var("KUBECONFIG", posixpath.join(SECRET_MOUNT_PATH, "kubeconfig")),
        env_var("KUBECONFIGMINIMAL", posixpath.join(SECRET_MOUNT_PATH, "kubeconfig-minimal")),
        env_var("KUBEADMIN_PASSWORD_FILE", posixpath.join(SECRET_MOUNT_PATH, "kubeadmin-password")),
    ]


def cluster_claim_pod_params(
    secret_volume_mounts: list[dict],
    test_name: str,
) -> tuple[list[dict], list[dict]]:
    """Env and mounts exposing a claimed cluster's admin credentials.

    The credential volumes already exist on the pod; this finds their
    mounts among *secret_volume_mounts* so they can be mounted on the
    test container too.

    Raises:
        AggregateError: One error per expected mount that is missing.
    """
    env: list[dict] = []
    mounts: list[dict] = []
    errors: list[Exception] = []
    for secret, key, env_name in (
        (HIVE_ADMIN_KUBECONFIG_SECRET, HIVE_ADMIN_KUBECONFIG_SECRET_KEY, "KUBECONFIG"),
        (HIVE_ADMIN_PASSWORD_SECRET, HIVE_ADMIN_PASSWORD_SECRET_KEY, "KUBEADMIN_PASSWORD_FILE"),
    ):
        per_test = name_per_test(secret, test_name)
        mount_path = secret_mount_path(per_test)
        found = next((m for m in secret_volume_mounts if m.get("mountPath") == mount_path), None)
        if found is None:
            errors.append(ValueError(
                f"failed to find mount path {mount_path} to create secret {per_test}"
            ))
            continue
        mounts.append(dict(found))
        env.append(env_var(env_name, posixpath.join(mount_path, key)))
    if errors:
        raise AggregateError(errors)
    return env, mounts
