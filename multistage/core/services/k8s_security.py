"""
Security context partitioning for step pods.

The cluster's security policy applies its defaults to every container,
so when one container must run privileged, all others are pinned
explicitly to non-root.
"""

from __future__ import annotations

import logging

from multistage.core.services.k8s_common import pod_spec

logger = logging.getLogger(__name__)

VPN_CAPABILITIES = {"add": ["NET_ADMIN"], "drop": ["ALL"]}

# Present in every cluster and allowed to use /dev/net/tun, but far
# broader than the VPN client needs.
# TODO: replace with a dedicated SELinux type for the VPN client.
VPN_SELINUX_OPTIONS = {
    "user": "system_u",
    "role": "system_r",
    "type": "container_runtime_t",
    "level": "s0",
}


def set_security_contexts(
    pod: dict,
    root: str,
    uid: int,
    capabilities: dict | None = None,
    selinux_options: dict | None = None,
) -> None:
    """Partition execution identity across all containers of *pod*.

    The container (or init container) named *root* runs as UID 0 with
    *capabilities* and *selinux_options*.  Every other container runs as
    non-root with *uid*.
    """
    spec = pod_spec(pod)
    for key in ("initContainers", "containers"):
        for container in spec.get(key) or []:
            if container.get("name") == root:
                ctx: dict = {"runAsUser": 0}
                if capabilities is not None:
                    ctx["capabilities"] = {k: list(v) for k, v in capabilities.items()}
                if selinux_options is not None:
                    ctx["seLinuxOptions"] = dict(selinux_options)
                container["securityContext"] = ctx
            else:
                container["securityContext"] = {
                    "runAsNonRoot": True,
                    "runAsUser": uid,
                }
    logger.debug("Security contexts set for %s (privileged: %s)", pod.get("metadata", {}).get("name"), root)
