"""
Credential binding — mount credential references into a step pod.

Two strategies share one interface:

    CSISecretsBinding    one secrets-store CSI volume per
                         ``collection:mountPath`` group, backed by a
                         SecretProviderClass
    LegacySecretBinding  one secret volume per credential

``binding_for(enable_csi)`` picks the strategy.  Both return the
``(volume, mount)`` pairs they plan so the plan can be inspected
without a pod.
"""

from __future__ import annotations

import logging
from typing import Iterable

import yaml

from multistage.core.models.step import CredentialReference
from multistage.core.services.k8s_common import (
    CSI_DRIVER,
    GSM_PROJECT,
    add_mount,
    add_volume,
    main_container,
)
from multistage.core.services.k8s_naming import (
    csi_volume_name,
    legacy_volume_name,
    spc_name,
)

logger = logging.getLogger(__name__)

SPC_API_VERSION = "secrets-store.csi.x-k8s.io/v1"


def group_credentials(
    credentials: Iterable[CredentialReference],
) -> dict[str, list[CredentialReference]]:
    """Group credentials by ``collection:mountPath``.

    Groups and their members keep first-seen order.
    """
    groups: dict[str, list[CredentialReference]] = {}
    for cred in credentials:
        groups.setdefault(cred.group_key, []).append(cred)
    return groups


def build_gcp_secrets_parameter(credentials: Iterable[CredentialReference]) -> str:
    """YAML ``secrets`` parameter for the GCP secrets-store provider."""
    secrets = [
        {
            "resourceName": (
                f"projects/{GSM_PROJECT}/secrets/"
                f"{cred.collection}__{cred.name}/versions/latest"
            ),
            "fileName": cred.name,
        }
        for cred in credentials
    ]
    return yaml.safe_dump(secrets, sort_keys=False)


def build_secret_provider_class(
    namespace: str,
    credentials: list[CredentialReference],
) -> dict:
    """SecretProviderClass resource serving one credential group."""
    collection, mount_path = credentials[0].collection, credentials[0].mount_path
    return {
        "apiVersion": SPC_API_VERSION,
        "kind": "SecretProviderClass",
        "metadata": {
            "name": spc_name(namespace, collection, mount_path, credentials),
            "namespace": namespace,
        },
        "spec": {
            "provider": "gcp",
            "parameters": {
                "secrets": build_gcp_secrets_parameter(credentials),
            },
        },
    }


class CredentialBinding:
    """Strategy interface: turn credential references into pod mounts."""

    name = ""

    def plan(
        self,
        namespace: str,
        credentials: list[CredentialReference],
    ) -> list[tuple[dict, dict]]:
        raise NotImplementedError

    def resources(
        self,
        namespace: str,
        credentials: list[CredentialReference],
    ) -> list[dict]:
        """Auxiliary resources the planned volumes depend on."""
        return []

    def bind(self, pod: dict, credentials: list[CredentialReference]) -> None:
        """Add the planned volumes to *pod* and mount them on its test container."""
        namespace = pod.get("metadata", {}).get("namespace", "")
        container = main_container(pod)
        for volume, mount in self.plan(namespace, credentials):
            add_volume(pod, volume)
            add_mount(container, mount["name"], mount["mountPath"])


class CSISecretsBinding(CredentialBinding):
    name = "csi"

    def plan(
        self,
        namespace: str,
        credentials: list[CredentialReference],
    ) -> list[tuple[dict, dict]]:
        planned: list[tuple[dict, dict]] = []
        for group in group_credentials(credentials).values():
            collection, mount_path = group[0].collection, group[0].mount_path
            vol_name = csi_volume_name(namespace, collection, mount_path)
            volume = {
                "name": vol_name,
                "csi": {
                    "driver": CSI_DRIVER,
                    "readOnly": True,
                    "volumeAttributes": {
                        "secretProviderClass": spc_name(
                            namespace, collection, mount_path, group,
                        ),
                    },
                },
            }
            planned.append((volume, {"name": vol_name, "mountPath": mount_path}))
        return planned

    def resources(
        self,
        namespace: str,
        credentials: list[CredentialReference],
    ) -> list[dict]:
        return [
            build_secret_provider_class(namespace, group)
            for group in group_credentials(credentials).values()
        ]


class LegacySecretBinding(CredentialBinding):
    name = "legacy"

    def plan(
        self,
        namespace: str,
        credentials: list[CredentialReference],
    ) -> list[tuple[dict, dict]]:
        planned: list[tuple[dict, dict]] = []
        for cred in credentials:
            vol_name = legacy_volume_name(cred.namespace, cred.name)
            volume = {
                "name": vol_name,
                "secret": {"secretName": f"{cred.namespace}-{cred.name}"},
            }
            planned.append((volume, {"name": vol_name, "mountPath": cred.mount_path}))
        return planned


def binding_for(enable_csi: bool) -> CredentialBinding:
    """Pick the credential mounting strategy."""
    if enable_csi:
        return CSISecretsBinding()
    return LegacySecretBinding()
