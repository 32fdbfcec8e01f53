"""
Deterministic names for credential volumes and SecretProviderClasses.

Names are part of the wire contract: they must be valid DNS labels
(≤63 chars, lowercase alphanumerics and hyphens) and identical across
runs for identical input.  When the namespace prefix does not fit, the
name falls back to a bare hash.

    csi_volume_name("test-ns", "coll1", "/tmp/cred1")
    → "test-ns-3b8b9081288110be"
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterable

from multistage.core.models.step import CredentialReference
from multistage.core.services.k8s_common import DNS_LABEL_MAX

# Hex characters of the digest kept next to a readable prefix, and in
# hash-only mode.
_PREFIXED_HASH_LEN = 16
_HASH_ONLY_LEN = 32

SPC_SUFFIX = "-spc"

_INVALID_CHARS_RE = re.compile(r"[^a-z0-9-]+")


def _digest(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def _prefix(namespace: str) -> str:
    """Lowercase the namespace and replace anything a DNS label cannot hold."""
    return _INVALID_CHARS_RE.sub("-", namespace.lower()).strip("-")


def _compose(namespace: str, digest: str, suffix: str = "") -> str:
    prefix = _prefix(namespace)
    name = f"{prefix}-{digest[:_PREFIXED_HASH_LEN]}{suffix}"
    if not prefix or len(name) > DNS_LABEL_MAX:
        name = f"{digest[:_HASH_ONLY_LEN]}{suffix}"
    return name


def csi_volume_name(namespace: str, collection: str, mount_path: str) -> str:
    """Volume name for the CSI volume serving one ``collection:mountPath`` group."""
    return _compose(namespace, _digest(f"{collection}-{mount_path}"))


def spc_name(
    namespace: str,
    collection: str,
    mount_path: str,
    credentials: Iterable[CredentialReference],
) -> str:
    """SecretProviderClass name for one credential group.

    The member names are part of the hash, so two groups that share a
    collection and mount path but differ in membership never alias.
    """
    names = ",".join(sorted(c.name for c in credentials))
    return _compose(namespace, _digest(f"{collection}:{mount_path}:{names}"), SPC_SUFFIX)


def legacy_volume_name(namespace: str, name: str) -> str:
    """Volume name for a credential mounted from a plain secret.

    Characters a DNS label cannot hold become hyphens; a name that is
    still too long falls back to a bare hash of the input.
    """
    key = f"{namespace}-{name}"
    volume = _INVALID_CHARS_RE.sub("-", key.lower()).strip("-")
    if not volume or len(volume) > DNS_LABEL_MAX:
        volume = _digest(key)[:_HASH_ONLY_LEN]
    return volume
