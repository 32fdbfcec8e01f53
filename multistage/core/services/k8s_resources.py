"""
Resource requirements for step containers.

Quantities are validated with the Kubernetes quantity grammar and kept
as the user wrote them.  The shared-memory pseudo-resource is not a real
container resource: it is removed from the container and turned into a
memory-backed ``/dev/shm`` volume instead.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal, InvalidOperation

from multistage.core.models.step import ResourceRequirements
from multistage.core.services.k8s_common import SHM_RESOURCE

logger = logging.getLogger(__name__)

_QUANTITY_RE = re.compile(
    r"^(?P<number>[+-]?(?:\d+(?:\.\d*)?|\.\d+))"
    r"(?P<suffix>Ki|Mi|Gi|Ti|Pi|Ei|[eE][+-]?\d+|n|u|m|k|M|G|T|P|E)?$"
)

_BINARY_SUFFIXES = {
    "Ki": 2 ** 10,
    "Mi": 2 ** 20,
    "Gi": 2 ** 30,
    "Ti": 2 ** 40,
    "Pi": 2 ** 50,
    "Ei": 2 ** 60,
}

_DECIMAL_SUFFIXES = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
}


def parse_quantity(value: str) -> Decimal:
    """Parse a Kubernetes quantity (``"100m"``, ``"2Gi"``, ``"1e3"``)."""
    m = _QUANTITY_RE.match(str(value).strip())
    if not m:
        raise ValueError(f"quantities must match the regular expression {_QUANTITY_RE.pattern!r}: {value!r}")
    try:
        number = Decimal(m.group("number"))
    except InvalidOperation as e:
        raise ValueError(f"invalid quantity {value!r}") from e

    suffix = m.group("suffix") or ""
    if suffix in _BINARY_SUFFIXES:
        return number * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return number * _DECIMAL_SUFFIXES[suffix]
    if suffix:
        return number * (Decimal(10) ** int(suffix[1:]))
    return number


def resources_for(req: ResourceRequirements) -> dict:
    """Validate raw requirements and return the container ``resources`` dict."""
    resources: dict = {}
    for section, label in (("requests", "request"), ("limits", "limit")):
        values = getattr(req, section)
        for name, value in values.items():
            try:
                parse_quantity(value)
            except ValueError as e:
                raise ValueError(f"invalid resource {label}: {name}: {e}") from e
            resources.setdefault(section, {})[name] = value
    return resources


def split_shm(resources: dict) -> tuple[dict, str | None]:
    """Remove the shm resource from *resources*.

    Returns the container resources without shm and the shm size, or
    None when no (non-zero) shm was requested.  shm set in only one of
    requests/limits is an error.
    """
    requests = resources.get("requests") or {}
    limits = resources.get("limits") or {}
    in_requests, in_limits = SHM_RESOURCE in requests, SHM_RESOURCE in limits
    if in_requests != in_limits:
        raise ValueError(f"{SHM_RESOURCE} must be set in both requests and limits")
    if not in_requests:
        return resources, None

    logger.info("removing shm from resources for container")
    size = requests[SHM_RESOURCE]
    stripped: dict = {}
    for section in ("requests", "limits"):
        kept = {k: v for k, v in (resources.get(section) or {}).items() if k != SHM_RESOURCE}
        if kept:
            stripped[section] = kept
    if parse_quantity(size) == 0:
        return stripped, None
    return stripped, size
