"""
Image dependency resolution for step pods.

Each declared dependency becomes one env variable holding a pull spec.
Explicit pull specs are used verbatim (they may point at registries the
generator cannot reach).  Everything else is looked up through an
injected ``DigestResolver``; lookup failures are collected per
dependency so the remaining dependencies and steps still resolve.
"""

from __future__ import annotations

import logging
from typing import Callable

from multistage.core.errors import StepError
from multistage.core.models.options import LATEST_RELEASE_NAME, ClaimRelease
from multistage.core.models.step import StepDescriptor
from multistage.core.services.k8s_common import (
    PIPELINE_IMAGE_STREAM,
    STABLE_IMAGE_STREAM,
    env_var,
)

logger = logging.getLogger(__name__)

# (image_stream, tag) -> pull spec; raises on failure.
DigestResolver = Callable[[str, str], str]


class DependencyResolutionError(StepError):
    """A dependency's pull spec could not be determined."""

    def __init__(self, step: str, dependency: str) -> None:
        self.dependency = dependency
        super().__init__(step, f"could not determine image pull spec for image {dependency}")


class StaticDigestResolver:
    """Resolve pull specs from a fixed ``stream:tag -> pullspec`` map."""

    def __init__(self, digests: dict[str, str]) -> None:
        self._digests = dict(digests)

    def __call__(self, image_stream: str, tag: str) -> str:
        key = f"{image_stream}:{tag}"
        try:
            return self._digests[key]
        except KeyError:
            raise LookupError(f"no digest known for {key}") from None


def release_stream_for(release: str) -> str:
    """Image stream holding the payload of *release*."""
    if release == LATEST_RELEASE_NAME:
        return STABLE_IMAGE_STREAM
    return f"{STABLE_IMAGE_STREAM}-{release}"


def dependency_parts(name: str, claim_release: ClaimRelease | None = None) -> tuple[str, str]:
    """Split a dependency name into ``(image_stream, tag)``.

    Bare names live in the pipeline stream.  With a claimed cluster, the
    overridden release stream is redirected to the claim's release.
    """
    if ":" not in name:
        return PIPELINE_IMAGE_STREAM, name
    stream, tag = name.split(":", 1)
    if claim_release is not None and stream == release_stream_for(claim_release.override_name):
        stream = release_stream_for(claim_release.release_name)
    return stream, tag


def needs_resolver(step: StepDescriptor) -> bool:
    """Whether any dependency of *step* needs a digest lookup."""
    return any(not dep.pull_spec for dep in step.dependencies)


def env_for_dependencies(
    step: StepDescriptor,
    resolver: DigestResolver | None,
    claim_release: ClaimRelease | None = None,
) -> tuple[list[dict], list[StepError]]:
    """Build env bindings for every dependency of *step*.

    Returns the bindings that resolved and one error per dependency
    that did not.
    """
    env: list[dict] = []
    errors: list[StepError] = []
    for dep in step.dependencies:
        if dep.pull_spec:
            ref = dep.pull_spec
        else:
            stream, tag = dependency_parts(dep.name, claim_release)
            try:
                if resolver is None:
                    raise LookupError("no digest resolver configured")
                ref = resolver(stream, tag)
            except Exception as e:
                logger.debug("Digest lookup for %s:%s failed: %s", stream, tag, e)
                err = DependencyResolutionError(step.as_, dep.name)
                err.__cause__ = e
                errors.append(err)
                continue
        env.append(env_var(dep.env, ref))
    return env, errors
