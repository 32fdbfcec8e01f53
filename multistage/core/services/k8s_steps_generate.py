"""
Multi-stage step pods — per-step pipeline and the step list driver.

``generate_pods`` walks the steps in order and builds one pod per step
with ``generate_step_pod``.  A step either yields a complete pod or
errors; errors are collected and the next step is still built.  The
result carries the pods in input order, the best-effort step names and
one aggregated error.

Flow per step:
    image → resources (shm) → decoration → base pod → labels →
    service account → DNS/arch → home → wrapper → VPN → env →
    claim | kubeconfig → shm → profile → CLI → shared dir →
    credentials → script → security contexts → owner
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from multistage.core.errors import (
    AggregateError,
    PreconditionError,
    StepError,
    aggregate,
)
from multistage.core.models.job import DecorationState, JobSpec
from multistage.core.models.options import (
    ClaimRelease,
    ClusterClaim,
    ClusterProfile,
    ExecutionFlags,
    GeneratePodOptions,
    VPNConfig,
)
from multistage.core.models.request import CompileRequest, CompileResult
from multistage.core.models.step import Observer, StepDescriptor
from multistage.core.observability.metrics import MetricsEvent, MetricsRecorder, record_event
from multistage.core.services.k8s_base_pod import (
    BasePodGenerator,
    generate_base_pod,
    raw_job_spec,
)
from multistage.core.services.k8s_common import (
    COMMAND_PREFIX,
    COMMAND_SCRIPT_MOUNT_PATH,
    LABEL_METADATA_STEP,
    PIPELINE_IMAGE_STREAM,
    TERMINATION_GRACE_RATIO,
    TEST_CONTAINER_NAME,
    add_env,
    main_container,
    pod_spec,
)
from multistage.core.services.k8s_credentials import binding_for
from multistage.core.services.k8s_dependencies import (
    DigestResolver,
    StaticDigestResolver,
    dependency_parts,
    env_for_dependencies,
    needs_resolver,
    release_stream_for,
)
from multistage.core.services.k8s_pod_decorate import (
    add_cli_injector,
    add_command_script,
    add_dshm_volume,
    add_home_volume,
    add_owner_reference,
    add_profile,
    add_secret_wrapper,
    add_shared_dir_secret,
    add_vpn_client,
    apply_dns_config,
    apply_node_architecture,
    apply_vpn_security,
    build_commands_config_map,
    cluster_claim_pod_params,
    command_config_map_for_test,
    generate_params,
    identity_env,
    is_kubeconfig_needed,
    kubeconfig_env,
    profile_secret_name,
    relabel,
    set_service_account,
)
from multistage.core.services.k8s_resources import resources_for, split_shm

logger = logging.getLogger(__name__)


@dataclass
class StepPodContext:
    """Read-only configuration shared by every step of one test."""

    test_name: str
    job: JobSpec
    flags: ExecutionFlags = field(default_factory=ExecutionFlags)
    vpn: VPNConfig | None = None
    cluster_profile: ClusterProfile | None = None
    cluster_claim: ClusterClaim | None = None
    env: dict[str, str] = field(default_factory=dict)
    secret_volumes: list[dict] = field(default_factory=list)
    secret_volume_mounts: list[dict] = field(default_factory=list)
    resolver: DigestResolver | None = None
    base_pod_generator: BasePodGenerator = generate_base_pod
    recorder: MetricsRecorder | None = None

    @property
    def claim_release(self) -> ClaimRelease | None:
        if self.cluster_claim is None:
            return None
        return self.cluster_claim.claim_release(self.test_name)


def pod_name(test_name: str, step: StepDescriptor) -> str:
    return f"{test_name}-{step.as_}"


def should_skip(step: StepDescriptor, flags: ExecutionFlags) -> bool:
    """Optional-on-success steps are skipped when nothing failed before."""
    return (
        step.optional_on_success
        and flags.allow_skip_on_success
        and not flags.has_prev_errs
    )


def step_image(step: StepDescriptor, claim_release: ClaimRelease | None) -> str:
    tag = step.from_image_tag()
    if tag is not None:
        return f"{PIPELINE_IMAGE_STREAM}:{tag}"
    if not step.from_:
        raise StepError(step.as_, "either from or from_image must be set")
    stream, tag = dependency_parts(step.from_, claim_release)
    return f"{stream}:{tag}"


def step_decoration(step: StepDescriptor, defaults: DecorationState) -> DecorationState:
    """Decoration for *step*: its own timeout and grace period, else the job's."""
    return DecorationState(
        timeout=step.timeout if step.timeout is not None else defaults.timeout,
        grace_period=step.grace_period if step.grace_period is not None else defaults.grace_period,
    )


def termination_grace_seconds(decoration: DecorationState) -> int:
    """Pod termination window, longer than the process grace period."""
    num, den = TERMINATION_GRACE_RATIO
    return int(decoration.grace_period.total_seconds() * num / den)


def step_resources(step: StepDescriptor) -> tuple[dict, str | None]:
    """Container resources of *step* and its shm size, if any."""
    try:
        return split_shm(resources_for(step.resources))
    except ValueError as e:
        raise StepError(step.as_, str(e)) from e


def step_commands(step: StepDescriptor) -> list[str]:
    if step.run_as_script:
        return [f"{COMMAND_SCRIPT_MOUNT_PATH}/{step.as_}"]
    return ["/bin/bash", "-c", COMMAND_PREFIX + step.commands]


def generate_step_pod(
    step: StepDescriptor,
    ctx: StepPodContext,
    defaults: DecorationState,
    *,
    env: list[dict] | None = None,
    options: GeneratePodOptions | None = None,
    resources: tuple[dict, str | None] | None = None,
) -> tuple[dict, DecorationState]:
    """Build the complete pod for one step.

    Args:
        step: The step to build.
        ctx: Configuration shared by all steps of the test.
        defaults: Job decoration the step overrides.
        env: Extra env for the test container.
        options: Observer / CSI toggles.
        resources: Already parsed ``step_resources(step)``.

    Returns:
        The pod and the decoration it was built with.

    Raises:
        StepError: The step cannot be built.
        AggregateError: Several independent problems with the step.
    """
    options = options or GeneratePodOptions()
    name = pod_name(ctx.test_name, step)
    claim_release = ctx.claim_release

    image = step_image(step, claim_release)

    resources, shm_size = resources or step_resources(step)

    decoration = step_decoration(step, defaults)

    try:
        pod = ctx.base_pod_generator(
            ctx.job,
            {LABEL_METADATA_STEP: step.as_},
            name,
            ctx.job.node_name,
            TEST_CONTAINER_NAME,
            step_commands(step),
            image,
            resources,
            f"{ctx.test_name}/{step.as_}",
            decoration,
            raw_job_spec(ctx.job),
            ctx.secret_volume_mounts,
            propagate_exit_code=options.is_observer,
        )
    except Exception as e:
        raise StepError(step.as_, f"failed to generate base pod: {e}") from e

    relabel(pod, ctx.test_name)
    needs_kubeconfig = is_kubeconfig_needed(step, options)
    set_service_account(pod, ctx.test_name, needs_kubeconfig)
    pod_spec(pod)["terminationGracePeriodSeconds"] = termination_grace_seconds(decoration)
    apply_dns_config(pod, step.dns_config)
    apply_node_architecture(pod, step.node_architecture)
    add_home_volume(pod, ctx.secret_volumes)

    add_secret_wrapper(pod, ctx.vpn, not needs_kubeconfig, options.is_observer)
    if ctx.vpn is not None:
        add_vpn_client(pod, ctx.vpn)

    container = main_container(pod)
    add_env(container, identity_env(ctx.job, ctx.test_name))
    add_env(container, [dict(e) for e in env or []])
    add_env(container, generate_params(step.environment, ctx.env))
    dep_env, dep_errors = env_for_dependencies(step, ctx.resolver, claim_release)
    if dep_errors:
        raise AggregateError(dep_errors)
    add_env(container, dep_env)

    if ctx.cluster_profile is not None and ctx.cluster_claim is not None:
        raise StepError(step.as_, "cannot set both cluster_profile and cluster_claim in a test")
    if ctx.cluster_claim is not None:
        try:
            claim_env, claim_mounts = cluster_claim_pod_params(
                ctx.secret_volume_mounts, ctx.test_name,
            )
        except AggregateError as e:
            raise StepError(step.as_, f"failed to get cluster claim pod params: {e}") from e
        add_env(container, claim_env)
        mounts = container.setdefault("volumeMounts", [])
        mounts.extend(m for m in claim_mounts if m not in mounts)
    elif needs_kubeconfig:
        add_env(container, kubeconfig_env())

    if shm_size is not None:
        add_dshm_volume(pod, container, shm_size)
    if ctx.cluster_profile is not None:
        add_profile(pod, profile_secret_name(ctx.test_name), ctx.cluster_profile)
    if step.cli:
        stream, _ = dependency_parts(f"{release_stream_for(step.cli)}:cli", claim_release)
        add_cli_injector(pod, stream)
    add_shared_dir_secret(pod, ctx.test_name)
    binding_for(options.enable_secrets_store_csi_driver).bind(pod, step.credentials)
    if step.run_as_script:
        add_command_script(pod, command_config_map_for_test(ctx.test_name))
    if ctx.vpn is not None:
        apply_vpn_security(pod, ctx.vpn)
    add_owner_reference(pod, ctx.job.owner)

    return pod, decoration


def generate_pods(
    steps: list[StepDescriptor],
    ctx: StepPodContext,
    *,
    env: list[dict] | None = None,
    options: GeneratePodOptions | None = None,
) -> CompileResult:
    """Build pods for *steps* in order.

    A failing step is reported in ``CompileResult.error`` and does not
    stop the steps after it.

    Raises:
        PreconditionError: A collaborator the steps need is missing.
    """
    options = options or GeneratePodOptions()
    _check_preconditions(steps, ctx)

    result = CompileResult(decoration=ctx.job.decoration)
    errors: list[BaseException] = []
    binding = binding_for(options.enable_secrets_store_csi_driver)
    seen_aux: set[str] = set()
    built: list[StepDescriptor] = []

    for step in steps:
        name = pod_name(ctx.test_name, step)
        if should_skip(step, ctx.flags):
            logger.info("Skipping optional step %s", name)
            record_event(ctx.recorder, MetricsEvent("step_skipped", {"step": name}))
            continue
        try:
            resources = step_resources(step)
        except StepError as e:
            errors.append(e)
            _record_failure(ctx, name)
            continue
        if ctx.flags.allow_best_effort_post_steps and step.best_effort:
            result.best_effort_steps.add(name)

        try:
            pod, result.decoration = generate_step_pod(
                step, ctx, ctx.job.decoration, env=env, options=options, resources=resources,
            )
        except AggregateError as e:
            errors.extend(e.errors)
            _record_failure(ctx, name)
            continue
        except StepError as e:
            errors.append(e)
            _record_failure(ctx, name)
            continue

        result.pods.append(pod)
        built.append(step)
        record_event(ctx.recorder, MetricsEvent("pod_generated", {"step": name}))

        namespace = pod["metadata"].get("namespace", "")
        for resource in binding.resources(namespace, step.credentials):
            if resource["metadata"]["name"] not in seen_aux:
                seen_aux.add(resource["metadata"]["name"])
                result.auxiliary.append(resource)

    config_map = build_commands_config_map(ctx.test_name, ctx.job.namespace, built)
    if config_map is not None:
        result.auxiliary.append(config_map)

    result.error = aggregate(errors)
    if result.error is not None:
        logger.warning("%d step(s) of %s failed: %s", len(errors), ctx.test_name, result.error)
    return result


def generate_observers(
    observers: list[Observer],
    ctx: StepPodContext,
    *,
    options: GeneratePodOptions | None = None,
) -> CompileResult:
    """Build observer pods: steps in observer mode, no extra env."""
    base = options or GeneratePodOptions()
    observer_options = base.model_copy(update={"is_observer": True})
    return generate_pods([o.as_step() for o in observers], ctx, options=observer_options)


def compile_request(
    request: CompileRequest,
    *,
    resolver: DigestResolver | None = None,
    base_pod_generator: BasePodGenerator = generate_base_pod,
    recorder: MetricsRecorder | None = None,
) -> CompileResult:
    """Compile the steps and observers of *request*.

    Without an explicit *resolver*, the request's static ``digests``
    map is used.  Observer pods follow the step pods; their errors are
    aggregated with the steps' errors.
    """
    ctx = StepPodContext(
        test_name=request.test,
        job=request.job,
        flags=request.flags,
        vpn=request.vpn,
        cluster_profile=request.cluster_profile,
        cluster_claim=request.cluster_claim,
        env=dict(request.env),
        secret_volumes=list(request.secret_volumes),
        secret_volume_mounts=list(request.secret_volume_mounts),
        resolver=resolver or (StaticDigestResolver(request.digests) if request.digests else None),
        base_pod_generator=base_pod_generator,
        recorder=recorder,
    )
    result = generate_pods(request.steps, ctx, options=request.options)
    if not request.observers:
        return result

    observed = generate_observers(request.observers, ctx, options=request.options)
    result.pods.extend(observed.pods)
    names = {r["metadata"]["name"] for r in result.auxiliary}
    result.auxiliary.extend(r for r in observed.auxiliary if r["metadata"]["name"] not in names)
    errors = list(result.error or []) + list(observed.error or [])
    result.error = aggregate(errors)
    return result


def _check_preconditions(steps: list[StepDescriptor], ctx: StepPodContext) -> None:
    if not callable(ctx.base_pod_generator):
        raise PreconditionError("base pod generator is not callable")
    if ctx.resolver is None:
        missing = [s.as_ for s in steps if needs_resolver(s) and not should_skip(s, ctx.flags)]
        if missing:
            raise PreconditionError(
                f"no digest resolver configured for dependencies of steps: {', '.join(missing)}"
            )


def _record_failure(ctx: StepPodContext, name: str) -> None:
    logger.debug("Step %s failed", name)
    record_event(ctx.recorder, MetricsEvent("step_failed", {"step": name}))
