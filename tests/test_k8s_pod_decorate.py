"""
Tests for k8s_pod_decorate and k8s_base_pod — the pod skeleton and the
decorations layered on top of it.

Pure unit tests: dict in → dict out, no cluster access.
"""

import json

import pytest

from multistage.core.errors import AggregateError, PodGenerationError
from multistage.core.models.job import DecorationState, JobSpec
from multistage.core.models.options import ClusterProfile, GeneratePodOptions, VPNConfig
from multistage.core.models.step import DNSConfig, StepParameter
from multistage.core.services.k8s_base_pod import generate_base_pod, raw_job_spec
from multistage.core.services.k8s_pod_decorate import (
    ENTRYPOINT_WRAPPER_BIN,
    VPN_UP_FILE,
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
    build_commands_config_map,
    cluster_claim_pod_params,
    generate_params,
    identity_env,
    is_kubeconfig_needed,
    kubeconfig_env,
    relabel,
    set_service_account,
)


def _base_pod(job: JobSpec, **overrides) -> dict:
    kwargs = dict(
        job=job,
        labels={"ci.openshift.io/metadata.step": "run"},
        name="e2e-run",
        node_name="",
        container_name="test",
        command=["/bin/bash", "-c", "make test"],
        image="pipeline:src",
        resources={},
        artifact_dir="e2e/run",
        decoration=DecorationState(),
        raw_spec=raw_job_spec(job),
        extra_mounts=[],
    )
    kwargs.update(overrides)
    return generate_base_pod(**kwargs)


def _env(container: dict) -> dict:
    return {e["name"]: e["value"] for e in container.get("env", [])}


def _volume_names(pod: dict) -> list[str]:
    return [v["name"] for v in pod["spec"].get("volumes", [])]


# ═══════════════════════════════════════════════════════════════════
#  Base pod
# ═══════════════════════════════════════════════════════════════════


class TestGenerateBasePod:
    def test_skeleton(self, job):
        pod = _base_pod(job)
        assert pod["kind"] == "Pod"
        assert pod["metadata"]["name"] == "e2e-run"
        assert pod["metadata"]["namespace"] == "ci-op-1234"
        assert pod["spec"]["restartPolicy"] == "Never"
        container = pod["spec"]["containers"][0]
        assert container["name"] == "test"
        assert container["image"] == "pipeline:src"
        assert container["command"] == ["/bin/bash", "-c", "make test"]
        assert "logs" in _volume_names(pod)

    def test_labels(self, job):
        labels = _base_pod(job)["metadata"]["labels"]
        assert labels["created-by-ci"] == "true"
        assert labels["prow.k8s.io/id"] == "5678"
        assert labels["ci.openshift.io/metadata.step"] == "run"

    def test_entrypoint_options(self, job):
        decoration = DecorationState(timeout="1h", grace_period="30s")
        pod = _base_pod(job, decoration=decoration, propagate_exit_code=True)
        options = json.loads(_env(pod["spec"]["containers"][0])["ENTRYPOINT_OPTIONS"])
        assert options["timeout"] == "1h0m0s"
        assert options["grace_period"] == "30s"
        assert options["propagate_exit_code"] is True
        assert options["upload_path"] == "e2e/run"

    def test_extra_mounts_copied(self, job):
        mount = {"name": "s", "mountPath": "/secrets/s"}
        pod = _base_pod(job, extra_mounts=[mount])
        mounts = pod["spec"]["containers"][0]["volumeMounts"]
        assert mount in mounts
        assert all(m is not mount for m in mounts)

    def test_node_name(self, job):
        assert _base_pod(job, node_name="node-1")["spec"]["nodeName"] == "node-1"
        assert "nodeName" not in _base_pod(job)["spec"]

    @pytest.mark.parametrize("field", ["name", "image", "command"])
    def test_required(self, job, field):
        empty = [] if field == "command" else ""
        with pytest.raises(PodGenerationError):
            _base_pod(job, **{field: empty})


# ═══════════════════════════════════════════════════════════════════
#  Metadata, identity and scheduling
# ═══════════════════════════════════════════════════════════════════


class TestRelabel:
    def test_labels_and_annotation(self, job):
        pod = _base_pod(job)
        relabel(pod, "e2e")
        labels = pod["metadata"]["labels"]
        assert "prow.k8s.io/id" not in labels
        assert labels["ci.openshift.io/multi-stage-test"] == "e2e"
        assert pod["metadata"]["annotations"]["ci-operator.openshift.io/save-container-logs"] == "true"


class TestServiceAccount:
    def test_kubeconfig_needed(self, job):
        pod = _base_pod(job)
        set_service_account(pod, "e2e", True)
        assert pod["spec"]["serviceAccountName"] == "e2e"

    def test_no_kubeconfig(self, job):
        pod = _base_pod(job)
        set_service_account(pod, "e2e", False)
        assert "serviceAccountName" not in pod["spec"]
        assert pod["spec"]["automountServiceAccountToken"] is False

    def test_is_kubeconfig_needed(self, make_step):
        step = make_step("run", no_kubeconfig=True)
        assert is_kubeconfig_needed(step, GeneratePodOptions()) is False
        assert is_kubeconfig_needed(step, GeneratePodOptions(is_observer=True)) is True
        assert is_kubeconfig_needed(make_step("run"), GeneratePodOptions()) is True


class TestScheduling:
    def test_dns_nameservers_switch_policy(self, job):
        pod = _base_pod(job)
        apply_dns_config(pod, DNSConfig(nameservers=["10.0.0.1"], searches=["example.com"]))
        assert pod["spec"]["dnsConfig"] == {
            "nameservers": ["10.0.0.1"],
            "searches": ["example.com"],
        }
        assert pod["spec"]["dnsPolicy"] == "None"

    def test_dns_searches_only(self, job):
        pod = _base_pod(job)
        apply_dns_config(pod, DNSConfig(searches=["example.com"]))
        assert "dnsPolicy" not in pod["spec"]

    def test_dns_none(self, job):
        pod = _base_pod(job)
        apply_dns_config(pod, None)
        assert "dnsConfig" not in pod["spec"]

    def test_node_architecture(self, job):
        pod = _base_pod(job)
        apply_node_architecture(pod, "arm64")
        assert pod["spec"]["nodeSelector"] == {"kubernetes.io/arch": "arm64"}

    def test_owner_reference(self, job):
        pod = _base_pod(job)
        owner = {"apiVersion": "v1", "kind": "Namespace", "name": "ci-op-1234", "uid": "u"}
        add_owner_reference(pod, owner)
        assert pod["metadata"]["ownerReferences"] == [owner]


# ═══════════════════════════════════════════════════════════════════
#  Volumes and wrappers
# ═══════════════════════════════════════════════════════════════════


class TestAddHomeVolume:
    def test_home_and_secret_volumes(self, job):
        pod = _base_pod(job)
        add_home_volume(pod, [{"name": "extra", "secret": {"secretName": "extra"}}])
        assert _volume_names(pod)[-2:] == ["home", "extra"]
        assert {"name": "home", "mountPath": "/alabama"} in pod["spec"]["containers"][0]["volumeMounts"]


class TestAddSecretWrapper:
    def test_wraps_command(self, job):
        pod = _base_pod(job)
        add_secret_wrapper(pod, None, False, False)
        container = pod["spec"]["containers"][0]
        assert container["command"] == [ENTRYPOINT_WRAPPER_BIN]
        assert container["args"] == ["/bin/bash", "-c", "make test"]
        assert pod["spec"]["initContainers"][0]["name"] == "cp-entrypoint-wrapper"

    def test_flags_precede_command(self, job):
        pod = _base_pod(job)
        vpn = VPNConfig(image="vpn", commands="connect", wait_timeout="5m", namespace_uid=1000)
        add_secret_wrapper(pod, vpn, True, True)
        assert pod["spec"]["containers"][0]["args"] == [
            "--wait-for-file", VPN_UP_FILE, "--wait-timeout", "5m",
            "--mode=skip-kubeconfig",
            "--mode=observer",
            "/bin/bash", "-c", "make test",
        ]

    def test_vpn_without_timeout(self, job):
        pod = _base_pod(job)
        vpn = VPNConfig(image="vpn", commands="connect", namespace_uid=1000)
        add_secret_wrapper(pod, vpn, False, False)
        assert "--wait-for-file" not in pod["spec"]["containers"][0]["args"]


class TestAddVPNClient:
    def test_sidecar(self, job):
        pod = _base_pod(job)
        add_vpn_client(pod, VPNConfig(image="vpn:1", commands="connect", namespace_uid=1000))
        vpn = pod["spec"]["containers"][1]
        assert vpn["name"] == "vpn-client"
        assert vpn["command"] == ["bash", "-c", "connect"]
        assert vpn["workingDir"] == "/tmp/profile"
        assert {"vpn", "tun"} <= set(_volume_names(pod))
        tun = next(v for v in pod["spec"]["volumes"] if v["name"] == "tun")
        assert tun["hostPath"] == {"path": "/dev/net/tun", "type": "CharDevice"}
        assert {"name": "vpn", "mountPath": "/tmp/vpn"} in pod["spec"]["containers"][0]["volumeMounts"]


class TestAddDshmVolume:
    def test_memory_volume(self, job):
        pod = _base_pod(job)
        add_dshm_volume(pod, pod["spec"]["containers"][0], "2G")
        dshm = next(v for v in pod["spec"]["volumes"] if v["name"] == "dshm")
        assert dshm["emptyDir"] == {"medium": "Memory", "sizeLimit": "2G"}
        assert {"name": "dshm", "mountPath": "/dev/shm"} in pod["spec"]["containers"][0]["volumeMounts"]


class TestAddProfile:
    def test_profile(self, job):
        pod = _base_pod(job)
        add_profile(pod, "e2e-cluster-profile", ClusterProfile(name="aws"))
        env = _env(pod["spec"]["containers"][0])
        assert env["CLUSTER_PROFILE_NAME"] == "aws"
        assert env["CLUSTER_TYPE"] == "aws"
        assert env["CLUSTER_PROFILE_DIR"] == "/var/run/secrets/ci.openshift.io/cluster-profile"
        profile = next(v for v in pod["spec"]["volumes"] if v["name"] == "cluster-profile")
        assert profile["secret"] == {"secretName": "e2e-cluster-profile"}

    def test_explicit_cluster_type(self, job):
        pod = _base_pod(job)
        add_profile(pod, "s", ClusterProfile(name="aws-2", cluster_type="aws"))
        assert _env(pod["spec"]["containers"][0])["CLUSTER_TYPE"] == "aws"


class TestAddCLIInjector:
    def test_init_container(self, job):
        pod = _base_pod(job)
        add_cli_injector(pod, "stable-initial")
        init = pod["spec"]["initContainers"][-1]
        assert init["name"] == "inject-cli"
        assert init["image"] == "stable-initial:cli-artifacts"
        assert "oc.rhel8" in init["args"][1]
        container = pod["spec"]["containers"][0]
        assert _env(container)["CLI_DIR"] == "/cli"
        assert {"name": "cli", "mountPath": "/cli"} in container["volumeMounts"]


class TestSharedDirAndScripts:
    def test_shared_dir_secret(self, job):
        pod = _base_pod(job)
        add_shared_dir_secret(pod, "e2e")
        assert _env(pod["spec"]["containers"][0])["SHARED_DIR"] == (
            "/var/run/secrets/ci.openshift.io/multi-stage"
        )
        assert {"name": "e2e", "secret": {"secretName": "e2e"}} in pod["spec"]["volumes"]

    def test_command_script(self, job):
        pod = _base_pod(job)
        add_command_script(pod, "e2e-commands")
        vol = next(v for v in pod["spec"]["volumes"] if v["name"] == "commands-script")
        assert vol["configMap"] == {"name": "e2e-commands", "defaultMode": 0o777}

    def test_commands_config_map(self, make_step):
        steps = [
            make_step("setup", commands="make", run_as_script=True),
            make_step("run"),
        ]
        cm = build_commands_config_map("e2e", "ci-op-1234", steps)
        assert cm["metadata"] == {"name": "e2e-commands", "namespace": "ci-op-1234"}
        assert cm["data"] == {"setup": "#!/bin/bash\nset -eu\nmake"}

    def test_no_scripts_no_config_map(self, make_step):
        assert build_commands_config_map("e2e", "ns", [make_step("run")]) is None


# ═══════════════════════════════════════════════════════════════════
#  Environment
# ═══════════════════════════════════════════════════════════════════


class TestEnvironment:
    def test_identity_env(self, job):
        env = {e["name"]: e["value"] for e in identity_env(job, "e2e_aws")}
        assert env["NAMESPACE"] == "ci-op-1234"
        assert env["JOB_NAME_SAFE"] == "e2e-aws"
        assert env["JOB_NAME_HASH"] == job.job_name_hash()
        assert env["UNIQUE_HASH"] == job.unique_hash()
        assert len(env["UNIQUE_HASH"]) == 5

    def test_generate_params(self):
        params = [
            StepParameter(name="A", default="a"),
            StepParameter(name="B"),
            StepParameter(name="C", default="c"),
        ]
        env = generate_params(params, {"C": "override"})
        assert env == [
            {"name": "A", "value": "a"},
            {"name": "B", "value": ""},
            {"name": "C", "value": "override"},
        ]

    def test_kubeconfig_env(self):
        env = {e["name"]: e["value"] for e in kubeconfig_env()}
        assert env["KUBECONFIG"] == "/var/run/secrets/ci.openshift.io/multi-stage/kubeconfig"
        assert set(env) == {"KUBECONFIG", "KUBECONFIGMINIMAL", "KUBEADMIN_PASSWORD_FILE"}


class TestClusterClaimPodParams:
    def test_found(self):
        mounts = [
            {"name": "a", "mountPath": "/secrets/e2e-hive-admin-kubeconfig"},
            {"name": "b", "mountPath": "/secrets/e2e-hive-admin-password"},
        ]
        env, found = cluster_claim_pod_params(mounts, "e2e")
        assert env == [
            {"name": "KUBECONFIG", "value": "/secrets/e2e-hive-admin-kubeconfig/kubeconfig"},
            {"name": "KUBEADMIN_PASSWORD_FILE", "value": "/secrets/e2e-hive-admin-password/password"},
        ]
        assert found == mounts

    def test_each_missing_mount_reported(self):
        with pytest.raises(AggregateError) as exc:
            cluster_claim_pod_params([], "e2e")
        assert len(exc.value) == 2
        assert "/secrets/e2e-hive-admin-kubeconfig" in str(exc.value)
