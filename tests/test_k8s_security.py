"""
Tests for k8s_security — per-container security contexts.
"""

from multistage.core.services.k8s_security import (
    VPN_CAPABILITIES,
    VPN_SELINUX_OPTIONS,
    set_security_contexts,
)


def _pod() -> dict:
    return {
        "metadata": {"name": "e2e-run"},
        "spec": {
            "initContainers": [{"name": "cp-entrypoint-wrapper"}, {"name": "inject-cli"}],
            "containers": [{"name": "test"}, {"name": "vpn-client"}],
        },
    }


class TestSetSecurityContexts:
    def test_root_container_privileged(self):
        pod = _pod()
        set_security_contexts(pod, "vpn-client", 1000, VPN_CAPABILITIES, VPN_SELINUX_OPTIONS)
        vpn = pod["spec"]["containers"][1]["securityContext"]
        assert vpn["runAsUser"] == 0
        assert vpn["capabilities"] == {"add": ["NET_ADMIN"], "drop": ["ALL"]}
        assert vpn["seLinuxOptions"] == {
            "user": "system_u",
            "role": "system_r",
            "type": "container_runtime_t",
            "level": "s0",
        }

    def test_everyone_else_non_root(self):
        """Init containers are covered too."""
        pod = _pod()
        set_security_contexts(pod, "vpn-client", 1000, VPN_CAPABILITIES, VPN_SELINUX_OPTIONS)
        others = [
            *pod["spec"]["initContainers"],
            pod["spec"]["containers"][0],
        ]
        for c in others:
            assert c["securityContext"] == {"runAsNonRoot": True, "runAsUser": 1000}

    def test_no_root_match(self):
        pod = _pod()
        set_security_contexts(pod, "missing", 42)
        for key in ("initContainers", "containers"):
            for c in pod["spec"][key]:
                assert c["securityContext"]["runAsUser"] == 42

    def test_no_capabilities(self):
        pod = _pod()
        set_security_contexts(pod, "test", 1000)
        assert pod["spec"]["containers"][0]["securityContext"] == {"runAsUser": 0}

    def test_capabilities_copied(self):
        """The shared capability constant is never aliased into a pod."""
        pod = _pod()
        set_security_contexts(pod, "vpn-client", 1000, VPN_CAPABILITIES)
        pod["spec"]["containers"][1]["securityContext"]["capabilities"]["add"].append("X")
        assert VPN_CAPABILITIES["add"] == ["NET_ADMIN"]

    def test_no_init_containers(self):
        pod = {"spec": {"containers": [{"name": "test"}]}}
        set_security_contexts(pod, "vpn-client", 7)
        assert pod["spec"]["containers"][0]["securityContext"]["runAsNonRoot"] is True
