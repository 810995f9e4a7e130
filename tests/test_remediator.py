import itertools

import pytest

from kubemend.core.document import Document
from kubemend.core.evaluator import LintEvaluator
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Aggressiveness, Mode
from kubemend.remediation.actions import RemediationPolicy
from kubemend.remediation.remediator import Remediator
from kubemend.rules.registry import default_registry

CONTAINER = ("spec", "template", "spec", "containers", 0)

MODES = list(itertools.product(Mode, Aggressiveness))


@pytest.fixture
def remediator():
    return Remediator()


def actions_changed(plan):
    return {c.action for c in plan.changes}


def actions_skipped(plan):
    return {s.action for s in plan.skipped}


def test_fix_conservative_scenario(remediator, scenario_doc):
    plan = remediator.remediate(scenario_doc, Mode.FIX, Aggressiveness.CONSERVATIVE)

    assert actions_changed(plan) == {
        "add-resource-requests", "add-resource-limits", "add-readiness-probe",
        "add-liveness-probe", "set-run-as-non-root", "pin-image-tag", "add-rolling-update-strategy",
    }
    assert actions_skipped(plan) == {
        "disable-privilege-escalation", "drop-all-capabilities", "set-read-only-root-filesystem", "set-replicas",
    }
    assert all("aggressive" in s.reason for s in plan.skipped)

    fixed = plan.remediated
    assert fixed.value_at(CONTAINER + ("image",)) == "nginx:1.27.2"
    assert fixed.value_at(CONTAINER + ("resources",)) == {
        "requests": {"cpu": "100m", "memory": "128Mi"},
        "limits": {"cpu": "500m", "memory": "512Mi"},
    }
    assert fixed.value_at(CONTAINER + ("livenessProbe",)) == {
        "httpGet": {"path": "/health", "port": 80}, "initialDelaySeconds": 30, "periodSeconds": 30,
    }
    assert fixed.value_at(CONTAINER + ("readinessProbe", "initialDelaySeconds")) == 10
    assert fixed.get(("spec", "replicas")) is None


def test_fix_clears_the_fixable_lint_issues(remediator, scenario_doc):
    fixed = remediator.remediate(scenario_doc, Mode.FIX).remediated
    remaining = {i.rule_id for i in LintEvaluator(default_registry()).evaluate(fixed)}
    assert not remaining & {"missing-labels", "resource-limits", "liveness-probe",
                            "readiness-probe", "latest-image-tag", "run-as-non-root"}


def test_original_document_is_never_modified(remediator, scenario_doc):
    before = scenario_doc.to_python()
    plan = remediator.remediate(scenario_doc, Mode.OPTIMIZE, Aggressiveness.AGGRESSIVE)
    assert plan.original is scenario_doc
    assert scenario_doc.to_python() == before
    assert plan.remediated != scenario_doc


@pytest.mark.parametrize("mode,aggressiveness", MODES)
@pytest.mark.parametrize("fixture", ["scenario_doc", "pod_doc", "service_doc", "cronjob_doc"])
def test_remediation_is_idempotent(remediator, request, fixture, mode, aggressiveness):
    doc = request.getfixturevalue(fixture)
    first = remediator.remediate(doc, mode, aggressiveness)
    second = remediator.remediate(first.remediated, mode, aggressiveness)
    assert second.changes == ()
    assert second.remediated == first.remediated


def test_fix_aggressive_hardens_the_container(remediator, scenario_doc):
    plan = remediator.remediate(scenario_doc, "fix", "aggressive")
    fixed = plan.remediated
    assert fixed.value_at(("spec", "replicas")) == 2
    assert fixed.value_at(CONTAINER + ("securityContext",)) == {
        "runAsNonRoot": True, "allowPrivilegeEscalation": False, "readOnlyRootFilesystem": True,
        "capabilities": {"drop": ["ALL"]},
    }
    assert fixed.value_at(CONTAINER + ("volumeMounts",)) == [{"name": "writable-tmp", "mountPath": "/tmp"}]
    assert fixed.value_at(("spec", "template", "spec", "volumes")) == [{"name": "writable-tmp", "emptyDir": {}}]
    assert plan.skipped == ()


def test_optimize_conservative(remediator, scenario_doc):
    plan = remediator.remediate(scenario_doc, Mode.OPTIMIZE, Aggressiveness.CONSERVATIVE)
    fixed = plan.remediated
    assert "add-resource-limits" in actions_skipped(plan)
    assert fixed.get(CONTAINER + ("resources", "limits")) is None
    assert fixed.value_at(CONTAINER + ("resources", "requests")) == {"cpu": "100m", "memory": "128Mi"}
    assert fixed.value_at(("metadata", "labels", "app.kubernetes.io/name")) == "web"
    # probes and image pinning are FIX-only
    assert fixed.get(CONTAINER + ("livenessProbe",)) is None
    assert fixed.value_at(CONTAINER + ("image",)) == "nginx:latest"


def test_optimize_aggressive(remediator, scenario_doc):
    fixed = remediator.remediate(scenario_doc, Mode.OPTIMIZE, Aggressiveness.AGGRESSIVE).remediated
    assert fixed.value_at(("spec", "replicas")) == 3
    assert fixed.value_at(CONTAINER + ("resources", "limits")) == {"cpu": "500m", "memory": "512Mi"}
    assert fixed.value_at(("spec", "strategy", "rollingUpdate")) == {"maxUnavailable": "25%", "maxSurge": "25%"}


def test_optimize_pod_and_service(remediator, pod_doc, service_doc):
    pod = remediator.remediate(pod_doc, Mode.OPTIMIZE, Aggressiveness.AGGRESSIVE).remediated
    assert pod.value_at(("spec", "restartPolicy")) == "Always"
    assert pod.value_at(("spec", "dnsPolicy")) == "ClusterFirst"
    # busybox is untagged, so Always is still needed
    assert pod.value_at(("spec", "containers", 0, "imagePullPolicy")) == "Always"

    svc = remediator.remediate(service_doc, Mode.OPTIMIZE).remediated
    assert svc.value_at(("spec", "sessionAffinity")) == "None"
    assert svc.value_at(("metadata", "labels")) == {"app": "web-svc", "app.kubernetes.io/name": "web-svc"}


def test_pinned_images_prefer_cached_pulls(remediator):
    doc = Document({"kind": "Pod", "metadata": {"name": "p"},
                    "spec": {"containers": [{"name": "c", "image": "nginx:1.25", "imagePullPolicy": "Always"}]}})
    fixed = remediator.remediate(doc, Mode.OPTIMIZE).remediated
    assert fixed.value_at(("spec", "containers", 0, "imagePullPolicy")) == "IfNotPresent"


def test_explicit_run_as_root_needs_aggressive(remediator):
    doc = Document({"kind": "Pod", "metadata": {"name": "p"},
                    "spec": {"containers": [{"name": "c", "image": "a:1",
                                             "securityContext": {"runAsNonRoot": False}}]}})
    path = ("spec", "containers", 0, "securityContext", "runAsNonRoot")

    conservative = remediator.remediate(doc, Mode.FIX)
    assert conservative.remediated.value_at(path) is False
    assert "set-run-as-non-root" in actions_skipped(conservative)

    aggressive = remediator.remediate(doc, Mode.FIX, Aggressiveness.AGGRESSIVE)
    assert aggressive.remediated.value_at(path) is True


def test_drop_all_capabilities(remediator):
    doc = Document({"kind": "Pod", "metadata": {"name": "p"},
                    "spec": {"containers": [
                        {"name": "a", "image": "a:1",
                         "securityContext": {"capabilities": {"add": ["NET_BIND_SERVICE"], "drop": ["NET_RAW"]}}},
                        {"name": "b", "image": "b:1", "securityContext": {"capabilities": {"drop": ["ALL"]}}},
                        {"name": "c", "image": "c:1", "securityContext": {"capabilities": {"drop": "ALL"}}},
                    ]}})

    conservative = remediator.remediate(doc, Mode.FIX)
    assert conservative.remediated.value_at(("spec", "containers", 0, "securityContext", "capabilities", "drop")) \
        == ["NET_RAW"]

    plan = remediator.remediate(doc, Mode.OPTIMIZE, Aggressiveness.AGGRESSIVE)
    fixed = plan.remediated
    assert fixed.value_at(("spec", "containers", 0, "securityContext", "capabilities")) == {
        "add": ["NET_BIND_SERVICE"], "drop": ["NET_RAW", "ALL"],
    }
    assert [c.path for c in plan.changes if c.action == "drop-all-capabilities"] == [
        "/spec/containers/0/securityContext/capabilities/drop",
    ]
    assert {s.reason for s in plan.skipped if s.action == "drop-all-capabilities"} == {
        "capabilities.drop is not a sequence",
    }

    again = remediator.remediate(fixed, Mode.OPTIMIZE, Aggressiveness.AGGRESSIVE)
    assert again.changes == ()


def test_probe_without_port_is_unfixable(remediator, pod_doc):
    plan = remediator.remediate(pod_doc, Mode.FIX)
    reasons = {s.action: s.reason for s in plan.skipped}
    assert "no port" in reasons["add-liveness-probe"]
    assert plan.remediated.get(("spec", "containers", 0, "livenessProbe")) is None


def test_named_port_is_used_for_probes(remediator):
    doc = Document({"kind": "Pod", "metadata": {"name": "p"},
                    "spec": {"containers": [{"name": "c", "image": "a:1", "ports": [{"name": "http"}]}]}})
    fixed = remediator.remediate(doc, Mode.FIX).remediated
    assert fixed.value_at(("spec", "containers", 0, "readinessProbe", "httpGet", "port")) == "http"


def test_unknown_images_need_a_fallback_tag(pod_doc):
    doc = pod_doc.with_value(("spec", "containers", 0, "image"), "registry.example.com/tool:latest")
    plan = Remediator().remediate(doc, Mode.FIX)
    assert "pin-image-tag" in actions_skipped(plan)

    pinned = Remediator(RemediationPolicy(fallback_tag="stable")).remediate(doc, Mode.FIX)
    assert pinned.remediated.value_at(("spec", "containers", 0, "image")) == "registry.example.com/tool:stable"


def test_image_tag_table_picks_the_most_specific_tag(pod_doc):
    policy = RemediationPolicy(image_tags={"busybox": ("1", "1.36.1", "1.36")})
    fixed = Remediator(policy).remediate(pod_doc, Mode.FIX).remediated
    assert fixed.value_at(("spec", "containers", 0, "image")) == "busybox:1.36.1"


def test_defaults_never_undercut_existing_values(remediator, cronjob_doc):
    fixed = remediator.remediate(cronjob_doc, Mode.FIX).remediated
    resources = fixed.value_at(("spec", "jobTemplate", "spec", "template", "spec", "containers", 0, "resources"))
    assert resources["requests"] == {"cpu": "2", "memory": "128Mi"}
    assert resources["limits"] == {"cpu": "2", "memory": "512Mi"}


def test_deployment_selector_from_template_labels(remediator, scenario_doc):
    doc = scenario_doc.without(("spec", "selector"))
    fixed = remediator.remediate(doc, Mode.FIX).remediated
    assert fixed.value_at(("spec", "selector")) == {"matchLabels": {"app": "web"}}

    bare = doc.without(("spec", "template", "metadata"))
    plan = remediator.remediate(bare, Mode.FIX)
    assert "add-deployment-selector" in actions_skipped(plan)


def test_missing_name_blocks_the_app_label(remediator):
    doc = Document({"kind": "ConfigMap", "metadata": {}})
    plan = remediator.remediate(doc, Mode.FIX)
    assert plan.changes == ()
    assert "add-app-label" in actions_skipped(plan)


def test_malformed_fields_are_skipped_not_raised(remediator):
    doc = Document({"kind": "Pod", "metadata": {"name": "p", "labels": "oops"},
                    "spec": {"containers": [{"name": "c", "image": "nginx", "ports": [{"containerPort": 80}],
                                             "resources": "none", "securityContext": "nope"}]}})
    plan = remediator.remediate(doc, Mode.FIX, Aggressiveness.AGGRESSIVE)
    skipped = actions_skipped(plan)
    assert {"add-app-label", "add-resource-requests", "add-resource-limits", "set-run-as-non-root"} <= skipped
    assert "pin-image-tag" in actions_changed(plan)


def test_non_mapping_documents_are_left_alone(remediator):
    plan = remediator.remediate(Document(["a", "b"]), Mode.FIX, Aggressiveness.AGGRESSIVE)
    assert plan.changes == () and plan.skipped == ()
    assert not plan.changed


@pytest.mark.parametrize("mode,aggressiveness", [("repair", "conservative"), ("fix", "reckless")])
def test_invalid_modes_are_configuration_errors(remediator, scenario_doc, mode, aggressiveness):
    with pytest.raises(ConfigurationError):
        remediator.remediate(scenario_doc, mode, aggressiveness)


def test_plan_serializes(remediator, scenario_doc):
    payload = remediator.remediate(scenario_doc, Mode.FIX).to_dict()
    assert payload["mode"] == "fix"
    assert payload["aggressiveness"] == "conservative"
    assert {"action", "path", "description"} == set(payload["changes"][0])
