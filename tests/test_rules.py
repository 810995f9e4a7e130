import pytest

from kubemend.core.document import Document
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Category, Severity
from kubemend.rules.checks import BUILTIN_RULES, check_read_only_root_filesystem, check_run_as_non_root
from kubemend.rules.declarative import from_mapping
from kubemend.rules.registry import RuleRegistry, default_registry
from kubemend.rules.workload import containers, split_image, uses_mutable_tag


def run_all(doc):
    return [issue for rule in BUILTIN_RULES for issue in rule.evaluate(doc)]


def pod(container, pod_context=None):
    spec = {"containers": [container]}
    if pod_context is not None:
        spec["securityContext"] = pod_context
    return Document({"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "p", "labels": {"a": "b"}},
                     "spec": spec})


def test_scenario_deployment_has_exactly_five_issues(scenario_doc):
    issues = run_all(scenario_doc)
    assert [i.rule_id for i in issues] == [
        "resource-limits", "liveness-probe", "readiness-probe", "run-as-non-root", "latest-image-tag",
    ]
    assert [i.severity for i in issues].count(Severity.ERROR) == 1
    assert issues[0].path == "/spec/template/spec/containers/0/resources/limits"


def test_rules_are_pure(scenario_doc):
    assert run_all(scenario_doc) == run_all(scenario_doc)


def test_non_workload_kinds_only_get_metadata_rules():
    doc = Document({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cfg"}, "data": {"a": "b"}})
    assert [i.rule_id for i in run_all(doc)] == ["missing-labels"]


@pytest.mark.parametrize("labels", [None, {}, "not-a-map"])
def test_missing_labels(labels):
    metadata = {"name": "x"}
    if labels is not None:
        metadata["labels"] = labels
    doc = Document({"kind": "ConfigMap", "metadata": metadata})
    assert [i.rule_id for i in run_all(doc)] == ["missing-labels"]


def test_partial_limits_name_the_missing_resource():
    doc = pod({"name": "c", "image": "a:1", "resources": {"limits": {"cpu": "1"}}})
    issues = [i for i in run_all(doc) if i.rule_id == "resource-limits"]
    assert len(issues) == 1
    assert "memory" in issues[0].message and "cpu" not in issues[0].message


@pytest.mark.parametrize("container_ctx,pod_ctx,fires", [
    (None, None, True),
    ({"runAsNonRoot": True}, None, False),
    (None, {"runAsNonRoot": True}, False),
    ({"runAsNonRoot": False}, {"runAsNonRoot": True}, True),
    ({"runAsNonRoot": "true"}, None, True),
])
def test_run_as_non_root_resolution(container_ctx, pod_ctx, fires):
    container = {"name": "c", "image": "a:1"}
    if container_ctx is not None:
        container["securityContext"] = container_ctx
    issues = check_run_as_non_root(pod(container, pod_ctx))
    assert bool(issues) is fires
    if fires:
        assert issues[0].severity == Severity.ERROR
        assert issues[0].category == Category.SECURITY


def test_read_only_root_filesystem_needs_a_security_context():
    assert check_read_only_root_filesystem(pod({"name": "c"})) == []
    assert len(check_read_only_root_filesystem(pod({"name": "c", "securityContext": {}}))) == 1
    assert check_read_only_root_filesystem(
        pod({"name": "c", "securityContext": {"readOnlyRootFilesystem": False}})) == []


@pytest.mark.parametrize("image,mutable", [
    ("nginx:latest", True),
    ("nginx", True),
    ("registry.local:5000/team/app", True),
    ("registry.local:5000/team/app:1.4", False),
    ("nginx@sha256:abcdef", False),
    ("nginx:1.25.3", False),
])
def test_mutable_tags(image, mutable):
    assert uses_mutable_tag(image) is mutable


def test_split_image():
    assert split_image("host:5000/app") == ("host:5000/app", None, None)
    assert split_image("nginx:1.2@sha256:abc") == ("nginx", "1.2", "sha256:abc")


def test_cronjob_containers_are_found(cronjob_doc):
    found = containers(cronjob_doc)
    assert [c.name for c in found] == ["report"]
    assert found[0].pointer == "/spec/jobTemplate/spec/template/spec/containers/0"


def test_malformed_containers_do_not_raise():
    doc = Document({"kind": "Deployment", "metadata": {"name": "d"},
                    "spec": {"template": {"spec": {"containers": ["oops", {"image": "x:1"}]}}}})
    assert [c.name for c in containers(doc)] == ["#1"]
    run_all(doc)
    run_all(Document({"kind": "Pod", "spec": {"containers": "nope"}}))
    run_all(Document(["a", "list", "root"]))


# --- REGISTRY ---

def test_registry_preserves_declared_order():
    registry = default_registry()
    assert registry.ids[0] == "missing-labels"
    selected = registry.select(["latest-image-tag", "missing-labels"])
    assert [r.id for r in selected] == ["missing-labels", "latest-image-tag"]
    assert registry.select([]) == []
    assert len(registry.select(None)) == len(BUILTIN_RULES)


def test_unknown_rule_names_are_rejected():
    with pytest.raises(ConfigurationError, match="no-such-rule"):
        default_registry().select(["resource-limits", "no-such-rule"])
    with pytest.raises(ConfigurationError):
        default_registry().get("no-such-rule")


def test_duplicate_rule_ids_are_rejected():
    with pytest.raises(ConfigurationError, match="Duplicate"):
        RuleRegistry(list(BUILTIN_RULES) + [BUILTIN_RULES[0]])


# --- DECLARATIVE RULES ---

def test_declarative_rule_with_expected_value():
    rule = from_mapping({
        "id": "no-host-network",
        "path": "spec.hostNetwork",
        "expected": False,
        "severity": "error",
        "kinds": ["Pod"],
        "message": "Pods must not use the host network.",
    })
    registry = default_registry([rule.descriptor()])
    assert "no-host-network" in registry

    host = Document({"kind": "Pod", "spec": {"hostNetwork": True}})
    missing = Document({"kind": "Pod", "spec": {}})
    ok = Document({"kind": "Pod", "spec": {"hostNetwork": False}})
    other = Document({"kind": "Service", "spec": {"hostNetwork": True}})

    issues = rule.evaluate(host)
    assert len(issues) == 1
    assert issues[0].severity == Severity.ERROR
    assert issues[0].path == "/spec/hostNetwork"
    assert len(rule.evaluate(missing)) == 1
    assert rule.evaluate(ok) == []
    assert rule.evaluate(other) == []


def test_declarative_rule_wildcards_fan_out(scenario_doc):
    rule = from_mapping({"id": "needs-pull-policy",
                         "path": "spec.template.spec.containers.*.imagePullPolicy"})
    issues = rule.evaluate(scenario_doc)
    assert [i.path for i in issues] == ["/spec/template/spec/containers/0/imagePullPolicy"]
    assert issues[0].category == Category.CUSTOM


@pytest.mark.parametrize("spec", [
    "not a mapping",
    {"path": "a.b"},
    {"id": "x"},
    {"id": "x", "path": "a", "color": "red"},
    {"id": "x", "path": "a", "severity": "fatal"},
    {"id": "x", "path": "a..b"},
    {"id": "x", "path": ["spec", 1.5]},
    {"id": "x", "path": ["spec", True]},
    {"id": "x", "path": ["spec", -1]},
    {"id": "x", "path": ["spec", {"a": 1}]},
    {"id": "x", "path": 5},
    {"id": "x", "path": []},
])
def test_malformed_declarative_rules(spec):
    with pytest.raises(ConfigurationError):
        from_mapping(spec)



def test_list_paths_mix_keys_and_indices():
    rule = from_mapping({"id": "first-port", "path": ["spec", "containers", "0", "ports", 0], "kinds": "Pod"})
    assert rule.path == ("spec", "containers", 0, "ports", 0)
