import pytest

from kubemend.analysis import scoring
from kubemend.analysis.analyzer import Analyzer
from kubemend.analysis.scoring import ScoringPolicy, mean_scores
from kubemend.core.document import Document
from kubemend.core.exceptions import ConfigurationError
from kubemend.core.models import Category, RuleDescriptor, Scores
from kubemend.rules.declarative import from_mapping
from kubemend.rules.registry import RuleRegistry, default_registry


@pytest.fixture
def analyzer():
    return Analyzer(default_registry())


def test_scenario_scores(analyzer, scenario_doc):
    analysis = analyzer.analyze_document(scenario_doc)

    assert len(analysis.issues) == 5
    assert analysis.scores.security <= 60
    assert analysis.scores.performance <= 70
    assert analysis.scores == Scores(security=50, performance=55, reliability=50, complexity=100)
    assert scoring.SINGLE_REPLICA in analysis.findings
    assert scoring.NO_ROLLOUT_STRATEGY in analysis.findings


def test_shared_findings_are_deducted_once(analyzer, scenario_doc):
    # resource-limits fires as a rule and as a structural fact
    analysis = analyzer.analyze_document(scenario_doc)
    assert list(analysis.findings).count(scoring.NO_RESOURCE_LIMITS) == 1


def test_empty_batch_is_perfect(analyzer):
    result = analyzer.analyze([])
    assert result.aggregate_scores == Scores(100, 100, 100, 100)
    assert result.per_document == ()
    assert result.document_count == 0
    assert result.recommendations == ()


@pytest.mark.parametrize("root", [
    "scalar",
    ["a", "list"],
    {"kind": "Deployment", "spec": {"template": {"spec": {"containers": "oops"}}}},
    {"kind": "Pod", "spec": {"containers": [{"name": f"c{i}"} for i in range(8)],
                             "volumes": [{"name": f"v{i}"} for i in range(8)]}},
    {"kind": "Deployment", "spec": {"replicas": "many"}},
])
def test_scores_stay_in_bounds(analyzer, root):
    scores = analyzer.analyze_document(Document(root)).scores
    for value in scores.to_dict().values():
        assert 0 <= value <= 100


def test_overridden_deductions_clamp_at_zero(scenario_doc):
    policy = ScoringPolicy().with_overrides({"no-resource-limits": {"performance": 500}})
    analysis = Analyzer(default_registry(), policy).analyze_document(scenario_doc)
    assert analysis.scores.performance == 0


def test_policy_overrides_are_validated():
    with pytest.raises(ConfigurationError):
        ScoringPolicy().with_overrides({"made-up-finding": {"security": 5}})
    with pytest.raises(ConfigurationError):
        ScoringPolicy().with_overrides({"no-resource-limits": {"speed": 5}})
    with pytest.raises(ConfigurationError):
        ScoringPolicy().with_overrides({"no-resource-limits": {"security": -1}})


def test_custom_rule_issues_deduct_by_category():
    rule = from_mapping({"id": "needs-owner", "path": "metadata.annotations.owner", "category": "security"})
    analyzer = Analyzer(default_registry([rule.descriptor()]))
    doc = Document({"kind": "ConfigMap", "metadata": {"name": "cfg", "labels": {"a": "b"}}})
    analysis = analyzer.analyze_document(doc)
    assert "rule:needs-owner" in analysis.findings
    assert analysis.scores.security == 95


def test_failing_rule_costs_reliability():
    def boom(doc):
        raise RuntimeError("bad rule")

    analyzer = Analyzer(RuleRegistry([RuleDescriptor("boom", Category.CUSTOM, boom)]))
    doc = Document({"kind": "ConfigMap", "metadata": {"name": "cfg"}})
    analysis = analyzer.analyze_document(doc)
    assert analysis.findings == (scoring.RULE_FAILURE,)
    assert analysis.scores.reliability == 95


def test_custom_message_resembling_a_failure_is_scored_by_category():
    rule = from_mapping({"id": "needs-owner", "path": "metadata.annotations.owner", "category": "security",
                         "message": "rule failed: no owner annotation"})
    analyzer = Analyzer(default_registry([rule.descriptor()]))
    doc = Document({"kind": "ConfigMap", "metadata": {"name": "cfg", "labels": {"a": "b"}}})
    analysis = analyzer.analyze_document(doc)
    assert scoring.RULE_FAILURE not in analysis.findings
    assert "rule:needs-owner" in analysis.findings
    assert analysis.scores.security == 95
    assert analysis.scores.reliability == 100


def test_concurrent_analysis_keeps_input_order(analyzer):
    documents = [
        Document({"kind": "Pod", "metadata": {"name": f"pod-{i}"},
                  "spec": {"containers": [{"name": "c", "image": "x:latest" if i % 2 else "x:1"}]}},
                 source="batch.yaml", index=i)
        for i in range(12)
    ]
    sequential = analyzer.analyze(documents, max_workers=1)
    parallel = analyzer.analyze(documents, max_workers=4)
    assert [d.name for d in parallel.per_document] == [f"pod-{i}" for i in range(12)]
    assert parallel == sequential


def test_unknown_rules_fail_before_analysis(analyzer, scenario_doc):
    with pytest.raises(ConfigurationError):
        analyzer.analyze([scenario_doc], rule_names=["nope"])


def test_batch_summary(analyzer, scenario_doc, service_doc, cronjob_doc):
    result = analyzer.analyze([scenario_doc, service_doc, cronjob_doc])
    assert result.document_count == 3
    assert result.resource_types == {"CronJob": 1, "Deployment": 1, "Service": 1}
    assert result.namespaces == {"batch": 1, "default": 2}
    assert result.total_issues == sum(len(d.issues) for d in result.per_document)
    assert result.error_issues >= 1
    assert any("error-level" in r for r in result.recommendations)
    payload = result.to_dict()
    assert payload["documents"] == 3
    assert set(payload["aggregate_scores"]) == {"security", "performance", "reliability", "complexity"}


def test_insights_and_resource_usage(analyzer, pod_doc, cronjob_doc):
    assert any("bare Pod" in note for note in analyzer.insights(pod_doc))
    usage = analyzer.resource_usage(cronjob_doc)
    assert usage.cpu_requests == "2"
    assert usage.memory_limits is None
    assert usage.has_probes is False


def test_file_recommendations_use_the_looser_threshold(analyzer, scenario_doc, service_doc):
    assert analyzer.file_recommendations([]) == []
    advice = analyzer.file_recommendations([analyzer.analyze_document(scenario_doc)])
    assert any("security" in a for a in advice)
    assert analyzer.file_recommendations([analyzer.analyze_document(service_doc)]) == []


def test_mean_rounds_half_up():
    assert mean_scores((Scores(security=50), Scores(security=51))).security == 51
    assert mean_scores((Scores(performance=10), Scores(performance=11), Scores(performance=11))).performance == 11
