"""Tests for connector usage, issue rules and recommendations."""

import pytest

from flowquery.flow_analyzer import (
    COMPLEXITY_THRESHOLD,
    MISSING_RUN_AFTER_THRESHOLD,
    AnalysisConfig,
    analyze,
    is_critical_connector,
    recommend,
    summarize,
)
from flowquery.models import ActionNode, ConnectionReference, Severity
from flowquery.workflow import parse_actions, parse_connection_references


def _actions(count, run_after=None):
    return [ActionNode(id=f"Step_{i}", type="Compose", run_after=run_after) for i in range(count)]


class TestEmptyFlow:
    def test_only_documentation_recommendation(self):
        result = analyze([], [])
        assert result.connectors == ()
        assert result.issues == ()
        assert [r.id for r in result.recommendations] == ["update-documentation"]

    def test_none_inputs(self):
        assert analyze(None, None).issues == ()


class TestConnectorUsage:
    def test_counts_by_host_connection(self, condition_actions, connection_references):
        parsed = parse_actions(condition_actions)
        references = parse_connection_references(connection_references)
        result = analyze(parsed.flat, references)

        usage = {c.connector_name: c for c in result.connectors}
        assert usage["shared_commondataserviceforapps"].invocation_count == 1
        assert usage["shared_office365"].invocation_count == 1
        assert usage["shared_office365"].display_name == "Office 365 Outlook"

    def test_counts_by_type_prefix(self):
        references = [ConnectionReference("shared_sql", "SQL Server", "shared_sql")]
        actions = [ActionNode(id="Get_rows", type="shared_sql/GetItems", run_after={})]
        result = analyze(actions, references)
        assert result.connectors[0].invocation_count == 1

    def test_unused_reference_is_listed(self):
        references = [ConnectionReference("shared_teams", "Teams", "shared_teams")]
        result = analyze([], references)
        assert result.connectors[0].invocation_count == 0
        assert not result.connectors[0].is_critical

    @pytest.mark.parametrize("name,expected", [
        ("shared_sql", True),
        ("shared_sharepointonline", True),
        ("shared_office365", True),
        ("shared_commondataserviceforapps", False),
        ("shared_teams", False),
    ])
    def test_critical_watchlist(self, name, expected):
        assert is_critical_connector(name) is expected


class TestIssues:
    def test_critical_connector_issue(self, condition_actions, connection_references):
        result = analyze(parse_actions(condition_actions).flat, parse_connection_references(connection_references))
        issue = next(i for i in result.issues if i.id == "critical-connectors")
        assert issue.severity is Severity.WARNING
        assert "Office 365 Outlook" in issue.description
        assert "review-critical-connectors" in [r.id for r in result.recommendations]

    def test_missing_run_after_at_threshold(self):
        result = analyze(_actions(MISSING_RUN_AFTER_THRESHOLD), [])
        assert "missing-error-handling" not in result.issue_ids

    def test_missing_run_after_over_threshold(self):
        result = analyze(_actions(MISSING_RUN_AFTER_THRESHOLD + 1), [])
        issue = next(i for i in result.issues if i.id == "missing-error-handling")
        assert issue.severity is Severity.ERROR
        assert "4 actions" in issue.description
        assert [r.id for r in result.recommendations] == ["add-error-handling", "update-documentation"]

    def test_empty_run_after_counts_as_declared(self):
        result = analyze(_actions(10, run_after={}), [])
        assert result.issue_ids == ()

    def test_complexity_at_threshold(self):
        result = analyze(_actions(COMPLEXITY_THRESHOLD, run_after={}), [])
        assert "complex-flow" not in result.issue_ids

    def test_complexity_over_threshold(self):
        result = analyze(_actions(COMPLEXITY_THRESHOLD + 1, run_after={}), [])
        assert result.issue_ids == ("complex-flow",)
        assert [r.id for r in result.recommendations] == ["simplify-flow", "update-documentation"]

    def test_config_override(self):
        config = AnalysisConfig(critical_watchlist=("teams",), complexity_threshold=1)
        references = [ConnectionReference("shared_teams", "Teams", "shared_teams")]
        result = analyze(_actions(2, run_after={}), references, config)
        assert set(result.issue_ids) == {"critical-connectors", "complex-flow"}


class TestRecommendations:
    def test_documentation_always_last(self):
        recommendations = recommend(["complex-flow", "missing-error-handling"])
        assert [r.id for r in recommendations] == ["add-error-handling", "simplify-flow", "update-documentation"]

    def test_summarize(self):
        summary = summarize(analyze(_actions(COMPLEXITY_THRESHOLD + 1, run_after={}), []))
        assert summary["issues"][0]["severity"] == "Warning"
        assert summary["recommendations"][-1]["priority"] == "Low"
        assert summary["connectors"] == []
