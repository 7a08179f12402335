import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import (
    ActionNode,
    AnalysisResult,
    ConnectionReference,
    ConnectorUsage,
    Issue,
    Priority,
    Recommendation,
    Severity,
)

logger = logging.getLogger(__name__)

CRITICAL_CONNECTOR_WATCHLIST = ('sql', 'sharepoint', 'office365', 'dynamics', 'documentdb')
MISSING_RUN_AFTER_THRESHOLD = 3
COMPLEXITY_THRESHOLD = 15


@dataclass(frozen=True)
class AnalysisConfig:
    critical_watchlist: Tuple[str, ...] = CRITICAL_CONNECTOR_WATCHLIST
    missing_run_after_threshold: int = MISSING_RUN_AFTER_THRESHOLD
    complexity_threshold: int = COMPLEXITY_THRESHOLD


# Issue id -> recommendation it produces
RECOMMENDATION_TEMPLATES = {
    'missing-error-handling': Recommendation(
        id='add-error-handling',
        title='Add Error Handling',
        description='Add error handling for critical actions to prevent flow failures and improve reliability.',
        priority=Priority.HIGH,
        category='Reliability',
    ),
    'complex-flow': Recommendation(
        id='simplify-flow',
        title='Simplify Flow',
        description='Consider breaking this flow into smaller, more manageable flows for better maintainability.',
        priority=Priority.MEDIUM,
        category='Maintainability',
    ),
    'critical-connectors': Recommendation(
        id='review-critical-connectors',
        title='Review Critical Connectors',
        description='Confirm that actions using business-critical connectors handle failures and use least-privilege connections.',
        priority=Priority.MEDIUM,
        category='Security',
    ),
}

DOCUMENTATION_RECOMMENDATION = Recommendation(
    id='update-documentation',
    title='Update Documentation',
    description='Add detailed descriptions to actions and flows to improve team understanding and maintenance.',
    priority=Priority.LOW,
    category='Documentation',
)


def is_critical_connector(connector_name: str, watchlist: Sequence[str] = CRITICAL_CONNECTOR_WATCHLIST) -> bool:
    lowered = connector_name.lower()
    return any(critical in lowered for critical in watchlist)


def _host_connection(action: ActionNode) -> Optional[str]:
    inputs = action.inputs if isinstance(action.inputs, dict) else {}
    host = inputs.get('host') if isinstance(inputs.get('host'), dict) else {}
    return host.get('connectionName')


def count_connector_usage(flat_actions: Iterable[ActionNode],
                          connection_references: Iterable[ConnectionReference],
                          config: AnalysisConfig = AnalysisConfig()) -> List[ConnectorUsage]:
    """Usage per declared connector, counted from action types and host connection names"""
    display_names: Dict[str, str] = {}
    counts: Dict[str, int] = {}
    connector_by_reference: Dict[str, str] = {}
    for reference in connection_references:
        display_names[reference.connector_name] = reference.display_name
        counts[reference.connector_name] = 0
        connector_by_reference[reference.id] = reference.connector_name

    for action in flat_actions:
        prefix = (action.type or '').split('/', 1)[0]
        if prefix and prefix in counts:
            counts[prefix] += 1
            continue
        connector = connector_by_reference.get(_host_connection(action) or '')
        if connector is not None:
            counts[connector] += 1

    return [
        ConnectorUsage(
            connector_name=name,
            display_name=display_names[name],
            invocation_count=count,
            is_critical=is_critical_connector(name, config.critical_watchlist),
        )
        for name, count in counts.items()
    ]


def find_issues(flat_actions: Sequence[ActionNode], connectors: Sequence[ConnectorUsage],
                config: AnalysisConfig = AnalysisConfig()) -> List[Issue]:
    issues = []

    critical = [c for c in connectors if c.is_critical]
    if critical:
        issues.append(Issue(
            id='critical-connectors',
            severity=Severity.WARNING,
            description=f"Flow uses {len(critical)} critical connectors: {', '.join(c.display_name for c in critical)}",
            impact='These connectors access important business data and should be reviewed for proper error handling.',
            location='Connection References',
        ))

    # Absent runAfter only; an empty declaration still counts as handled
    without_run_after = [a for a in flat_actions if a.run_after is None]
    if len(without_run_after) > config.missing_run_after_threshold:
        issues.append(Issue(
            id='missing-error-handling',
            severity=Severity.ERROR,
            description=f"Flow has {len(without_run_after)} actions without error handling.",
            impact='Lack of error handling can cause the flow to fail silently when errors occur.',
            location='Actions',
        ))

    if len(flat_actions) > config.complexity_threshold:
        issues.append(Issue(
            id='complex-flow',
            severity=Severity.WARNING,
            description='Flow is complex with many actions.',
            impact='Complex flows can be difficult to maintain and troubleshoot.',
            location='Flow Definition',
        ))

    return issues


def recommend(issue_ids: Iterable[str]) -> List[Recommendation]:
    present = set(issue_ids)
    recommendations = [template for issue_id, template in RECOMMENDATION_TEMPLATES.items() if issue_id in present]
    recommendations.append(DOCUMENTATION_RECOMMENDATION)
    return recommendations


def analyze(flat_actions: Iterable[ActionNode], connection_references: Iterable[ConnectionReference],
            config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """Connectors, rule-based issues and issue-driven recommendations for one flow"""
    config = config or AnalysisConfig()
    flat_actions = list(flat_actions or [])
    connectors = count_connector_usage(flat_actions, connection_references or [], config)
    issues = find_issues(flat_actions, connectors, config)
    recommendations = recommend(issue.id for issue in issues)

    logger.debug(f"Analysis found {len(connectors)} connectors, {len(issues)} issues")
    return AnalysisResult(
        connectors=tuple(connectors),
        issues=tuple(issues),
        recommendations=tuple(recommendations),
    )


def summarize(result: AnalysisResult) -> Dict[str, Any]:
    """Plain-dict view used by the CLI and JSON exports"""
    return {
        'connectors': [
            {
                'connector_name': c.connector_name,
                'display_name': c.display_name,
                'invocation_count': c.invocation_count,
                'is_critical': c.is_critical,
            }
            for c in result.connectors
        ],
        'issues': [
            {
                'id': i.id,
                'severity': i.severity.value,
                'description': i.description,
                'impact': i.impact,
                'location': i.location,
            }
            for i in result.issues
        ],
        'recommendations': [
            {
                'id': r.id,
                'title': r.title,
                'description': r.description,
                'priority': r.priority.value,
                'category': r.category,
            }
            for r in result.recommendations
        ],
    }
