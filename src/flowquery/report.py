import csv
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .diagram import describe_action
from .flow_analyzer import analyze
from .models import ActionCategory, ActionNode, AnalysisResult, DiagramDescription, WorkflowDetails
from .workflow import display_name, find_child_flow_references

logger = logging.getLogger(__name__)

ACTION_CSV_FIELDS = [
    'action', 'path', 'parent', 'branch', 'depth', 'action_type', 'category',
    'connector', 'predecessors', 'run_after_statuses', 'has_run_after', 'description',
]


def _path(node: ActionNode, parent: str) -> str:
    return f"{parent}/{node.id}" if parent else node.id


def walk_actions(nodes: Sequence[ActionNode], parent: str = '', depth: int = 1, branch: str = ''
                 ) -> Iterator[Tuple[ActionNode, str, str, int]]:
    """(node, parent path, branch, depth) in the same pre-order as ``flatten``"""
    for node in nodes:
        yield node, parent, branch, depth
        path = _path(node, parent)
        yield from walk_actions(node.children, path, depth + 1, 'actions')
        for case in node.cases:
            yield from walk_actions(case.children, path, depth + 1, f"case:{case.name}")
        else_branch = 'default' if node.category is ActionCategory.SWITCH else 'else'
        yield from walk_actions(node.else_children or (), path, depth + 1, else_branch)


def _connector(node: ActionNode) -> str:
    inputs = node.inputs if isinstance(node.inputs, dict) else {}
    host = inputs.get('host') if isinstance(inputs.get('host'), dict) else {}
    return host.get('connectionName') or host.get('apiId') or ''


def export_actions_csv(details: WorkflowDetails, filename: str = "flow_actions.csv"):
    """Write one row per action, at every nesting depth"""
    rows = list(walk_actions(list(details.actions.tree.values())))
    total = len(rows)
    logger.info(f"Exporting {total} actions to CSV")

    with open(filename, 'w', newline='', encoding='utf-8') as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=ACTION_CSV_FIELDS)
        writer.writeheader()

        for i, (node, parent, branch, depth) in enumerate(rows):
            if i and i % 50 == 0:
                logger.info(f"Processed {i}/{total} actions")

            run_after = node.run_after or {}
            writer.writerow({
                'action': node.id,
                'path': _path(node, parent),
                'parent': parent,
                'branch': branch,
                'depth': depth,
                'action_type': node.type or '',
                'category': node.category.value,
                'connector': _connector(node),
                'predecessors': ';'.join(run_after),
                'run_after_statuses': ';'.join(
                    f"{name}:{'|'.join(statuses)}" for name, statuses in run_after.items()
                    if isinstance(statuses, list)
                ),
                'has_run_after': 'true' if node.run_after is not None else 'false',
                'description': node.description or '',
            })


def generate_action_graph(details: WorkflowDetails) -> Dict:
    """Nodes and run-after/containment edges for visualization"""
    graph = {
        "metadata": {
            "flow": details.name,
            "total_actions": len(details.flat),
            "total_triggers": len(details.triggers),
            "generated_at": datetime.now().isoformat()
        },
        "nodes": [],
        "edges": []
    }

    for trigger in details.triggers:
        graph["nodes"].append({"id": f"trigger:{trigger.id}", "type": trigger.type or '', "category": "trigger"})

    rows = list(walk_actions(list(details.actions.tree.values())))
    siblings: Dict[Tuple[str, str], set] = {}
    for node, parent, branch, _ in rows:
        siblings.setdefault((parent, branch), set()).add(node.id)
    trigger_ids = [f"trigger:{trigger.id}" for trigger in details.triggers]

    for node, parent, branch, depth in rows:
        path = _path(node, parent)
        graph["nodes"].append({
            "id": path,
            "action": node.id,
            "type": node.type or '',
            "category": node.category.value,
            "connector": _connector(node),
            "depth": depth
        })

        # Entry points hang off their container, or off every trigger at the top
        if parent:
            graph["edges"].append({"source": parent, "target": path, "type": "contains", "branch": branch})
        elif not node.run_after:
            for trigger_id in trigger_ids:
                graph["edges"].append({"source": trigger_id, "target": path, "type": "trigger"})

        crosses_scope = False
        for predecessor, statuses in (node.run_after or {}).items():
            if predecessor not in siblings[(parent, branch)]:
                logger.warning(f"Connection from {predecessor} to {path} crosses scope boundaries")
                crosses_scope = True
                continue
            graph["edges"].append({
                "source": f"{parent}/{predecessor}" if parent else predecessor,
                "target": path,
                "type": "run_after",
                "statuses": list(statuses) if isinstance(statuses, list) else []
            })

        # Fall back to the enclosing scope's entry point
        if crosses_scope:
            for source in ([parent] if parent else trigger_ids):
                graph["edges"].append({"source": source, "target": path, "type": "cross_scope"})

    return graph


def find_cross_scope_references(details: WorkflowDetails) -> List[Tuple[str, str]]:
    """(action path, predecessor) pairs whose predecessor is not a sibling"""
    dangling = []

    def visit(nodes: Sequence[ActionNode], parent: str):
        sibling_ids = {n.id for n in nodes}
        for node in nodes:
            path = _path(node, parent)
            for predecessor in node.predecessors:
                if predecessor not in sibling_ids:
                    dangling.append((path, predecessor))
            visit(node.children, path)
            for case in node.cases:
                visit(case.children, path)
            visit(node.else_children or (), path)

    visit(list(details.actions.tree.values()), '')
    return dangling


def find_actions_without_run_after(details: WorkflowDetails) -> List[str]:
    return [node.id for node in details.flat if node.run_after is None]


def generate_documentation(details: WorkflowDetails, result: Optional[AnalysisResult] = None,
                           diagram: Optional[DiagramDescription] = None) -> str:
    """Markdown documentation for one flow"""
    result = result or analyze(details.flat, details.connection_references)

    doc = f"# Flow: {details.name}\n\n"
    if details.description:
        doc += f"{details.description}\n\n"

    doc += "## Flow Details\n\n"
    if details.id:
        doc += f"- **Id**: {details.id}\n"
    doc += f"- **Triggers**: {len(details.triggers)}\n"
    doc += f"- **Actions**: {len(details.flat)}\n"
    doc += f"- **Connection References**: {len(details.connection_references)}\n"
    child_flows = find_child_flow_references(details.flat)
    if child_flows:
        doc += f"- **Child Flows**: {', '.join(child_flows)}\n"
    if details.error:
        doc += f"- **Parse Error**: {details.error}\n"
    doc += "\n"

    doc += "## Triggers\n\n"
    for trigger in details.triggers:
        doc += f"- {trigger.id}" + (f" ({trigger.type})" if trigger.type else '') + "\n"
    doc += "\n"

    doc += "## Connectors\n\n"
    for connector in result.connectors:
        doc += f"### {connector.display_name}\n"
        doc += f"- **Type**: {connector.connector_name}\n"
        if connector.is_critical:
            doc += "- **Critical**: Yes\n"
        doc += f"- **Usage Count**: {connector.invocation_count}\n\n"

    doc += "## Actions\n\n"
    for node, _, _, depth in walk_actions(list(details.actions.tree.values())):
        doc += f"{'#' * min(depth + 2, 6)} {display_name(node.id)}\n"
        doc += f"- **Type**: {node.type or 'Unknown'}\n"
        summary = ' '.join(describe_action(node))
        if summary != node.id:
            doc += f"- **Summary**: {summary}\n"
        if node.description:
            doc += f"- **Description**: {node.description}\n"
        if node.predecessors:
            doc += f"- **Runs After**: {', '.join(node.predecessors)}\n"
        doc += "\n"

    if result.issues:
        doc += "## Issues\n\n"
        for issue in result.issues:
            doc += f"- **[{issue.severity.value}]** {issue.description}\n"
            doc += f"  **Impact**: {issue.impact}\n"
            doc += f"  **Location**: {issue.location}\n"
        doc += "\n"

    if result.recommendations:
        doc += "## Recommendations\n\n"
        for recommendation in result.recommendations:
            doc += f"### {recommendation.title}\n"
            doc += f"- **Priority**: {recommendation.priority.value}\n"
            doc += f"- **Category**: {recommendation.category}\n"
            doc += f"- {recommendation.description}\n\n"

    if diagram is not None:
        doc += "## Diagram\n\n"
        doc += f"```mermaid\n{diagram.text}```\n"

    return doc


def save_analysis_report(path: str, details: WorkflowDetails, result: AnalysisResult):
    """Save a plain-text analysis report"""
    with open(path, 'w', encoding='utf-8') as f:
        f.write("Flow Analysis Report\n")
        f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        f.write(f"{'='*60}\n\n")

        f.write(f"Flow: {details.name}\n")
        f.write(f"Triggers: {len(details.triggers)}\n")
        f.write(f"Actions: {len(details.flat)}\n\n")

        f.write("Connector Usage:\n")
        f.write("-"*40 + "\n")
        for connector in sorted(result.connectors, key=lambda c: c.invocation_count, reverse=True):
            flag = " [CRITICAL]" if connector.is_critical else ""
            f.write(f"  {connector.display_name} ({connector.connector_name}): {connector.invocation_count}{flag}\n")
        f.write("\n")

        f.write("Action Inventory:\n")
        f.write("-"*40 + "\n")
        for node, parent, branch, depth in walk_actions(list(details.actions.tree.values())):
            indent = '  ' * depth
            where = f" [{branch}]" if branch and branch != 'actions' else ''
            f.write(f"{indent}- {node.id} ({node.type or 'Unknown'}){where}")
            if node.run_after is None:
                f.write(" [NO RUN AFTER]")
            f.write("\n")
        f.write("\n")

        f.write("Issues:\n")
        f.write("-"*40 + "\n")
        for issue in result.issues:
            f.write(f"  [{issue.severity.value}] {issue.description}\n")
        if not result.issues:
            f.write("  None\n")

        f.write("\n" + "="*60 + "\n")
        f.write("End of Report\n")


def summary_counts(details: WorkflowDetails) -> Dict[str, Any]:
    """Action counts per category, most common first"""
    counts: Dict[str, int] = {}
    for node in details.flat:
        counts[node.category.value] = counts.get(node.category.value, 0) + 1
    return dict(sorted(counts.items(), key=lambda x: x[1], reverse=True))
