import json
import logging
import os
import sys
from datetime import datetime

from .diagram import generate_diagram
from .flow_analyzer import analyze, summarize
from .query_converter import QueryConverter
from .report import (
    export_actions_csv,
    find_actions_without_run_after,
    find_cross_scope_references,
    generate_action_graph,
    generate_documentation,
    save_analysis_report,
    summary_counts,
)
from .workflow import find_child_flow_references, parse_workflow_definition

logger = logging.getLogger(__name__)

USAGE = """Usage:
  flowquery analyze <workflow.json> [output_dir]
  flowquery diagram <workflow.json> [output.mmd]
  flowquery convert <sql|odata|fetchxml> <sql|odata|fetchxml> <query or @file>"""


def _read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def load_workflow(path: str):
    """Workflow record JSON, an OData list of records, or bare clientdata"""
    raw = json.loads(_read_text(path))
    if isinstance(raw, dict) and isinstance(raw.get('value'), list) and raw['value']:
        logger.info(f"Found {len(raw['value'])} workflow records, using the first")
        raw = raw['value'][0]
    name = os.path.splitext(os.path.basename(path))[0]
    return parse_workflow_definition(raw, flow_id=name, name=name)


def run_convert(args) -> int:
    if len(args) < 3:
        print(USAGE)
        return 2

    source_dialect, target_dialect, query = args[0].lower(), args[1].lower(), args[2]
    if query.startswith('@'):
        try:
            query = _read_text(query[1:])
        except OSError as e:
            logger.error(f"Failed to read query file: {e}")
            return 1

    result = QueryConverter.convert(query, source_dialect, target_dialect)
    if not result.succeeded:
        logger.error(result.error)
        return 1

    print(result.text)
    if result.warnings:
        print("\n⚠️  Warnings:")
        for warning in result.warnings:
            print(f"  • {warning}")
    return 0


def run_diagram(args) -> int:
    if not args:
        print(USAGE)
        return 2

    try:
        details = load_workflow(args[0])
    except Exception as e:
        logger.error(f"Failed to load workflow: {e}")
        return 1

    diagram = generate_diagram(details.triggers, details.actions, flow_name=details.name)
    if len(args) > 1:
        with open(args[1], 'w', encoding='utf-8') as f:
            f.write(diagram.text)
        logger.info(f"✓ Diagram saved to: {args[1]}")
    else:
        print(diagram.text)
    return 0


def run_analyze(args) -> int:
    if not args:
        print(USAGE)
        return 2

    workflow_path = args[0]
    if not os.path.exists(workflow_path):
        logger.error(f"File not found: {workflow_path}")
        return 1

    file_name = os.path.basename(workflow_path)
    logger.info(f"Starting analysis of: {file_name}")
    start_time = datetime.now()

    try:
        details = load_workflow(workflow_path)
    except Exception as e:
        logger.error(f"Failed to load workflow: {e}")
        return 1

    if details.error:
        logger.error(f"Workflow could not be parsed: {details.error}")

    try:
        result = analyze(details.flat, details.connection_references)
    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    analysis_time = (datetime.now() - start_time).total_seconds()
    logger.info(f"Analysis completed in {analysis_time:.2f}s")

    output_dir = args[1] if len(args) > 1 else os.path.join(os.path.dirname(workflow_path) or '.', 'output')
    os.makedirs(output_dir, exist_ok=True)
    base_name = os.path.splitext(file_name)[0]

    # Summary
    print("\n" + "="*60)
    print(f"📊 ANALYSIS SUMMARY FOR: {details.name}")
    print("="*60)

    print(f"\nFlow Statistics:")
    print(f"  • Triggers: {len(details.triggers)}")
    print(f"  • Actions (all depths): {len(details.flat)}")
    print(f"  • Connection references: {len(details.connection_references)}")
    print(f"  • Analysis time: {analysis_time:.2f} seconds")

    print(f"\nActions by Category:")
    for category, count in summary_counts(details).items():
        print(f"  • {category:15s}: {count:4d}")

    if result.connectors:
        print(f"\n🔌 Connector Usage:")
        for connector in result.connectors:
            flag = " (critical)" if connector.is_critical else ""
            print(f"  • {connector.display_name:30s}: {connector.invocation_count:3d}{flag}")

    child_flows = find_child_flow_references(details.flat)
    if child_flows:
        print(f"\n  Child flows called: {', '.join(child_flows)}")

    print(f"\n⚠️  Potential Issues:")
    for issue in result.issues:
        print(f"  • [{issue.severity.value}] {issue.description}")
    cross_scope = find_cross_scope_references(details)
    if cross_scope:
        print(f"  • Found {len(cross_scope)} run-after references that cross scope boundaries")
    if not result.issues and not cross_scope:
        print("  • None found")

    print(f"\n💡 Recommendations:")
    for recommendation in result.recommendations:
        print(f"  • [{recommendation.priority.value}] {recommendation.title}")

    print("\n" + "="*60)

    # Export to CSV
    csv_path = os.path.join(output_dir, f"{base_name}_actions.csv")
    try:
        export_actions_csv(details, csv_path)
        logger.info(f"✓ Action database saved to: {csv_path}")
    except Exception as e:
        logger.error(f"Failed to save CSV: {e}")

    graph_path = os.path.join(output_dir, f"{base_name}_action_graph.json")
    try:
        graph = generate_action_graph(details)
        graph['analysis'] = summarize(result)
        graph['actions_without_run_after'] = find_actions_without_run_after(details)
        with open(graph_path, 'w', encoding='utf-8') as f:
            json.dump(graph, f, indent=2)
        logger.info(f"✓ Action graph saved to: {graph_path}")
    except Exception as e:
        logger.error(f"Failed to generate graph: {e}")

    diagram = generate_diagram(details.triggers, details.actions, flow_name=details.name)
    diagram_path = os.path.join(output_dir, f"{base_name}_diagram.mmd")
    with open(diagram_path, 'w', encoding='utf-8') as f:
        f.write(diagram.text)
    logger.info(f"✓ Diagram saved to: {diagram_path}")

    doc_path = os.path.join(output_dir, f"{base_name}_documentation.md")
    with open(doc_path, 'w', encoding='utf-8') as f:
        f.write(generate_documentation(details, result, diagram))
    logger.info(f"✓ Documentation saved to: {doc_path}")

    report_path = os.path.join(output_dir, f"{base_name}_analysis_report.txt")
    save_analysis_report(report_path, details, result)
    logger.info(f"✓ Analysis report saved to: {report_path}")

    # Visualize
    try:
        from .analyzer import generate_analysis_report
        print("\n📈 Generating visualizations and analysis...")
        generate_analysis_report(csv_path, graph_path, output_dir)
        logger.info("✓ Analysis and visualizations generated")
    except Exception as e:
        logger.error(f"Visualization failed: {e}")

    return 0


COMMANDS = {
    'analyze': run_analyze,
    'diagram': run_diagram,
    'convert': run_convert,
}


def main(argv=None):
    """Command line entry point"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    args = sys.argv[1:] if argv is None else list(argv)
    if not args or args[0] not in COMMANDS:
        print(USAGE)
        return 2

    return COMMANDS[args[0]](args[1:])


if __name__ == "__main__":
    sys.exit(main())
