import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    ActionCategory,
    ActionNode,
    ConnectionReference,
    ParsedActions,
    SwitchCase,
    TriggerNode,
    WorkflowDetails,
    WorkflowStructureError,
    classify_action,
)

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 50


def _as_map(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def display_name(action_id: str) -> str:
    """Workflow ids use underscores where the designer shows spaces"""
    return action_id.replace('_', ' ')


def parse_actions(raw_actions: Any) -> ParsedActions:
    """Parse a workflow ``actions`` map into a tree and its pre-order flattening.

    Absent or non-mapping input at any level is an empty action set. Nesting
    deeper than ``MAX_NESTING_DEPTH`` fails this call only: the result carries
    an error and no actions.
    """
    try:
        nodes = _parse_level(raw_actions, 1)
    except WorkflowStructureError as e:
        logger.error(f"Could not parse actions: {e}")
        return ParsedActions(error=str(e))

    return ParsedActions(tree={node.id: node for node in nodes}, flat=flatten(nodes))


def _parse_level(raw_actions: Any, depth: int) -> Tuple[ActionNode, ...]:
    entries = _as_map(raw_actions)
    if entries and depth > MAX_NESTING_DEPTH:
        raise WorkflowStructureError(f"Actions are nested deeper than {MAX_NESTING_DEPTH} levels")
    return tuple(_parse_action(action_id, _as_map(value), depth) for action_id, value in entries.items())


def _as_text(value: Any) -> Optional[str]:
    return value if value is None or isinstance(value, str) else str(value)


def _parse_action(action_id: str, value: Dict[str, Any], depth: int) -> ActionNode:
    action_type = _as_text(value.get('type'))
    kind = _as_text(value.get('kind'))
    category = classify_action(action_type, kind)

    else_children = None
    else_branch = value.get('else')
    if isinstance(else_branch, dict):
        else_children = _parse_level(else_branch.get('actions'), depth + 1)

    cases = ()
    if category is ActionCategory.SWITCH:
        cases = tuple(
            SwitchCase(name=case_name, value=case.get('case'), children=_parse_level(case.get('actions'), depth + 1))
            for case_name, case in _as_map(value.get('cases')).items()
            if isinstance(case, dict)
        )
        default = value.get('default')
        if isinstance(default, dict):
            else_children = _parse_level(default.get('actions'), depth + 1)

    run_after = value.get('runAfter')
    return ActionNode(
        id=action_id,
        type=action_type,
        kind=kind,
        description=_as_text(value.get('description')),
        inputs=value.get('inputs'),
        outputs=value.get('outputs'),
        run_after=run_after if isinstance(run_after, dict) else None,
        expression=value.get('expression'),
        children=_parse_level(value.get('actions'), depth + 1),
        else_children=else_children,
        cases=cases,
        category=category,
    )


def flatten(nodes: Iterable[ActionNode]) -> List[ActionNode]:
    """Depth-first pre-order: node, children, case children, else children"""
    flat = []
    stack = list(reversed(list(nodes)))
    while stack:
        node = stack.pop()
        flat.append(node)
        pending = list(node.children)
        for case in node.cases:
            pending.extend(case.children)
        pending.extend(node.else_children or ())
        stack.extend(reversed(pending))
    return flat


def parse_triggers(raw_triggers: Any) -> List[TriggerNode]:
    return [
        TriggerNode(id=trigger_id, type=_as_text(value.get('type')), kind=_as_text(value.get('kind')),
                    inputs=value.get('inputs'))
        for trigger_id, value in ((key, _as_map(value)) for key, value in _as_map(raw_triggers).items())
    ]


def parse_connection_references(raw_references: Any) -> List[ConnectionReference]:
    references = []
    for key, value in _as_map(raw_references).items():
        value = _as_map(value)
        references.append(ConnectionReference(
            id=key,
            display_name=value.get('displayName') or key,
            connector_name=value.get('connectorName') or _as_map(value.get('api')).get('name') or '',
            connection_name=value.get('connectionName') or _as_map(value.get('connection')).get('id') or '',
            icon_uri=value.get('iconUri') or '',
        ))
    return references


def _load_clientdata(clientdata: Any) -> Dict[str, Any]:
    if clientdata is None or clientdata == '':
        logger.warning("No clientdata found in the workflow record")
        return {}
    if isinstance(clientdata, dict):
        return clientdata
    try:
        return _as_map(json.loads(clientdata))
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse flow definition from clientdata: {e}")
        return {}


def parse_workflow_definition(source: Union[str, Dict[str, Any], None], flow_id: str = '',
                              name: str = '') -> WorkflowDetails:
    """Build WorkflowDetails from a workflow record, its clientdata string or a parsed definition"""
    description = ''
    if isinstance(source, dict) and ('clientdata' in source or 'workflowid' in source):
        flow_id = source.get('workflowid') or flow_id
        name = source.get('name') or name
        description = source.get('description') or ''
        source = source.get('clientdata')

    definition = _load_clientdata(source)
    properties = _as_map(definition.get('properties')) or definition
    body = _as_map(properties.get('definition'))

    details = WorkflowDetails(
        id=flow_id,
        name=name or flow_id,
        description=description,
        connection_references=parse_connection_references(properties.get('connectionReferences')),
        triggers=parse_triggers(body.get('triggers')),
        actions=parse_actions(body.get('actions')),
    )
    logger.info(f"Parsed workflow '{details.name}': {len(details.triggers)} triggers, "
                f"{len(details.flat)} actions, {len(details.connection_references)} connection references")
    return details


def find_child_flow_references(flat_actions: Iterable[ActionNode]) -> List[str]:
    """Reference names of child flows called through Workflow actions, first-seen order"""
    references: List[str] = []
    for action in flat_actions:
        if action.category is not ActionCategory.CHILD_FLOW:
            continue
        reference: Optional[str] = _as_map(_as_map(action.inputs).get('host')).get('workflowReferenceName')
        if reference and reference not in references:
            references.append(reference)
    return references
