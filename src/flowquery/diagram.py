"""Mermaid flowchart descriptions of a parsed workflow.

Every trigger becomes a node, every action a node styled by its category.
Condition, switch, loop and scope actions also open a ``<id>_Scope`` subgraph
holding their body; else branches, switch cases and switch defaults get
nested subgraphs of their own. Edges follow ``runAfter`` inside each scope.
The same input always produces byte-identical output.
"""
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .models import (
    ActionCategory,
    ActionNode,
    DiagramDescription,
    ParsedActions,
    TriggerNode,
    WorkflowStructureError,
)
from .workflow import MAX_NESTING_DEPTH

logger = logging.getLogger(__name__)

INIT_DIRECTIVE = "%%{init: {'theme': 'neutral', 'flowchart': {'useMaxWidth': false, 'htmlLabels': true}} }%%"
TOP_LEVEL_PREFIX = 'Action_'
LABEL_WIDTH = 40
SUCCEEDED = 'Succeeded'

# Category -> (shape opening, shape closing, style class)
NODE_STYLES = {
    ActionCategory.CONDITION: ('{"', '"}', 'condition'),
    ActionCategory.SWITCH: ('{"', '"}', 'condition'),
    ActionCategory.LOOP: ('[/"', '"/]', 'loop'),
    ActionCategory.SCOPE: ('(["', '"])', 'scope'),
    ActionCategory.EXPRESSION: ('>"', '"]', 'expression'),
    ActionCategory.CHILD_FLOW: ('(["', '"])', 'childflow'),
}
DEFAULT_STYLE = ('["', '"]', 'action')

# Body prefix appended to the owner's node id
SCOPE_PREFIXES = {
    ActionCategory.CONDITION: '_T_',
    ActionCategory.SWITCH: '_T_',
    ActionCategory.LOOP: '_L_',
    ActionCategory.SCOPE: '_S_',
}

CLASS_DEFINITIONS = [
    'classDef default fill:#f9f9f9,stroke:#333,stroke-width:1px',
    'classDef trigger fill:#FF9966,stroke:#FF6600',
    'classDef action fill:#99CCFF,stroke:#3366CC',
    'classDef condition fill:#FFCC99,stroke:#FF9933',
    'classDef expression fill:#C2FABC,stroke:#2ECC71',
    'classDef loop fill:#E8DAEF,stroke:#8E44AD',
    'classDef childflow fill:#AED6F1,stroke:#3498DB,stroke-width:2px,stroke-dasharray:5,5',
    'classDef scope fill:#F5B7B1,stroke:#C0392B',
    'classDef elseBranch fill:#FDEBD0,stroke:#E67E22',
]

LEGEND = [
    'subgraph Legend ["Flow Diagram Legend"]',
    '  direction LR',
    '  L_T["Trigger"]:::trigger',
    '  L_A["Action"]:::action',
    '  L_C{"Condition"}:::condition',
    '  L_E>"Expression"]:::expression',
    '  L_L[/"Loop"/]:::loop',
    '  L_CF(["Child Flow"]):::childflow',
    '  L_S(["Scope"]):::scope',
    'end',
]

# Mermaid entity codes for characters that would end a label or start markup
_ESCAPES = [
    ('#', '#35;'),
    ('"', '#quot;'),
    ('[', '#91;'),
    (']', '#93;'),
    ('{', '#123;'),
    ('}', '#125;'),
    ('(', '#40;'),
    (')', '#41;'),
    ('<', '#lt;'),
    ('>', '#gt;'),
    ('|', '#124;'),
]

_UNSAFE_ID_CHARS = re.compile(r'[^A-Za-z0-9_]')


def escape_label(text: Any) -> str:
    escaped = str(text)
    for char, code in _ESCAPES:
        escaped = escaped.replace(char, code)
    return escaped


def wrap_lines(text: str, max_line_length: int = LABEL_WIDTH) -> List[str]:
    """Greedy word wrap; a single word longer than the width keeps its own line"""
    lines = []
    for paragraph in str(text).splitlines() or ['']:
        current = ''
        for word in paragraph.split(' '):
            if current and len(current) + len(word) + 1 > max_line_length:
                lines.append(current)
                current = word
            else:
                current = f"{current} {word}" if current else word
        lines.append(current)
    return lines


def format_multiline_text(text: str, max_line_length: int = LABEL_WIDTH) -> str:
    if not text or len(text) <= max_line_length:
        return text
    return '<br/>'.join(wrap_lines(text, max_line_length))


def sanitize_id(raw_id: str) -> str:
    return _UNSAFE_ID_CHARS.sub('_', raw_id)


def _label(lines: Union[str, Sequence[str]], width: int = LABEL_WIDTH) -> str:
    if isinstance(lines, str):
        lines = [lines]
    wrapped = [piece for line in lines for piece in wrap_lines(line, width)]
    return '<br/>'.join(escape_label(piece) for piece in wrapped)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + '...' if len(text) > limit else text


def _as_map(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _describe_dataverse(operation: str, params: Dict[str, Any], connection: str) -> List[str]:
    entity = params.get('entityName') or ''
    record = [f"ID: {params['recordId']}"] if params.get('recordId') else []
    fields = list(_as_map(params.get('item')))
    field_lines = ['Fields:'] + fields if fields else []

    if operation == 'ListRecords':
        if params.get('$filter'):
            detail = [f"WHERE {params['$filter']}"]
        elif params.get('fetchXml'):
            detail = ['(using FetchXML)']
        elif params.get('$select'):
            detail = [f"fields: {params['$select']}"]
        else:
            detail = []
        return [f"Get {entity} records"] + detail
    if operation == 'GetItem':
        return [f"Get {entity}"] + record
    if operation == 'CreateRecord':
        return [f"Create {entity}"] + field_lines
    if operation == 'UpdateRecord':
        return [f"Update {entity}"] + record + field_lines
    if operation == 'DeleteRecord':
        return [f"Delete {entity}"] + record
    if operation in ('PerformBoundAction', 'PerformUnboundAction'):
        return [params.get('actionName') or '', f"({operation})"]
    return [operation, f"on {entity or connection}"]


def _describe_sharepoint(operation: str, params: Dict[str, Any]) -> str:
    list_name = f" (list:{params['list']})" if params.get('list') else ''
    item_id = f" ID:{params['id']}" if params.get('id') else ''
    filter_info = f" filter:{_truncate(str(params['$filter']), 20)}" if params.get('$filter') else ''
    labels = {
        'GetItem': f"SharePoint: Get Item{list_name}{item_id}",
        'GetItems': f"SharePoint: Get Items{list_name}{filter_info}",
        'CreateItem': f"SharePoint: Create Item{list_name}",
        'UpdateItem': f"SharePoint: Update Item{list_name}{item_id}",
        'DeleteItem': f"SharePoint: Delete Item{list_name}{item_id}",
    }
    return labels.get(operation, f"SharePoint: {operation}")


def _describe_excel(operation: str, params: Dict[str, Any]) -> str:
    file_name = str(params.get('file') or '').rsplit('/', 1)[-1]
    file_info = f" file:{_truncate(file_name, 15)}" if file_name else ''
    if operation in ('GetItems', 'GetRows'):
        table = str(params.get('table') or params.get('tableName') or '')
        if '{' in table:
            table = 'Table'
        table_info = f" table:{_truncate(table, 15)}" if table else ''
        return f"Excel: Get Rows{file_info}{table_info}"
    if operation == 'RunQuery':
        return f"Excel: Run Query{file_info}"
    return f"Excel: {operation}"


def _describe_value(value: Any) -> str:
    if isinstance(value, str):
        return _truncate(value, 30)
    if value is None:
        return '(null)'
    if isinstance(value, (bool, int, float)):
        return json.dumps(value)
    return _truncate(json.dumps(value, sort_keys=True, default=str), 30)


def describe_action(node: ActionNode) -> List[str]:
    """Human-readable label lines for a node, falling back to its id"""
    inputs = _as_map(node.inputs)
    action_type = node.type or ''
    category = node.category

    if category is ActionCategory.CONDITION:
        if node.expression:
            return [f"If: {_truncate(json.dumps(node.expression, sort_keys=True, default=str), 40)}"]
        return [f"Condition: {node.id}"]
    if category is ActionCategory.SWITCH:
        if node.expression:
            return [f"Switch: {_truncate(str(node.expression), 40)}"]
        return [f"Switch: {node.id}"]
    if category is ActionCategory.LOOP:
        loop_on = inputs.get('foreach') or inputs.get('until') or node.expression
        if isinstance(loop_on, str) and len(loop_on) < 40:
            return [f"{action_type} {loop_on}"]
        return [f"Loop: {node.id}"]
    if category is ActionCategory.SCOPE:
        return [f"Scope: {node.id}"]
    if category is ActionCategory.EXPRESSION:
        expression = inputs.get('expression')
        if isinstance(expression, str) and expression and len(expression) < 40:
            return [expression]
        if node.kind:
            return [f"Expression ({node.kind})"]
        return [f"Expression: {node.id}"]
    if category is ActionCategory.CHILD_FLOW:
        reference = _as_map(inputs.get('host')).get('workflowReferenceName') or ''
        parameters = [f"- {key}: {_describe_value(value)}" for key, value in _as_map(inputs.get('body')).items()]
        return ['CHILD Flow:', reference] + (['Parameters:'] + parameters if parameters else [])

    lowered = action_type.lower()
    if lowered == 'openapiconnection':
        host = _as_map(inputs.get('host'))
        if host:
            connection = host.get('connectionName') or ''
            operation = host.get('operationId') or ''
            params = _as_map(inputs.get('parameters'))
            if 'commondataservice' in connection or 'dataverse' in connection:
                return _describe_dataverse(operation, params, connection)
            if 'excel' in connection:
                return [_describe_excel(operation, params)]
            if 'sharepoint' in connection:
                return [_describe_sharepoint(operation, params)]
            return [f"{connection}: {operation}"]
    elif lowered == 'apiconnection' and (inputs.get('apiId') or inputs.get('operationId')):
        return [f"{inputs.get('apiId') or ''}: {inputs.get('operationId') or ''}"]
    elif lowered == 'http':
        return [f"HTTP {inputs.get('method') or ''}:", str(inputs.get('uri') or '')]
    elif lowered == 'compose' and node.inputs is not None:
        value = node.inputs.get('inputs') if isinstance(node.inputs, dict) and 'inputs' in node.inputs else node.inputs
        if isinstance(value, (list, dict)):
            return [f"Compose: [{'Array' if isinstance(value, list) else 'Object'}]"]
        return [f"Compose: {_describe_value(value)}"]
    elif lowered == 'compose':
        return ['Compose data']
    elif lowered == 'parsejson':
        content = inputs.get('content')
        return [f"Parse JSON ({content})" if isinstance(content, str) and content.startswith('@') else 'Parse JSON']
    elif lowered == 'table':
        source = inputs.get('from')
        return [f"Create HTML Table from: {_truncate(str(source), 20)}" if source else 'Create HTML Table']
    elif lowered == 'join':
        return [f"Join Array ({inputs['format']})" if inputs.get('format') else 'Join Array']
    elif lowered in ('select', 'query'):
        source = inputs.get('from')
        name = 'Select' if lowered == 'select' else 'Filter Array'
        return [f"{name} from:{source}" if isinstance(source, str) and source.startswith('@') else name]
    elif lowered == 'response':
        return [f"Send Response ({inputs.get('statusCode') or ''})"]

    return [node.id]


def node_statement(node_id: str, node: ActionNode, label: str) -> str:
    opening, closing, _ = NODE_STYLES.get(node.category, DEFAULT_STYLE)
    return f"{node_id}{opening}{label}{closing}"


def style_class(node: ActionNode) -> str:
    return NODE_STYLES.get(node.category, DEFAULT_STYLE)[2]


def _edge_label(statuses: Any) -> str:
    if not isinstance(statuses, (list, tuple)):
        return ''
    if not statuses or list(statuses) == [SUCCEEDED]:
        return ''
    return '|' + escape_label(', '.join(str(s) for s in statuses)) + '|'


class _DiagramBuilder:
    def __init__(self):
        self.statements: List[str] = []
        self.used_ids: Set[str] = set()
        self.emitted_edges: Set[str] = set()

    def unique_id(self, raw_id: str) -> str:
        candidate = base = sanitize_id(raw_id)
        suffix = 2
        while candidate in self.used_ids:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self.used_ids.add(candidate)
        return candidate

    def emit(self, indent: int, statement: str):
        self.statements.append('  ' * indent + statement)

    def edge(self, indent: int, source: str, target: str, label: str = '', dotted: bool = False):
        arrow = '-.->' if dotted else '-->'
        statement = f"{source} {arrow}{label} {target}"
        if statement not in self.emitted_edges:
            self.emitted_edges.add(statement)
            self.emit(indent, statement)

    def scope(self, nodes: Sequence[ActionNode], prefix: str, indent: int, depth: int,
              owners: Sequence[str]) -> None:
        """Nodes, nested subgraphs and edges for one scope; owners feed its entry points"""
        if depth > MAX_NESTING_DEPTH:
            raise WorkflowStructureError(f"Actions are nested deeper than {MAX_NESTING_DEPTH} levels")

        local_ids: Dict[str, str] = {}
        for node in nodes:
            node_id = self.unique_id(prefix + node.id)
            local_ids[node.id] = node_id
            self.node(node, node_id, indent, depth)

        for node in nodes:
            node_id = local_ids[node.id]
            if not node.run_after:
                for owner in owners:
                    self.edge(indent, owner, node_id)
                continue
            for predecessor, statuses in node.run_after.items():
                if predecessor in local_ids:
                    self.edge(indent, local_ids[predecessor], node_id, _edge_label(statuses))
                    continue
                logger.warning(f"Connection from {predecessor} to {node.id} crosses scope boundaries")
                for owner in owners:
                    self.edge(indent, owner, node_id, dotted=True)

    def node(self, node: ActionNode, node_id: str, indent: int, depth: int):
        label_lines = describe_action(node)
        self.emit(indent, node_statement(node_id, node, _label(label_lines)))
        self.emit(indent, f"class {node_id} {style_class(node)}")
        if not node.is_container:
            return

        scope_id = self.unique_id(f"{node_id}_Scope")
        self.emit(indent, f'subgraph {scope_id} ["{_label(label_lines[0])}"]')
        self.emit(indent + 1, 'direction TB')
        if node.children or node.category is not ActionCategory.SWITCH:
            self.scope(node.children, node_id + SCOPE_PREFIXES[node.category], indent + 1, depth + 1, [node_id])

        for number, case in enumerate(node.cases, start=1):
            case_id = self.unique_id(f"{node_id}_Case_{number}")
            self.emit(indent + 1, f'subgraph {case_id} ["{_label(f"Case: {case.name}")}"]')
            self.emit(indent + 2, 'direction TB')
            self.scope(case.children, f"{case_id}_", indent + 2, depth + 1, [node_id])
            self.emit(indent + 1, 'end')

        if node.else_children is not None:
            if node.category is ActionCategory.SWITCH:
                branch_id, title, prefix = self.unique_id(f"{node_id}_Default"), 'Default', f"{node_id}_D_"
            else:
                branch_id, title, prefix = self.unique_id(f"{node_id}_Else"), 'Else', f"{node_id}_E_"
            self.emit(indent + 1, f'subgraph {branch_id} ["{title}"]')
            self.emit(indent + 2, 'direction TB')
            self.emit(indent + 2, f"class {branch_id} elseBranch")
            self.scope(node.else_children, prefix, indent + 2, depth + 1, [node_id])
            self.emit(indent + 1, 'end')

        self.emit(indent, 'end')


def _top_level_nodes(action_tree: Union[Mapping[str, ActionNode], ParsedActions, Iterable[ActionNode], None]
                     ) -> Tuple[Optional[str], List[ActionNode]]:
    if action_tree is None:
        return None, []
    if isinstance(action_tree, ParsedActions):
        return action_tree.error, list(action_tree.tree.values())
    if isinstance(action_tree, Mapping):
        return None, list(action_tree.values())
    return None, list(action_tree)


def error_diagram(message: str) -> DiagramDescription:
    return DiagramDescription(statements=('graph TD', f'  Error["{escape_label(message)}"]'))


def generate_diagram(triggers: Iterable[TriggerNode],
                     action_tree: Union[Mapping[str, ActionNode], ParsedActions, Iterable[ActionNode], None],
                     flow_name: str = 'Flow', include_legend: bool = True) -> DiagramDescription:
    error, nodes = _top_level_nodes(action_tree)
    if error:
        return error_diagram(error)

    builder = _DiagramBuilder()
    builder.emit(0, INIT_DIRECTIVE)
    builder.emit(0, 'graph TD')
    builder.emit(0, f'subgraph FlowGraph ["{escape_label(flow_name)}"]')
    builder.emit(1, 'direction TB')

    trigger_ids = []
    for trigger in triggers or []:
        trigger_id = builder.unique_id(f"Trigger_{trigger.id}")
        trigger_ids.append(trigger_id)
        builder.emit(1, f'{trigger_id}["{_label(f"Trigger: {trigger.id}")}"]')
        builder.emit(1, f"class {trigger_id} trigger")

    try:
        builder.scope(nodes, TOP_LEVEL_PREFIX, 1, 1, trigger_ids)
    except WorkflowStructureError as e:
        logger.error(f"Could not generate diagram: {e}")
        return error_diagram(str(e))

    builder.emit(0, 'end')
    if include_legend:
        builder.statements.extend(LEGEND)
    builder.statements.extend(CLASS_DEFINITIONS)
    return DiagramDescription(statements=tuple(builder.statements))
