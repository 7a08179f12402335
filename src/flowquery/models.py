from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .entity_names import pluralize


class FlowQueryError(Exception):
    """Base error for the query bridge and workflow analyzer"""


class QueryConversionError(FlowQueryError):
    """Raised inside the converter when a query cannot be parsed"""


class WorkflowStructureError(FlowQueryError):
    """Raised when a workflow definition nests deeper than the allowed limit"""


class QueryDialect(str, Enum):
    SQL = 'sql'
    ODATA = 'odata'
    FETCHXML = 'fetchxml'


class ContextKind(str, Enum):
    ENTITY = 'entity'
    ATTRIBUTE = 'attribute'
    NONE = 'none'


@dataclass(frozen=True)
class QueryContext:
    """What kind of identifier the cursor is inside"""
    kind: ContextKind
    partial_token: str
    cursor_offset: int
    entity_name: Optional[str] = None
    keyword: Optional[str] = None


@dataclass(frozen=True)
class ConversionResult:
    succeeded: bool
    text: str
    error: Optional[str] = None
    warnings: Tuple[str, ...] = ()

    @classmethod
    def ok(cls, text: str, warnings=()) -> 'ConversionResult':
        # Keep first occurrence of each warning, in order
        return cls(succeeded=True, text=text, warnings=tuple(dict.fromkeys(warnings)))

    @classmethod
    def failure(cls, text: str, error: str) -> 'ConversionResult':
        return cls(succeeded=False, text=text, error=error)


def _label_text(display_name: Any) -> str:
    """Dataverse labels come either as plain strings or as Label objects"""
    if isinstance(display_name, str):
        return display_name
    if not isinstance(display_name, dict):
        return ''
    user_label = display_name.get('UserLocalizedLabel') or {}
    if user_label.get('Label'):
        return user_label['Label']
    localized = display_name.get('LocalizedLabels') or []
    if localized and localized[0].get('Label'):
        return localized[0]['Label']
    return ''


@dataclass(frozen=True)
class AttributeMetadata:
    logical_name: str
    display_name: str = ''
    data_type: str = ''

    @classmethod
    def from_dataverse(cls, data: Dict[str, Any]) -> 'AttributeMetadata':
        return cls(
            logical_name=data.get('LogicalName', ''),
            display_name=_label_text(data.get('DisplayName')),
            data_type=data.get('AttributeType') or '',
        )


@dataclass(frozen=True)
class EntityMetadata:
    logical_name: str
    collection_name: str
    display_name: str = ''
    attributes: Tuple[AttributeMetadata, ...] = ()

    @classmethod
    def from_dataverse(cls, data: Dict[str, Any]) -> 'EntityMetadata':
        """Build from an EntityDefinitions record (EntitySetName > LogicalCollectionName > plural)"""
        logical_name = data.get('LogicalName', '')
        collection_name = (data.get('EntitySetName')
                           or data.get('LogicalCollectionName')
                           or pluralize(logical_name))
        return cls(
            logical_name=logical_name,
            collection_name=collection_name,
            display_name=_label_text(data.get('DisplayName')),
            attributes=tuple(AttributeMetadata.from_dataverse(a) for a in data.get('Attributes') or []),
        )


class ActionCategory(str, Enum):
    """Tag of the action sum type; UNKNOWN is the passthrough variant"""
    CONDITION = 'condition'
    SWITCH = 'switch'
    LOOP = 'loop'
    SCOPE = 'scope'
    EXPRESSION = 'expression'
    CHILD_FLOW = 'child_flow'
    API_CALL = 'api_call'
    DATA_OPERATION = 'data_operation'
    VARIABLE = 'variable'
    CONTROL = 'control'
    UNKNOWN = 'unknown'


CONTAINER_CATEGORIES = frozenset({
    ActionCategory.CONDITION,
    ActionCategory.SWITCH,
    ActionCategory.LOOP,
    ActionCategory.SCOPE,
})

_TYPE_CATEGORIES = {
    'if': ActionCategory.CONDITION,
    'switch': ActionCategory.SWITCH,
    'foreach': ActionCategory.LOOP,
    'until': ActionCategory.LOOP,
    'scope': ActionCategory.SCOPE,
    'expression': ActionCategory.EXPRESSION,
    'workflow': ActionCategory.CHILD_FLOW,
    'openapiconnection': ActionCategory.API_CALL,
    'openapiconnectionwebhook': ActionCategory.API_CALL,
    'apiconnection': ActionCategory.API_CALL,
    'apiconnectionwebhook': ActionCategory.API_CALL,
    'http': ActionCategory.API_CALL,
    'httpwebhook': ActionCategory.API_CALL,
    'compose': ActionCategory.DATA_OPERATION,
    'parsejson': ActionCategory.DATA_OPERATION,
    'query': ActionCategory.DATA_OPERATION,
    'select': ActionCategory.DATA_OPERATION,
    'table': ActionCategory.DATA_OPERATION,
    'join': ActionCategory.DATA_OPERATION,
    'initializevariable': ActionCategory.VARIABLE,
    'setvariable': ActionCategory.VARIABLE,
    'incrementvariable': ActionCategory.VARIABLE,
    'decrementvariable': ActionCategory.VARIABLE,
    'appendtoarrayvariable': ActionCategory.VARIABLE,
    'appendtostringvariable': ActionCategory.VARIABLE,
    'response': ActionCategory.CONTROL,
    'terminate': ActionCategory.CONTROL,
    'wait': ActionCategory.CONTROL,
}


def classify_action(action_type: Optional[str], kind: Optional[str] = None) -> ActionCategory:
    """Map a raw workflow action type to its category"""
    action_type = action_type if isinstance(action_type, str) else ''
    kind = kind if isinstance(kind, str) else ''
    category = _TYPE_CATEGORIES.get(action_type.lower(), ActionCategory.UNKNOWN)
    if category is ActionCategory.UNKNOWN and kind.lower() == 'expression':
        return ActionCategory.EXPRESSION
    return category


@dataclass(frozen=True)
class ActionNode:
    """One workflow step; id is unique only among its siblings"""
    id: str
    type: Optional[str] = None
    kind: Optional[str] = None
    description: Optional[str] = None
    inputs: Any = None
    outputs: Any = None
    # None when the action has no runAfter declaration at all
    run_after: Optional[Dict[str, List[str]]] = None
    expression: Any = None
    children: Tuple['ActionNode', ...] = ()
    else_children: Optional[Tuple['ActionNode', ...]] = None
    cases: Tuple['SwitchCase', ...] = ()
    category: ActionCategory = ActionCategory.UNKNOWN

    @property
    def predecessors(self) -> Tuple[str, ...]:
        return tuple(self.run_after or ())

    @property
    def is_container(self) -> bool:
        return self.category in CONTAINER_CATEGORIES


@dataclass(frozen=True)
class SwitchCase:
    name: str
    value: Any = None
    children: Tuple[ActionNode, ...] = ()


@dataclass(frozen=True)
class TriggerNode:
    id: str
    type: Optional[str] = None
    kind: Optional[str] = None
    inputs: Any = None


@dataclass(frozen=True)
class ConnectionReference:
    id: str
    display_name: str
    connector_name: str
    connection_name: str = ''
    icon_uri: str = ''


@dataclass
class ParsedActions:
    tree: Dict[str, ActionNode] = field(default_factory=dict)
    flat: List[ActionNode] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class WorkflowDetails:
    id: str
    name: str
    description: str = ''
    connection_references: List[ConnectionReference] = field(default_factory=list)
    triggers: List[TriggerNode] = field(default_factory=list)
    actions: ParsedActions = field(default_factory=ParsedActions)

    @property
    def flat(self) -> List[ActionNode]:
        return self.actions.flat

    @property
    def error(self) -> Optional[str]:
        return self.actions.error


class Severity(str, Enum):
    ERROR = 'Error'
    WARNING = 'Warning'
    INFO = 'Info'


class Priority(str, Enum):
    HIGH = 'High'
    MEDIUM = 'Medium'
    LOW = 'Low'


@dataclass(frozen=True)
class ConnectorUsage:
    connector_name: str
    display_name: str
    invocation_count: int = 0
    is_critical: bool = False


@dataclass(frozen=True)
class Issue:
    id: str
    severity: Severity
    description: str
    impact: str
    location: str


@dataclass(frozen=True)
class Recommendation:
    id: str
    title: str
    description: str
    priority: Priority
    category: str


@dataclass(frozen=True)
class AnalysisResult:
    connectors: Tuple[ConnectorUsage, ...] = ()
    issues: Tuple[Issue, ...] = ()
    recommendations: Tuple[Recommendation, ...] = ()

    @property
    def issue_ids(self) -> Tuple[str, ...]:
        return tuple(issue.id for issue in self.issues)


@dataclass(frozen=True)
class DiagramDescription:
    """Ordered Mermaid statements; text is what the renderer consumes"""
    statements: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return '\n'.join(self.statements) + '\n'

    def __str__(self) -> str:
        return self.text
