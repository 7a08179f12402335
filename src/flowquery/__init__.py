"""Query-language bridge and workflow graph analyzer for Dataverse tooling."""

from .diagram import generate_diagram
from .entity_names import pluralize, singularize
from .flow_analyzer import AnalysisConfig, analyze
from .intellisense import CompletionProvider, metadata_provider_from_cache, register_completion_providers
from .metadata import MetadataCache
from .models import (
    ActionCategory,
    ActionNode,
    AnalysisResult,
    ConversionResult,
    DiagramDescription,
    QueryContext,
    QueryDialect,
    WorkflowDetails,
)
from .query_context import parse_query_context
from .query_converter import QueryConverter, convert
from .workflow import parse_actions, parse_workflow_definition

__version__ = '0.1.0'
