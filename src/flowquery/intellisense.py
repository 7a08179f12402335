import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from .metadata import MetadataCache
from .models import AttributeMetadata, ContextKind, EntityMetadata, QueryContext, QueryDialect
from .query_context import SQL_KEYWORDS, parse_entity_name, parse_query_context, resolve_table_alias

logger = logging.getLogger(__name__)

ODATA_KEYWORDS = ['$select=', '$filter=', '$expand=', '$orderby=', '$top=', '$count=']

# Upper bound when every entity is offered without a narrowing prefix
MAX_ENTITY_SUGGESTIONS = 50

# Editor language id -> dialect parsed by its provider
LANGUAGE_DIALECTS = {
    'sql': QueryDialect.SQL,
    'odata': QueryDialect.ODATA,
    'xml': QueryDialect.FETCHXML,
}


class CompletionKind(IntEnum):
    """Numeric kinds understood by the editor component"""
    FIELD = 5
    CLASS = 7
    KEYWORD = 15
    FOLDER = 19


@dataclass(frozen=True)
class CompletionItem:
    label: str
    kind: CompletionKind
    insert_text: str
    detail: str = ''
    # Characters before the cursor the insert text replaces
    replace_length: int = 0


@dataclass(frozen=True)
class CompletionMetadata:
    attributes: Tuple[AttributeMetadata, ...] = ()
    entities: Tuple[EntityMetadata, ...] = ()


MetadataProvider = Callable[[Optional[str]], Awaitable[CompletionMetadata]]


class CompletionProvider:
    """Suggestions for one editor language, backed by an async metadata provider"""

    trigger_characters = ('/', '?', '=', '$', '<', '"', "'", ' ', ',', '.')

    def __init__(self, language_id: str, dialect: Union[QueryDialect, str],
                 metadata_provider: MetadataProvider):
        self.language_id = language_id
        self.dialect = QueryDialect(dialect)
        self.metadata_provider = metadata_provider

    async def provide_completion_items(self, document_text: str, cursor_offset: int) -> List[CompletionItem]:
        text = document_text or ''
        cursor = max(0, min(cursor_offset, len(text)))

        keyword_items = self._odata_keyword_items(text[:cursor])
        if keyword_items is not None:
            return keyword_items

        context = parse_query_context(text, cursor, self.dialect)
        entity_name = self._entity_for(text, context)

        try:
            metadata = await self.metadata_provider(entity_name)
        except Exception as e:
            logger.error(f"Metadata provider failed for {self.language_id} completions: {e}")
            return []

        items = self._items_for(context, metadata)
        logger.debug(f"{len(items)} {self.language_id} suggestions for {context.kind.value} context")
        return items

    def _entity_for(self, text: str, context: QueryContext) -> Optional[str]:
        if context.kind is not ContextKind.ATTRIBUTE:
            return None
        if context.entity_name is None:
            return parse_entity_name(text, self.dialect)
        if self.dialect is QueryDialect.SQL:
            return resolve_table_alias(text, context.entity_name)
        return context.entity_name

    def _odata_keyword_items(self, before: str) -> Optional[List[CompletionItem]]:
        """Parameter names right after '?' or '&'; None outside that position"""
        if self.dialect is not QueryDialect.ODATA or '?' not in before:
            return None
        parameter = before.rsplit('?', 1)[-1].rsplit('&', 1)[-1]
        if '=' in parameter:
            return None
        return [
            CompletionItem(keyword, CompletionKind.KEYWORD, keyword, replace_length=len(parameter))
            for keyword in ODATA_KEYWORDS
            if keyword.startswith(parameter.lower())
        ]

    def _items_for(self, context: QueryContext, metadata: CompletionMetadata) -> List[CompletionItem]:
        prefix = context.partial_token.lower()

        if context.kind is ContextKind.ATTRIBUTE:
            return [
                CompletionItem(a.logical_name, CompletionKind.FIELD, a.logical_name,
                               detail=a.data_type, replace_length=len(context.partial_token))
                for a in metadata.attributes
                if a.logical_name.lower().startswith(prefix)
            ]

        if context.kind is ContextKind.ENTITY:
            return self._entity_items(metadata.entities, context.partial_token)

        if self.dialect is QueryDialect.SQL and prefix:
            return [
                CompletionItem(keyword, CompletionKind.KEYWORD, keyword, replace_length=len(prefix))
                for keyword in SQL_KEYWORDS
                if keyword.lower().startswith(prefix)
            ]
        if self.dialect is QueryDialect.FETCHXML:
            return self._entity_items(metadata.entities[:MAX_ENTITY_SUGGESTIONS], '')
        return []

    def _entity_items(self, entities, partial_token: str) -> List[CompletionItem]:
        prefix = partial_token.lower()
        items = []
        for entity in entities:
            if self.dialect is QueryDialect.ODATA:
                name, kind = entity.collection_name, CompletionKind.FOLDER
                detail = entity.logical_name
            else:
                name, kind = entity.logical_name, CompletionKind.CLASS
                detail = entity.display_name or entity.logical_name
            if name.lower().startswith(prefix):
                items.append(CompletionItem(name, kind, name, detail=detail, replace_length=len(partial_token)))
        return items


def register_completion_providers(registry: Any, metadata_provider: MetadataProvider) -> List[CompletionProvider]:
    """Register a provider for each of the sql, odata and xml editor languages"""
    providers = []
    for language_id, dialect in LANGUAGE_DIALECTS.items():
        provider = CompletionProvider(language_id, dialect, metadata_provider)
        registry.register_completion_item_provider(language_id, provider)
        logger.info(f"Registered {language_id} completion provider")
        providers.append(provider)
    return providers


def metadata_provider_from_cache(cache: MetadataCache) -> MetadataProvider:
    """Adapt a MetadataCache to the async provider signature"""

    async def provide(entity_name: Optional[str]) -> CompletionMetadata:
        entities = await cache.get_entities_async()
        entity = cache.cached_entity(entity_name) if entity_name else None
        attributes = entity.attributes if entity is not None else ()
        return CompletionMetadata(attributes=tuple(attributes), entities=tuple(entities))

    return provide
