import logging
import re
from typing import List, Optional, Union

from .models import ContextKind, QueryContext, QueryDialect

logger = logging.getLogger(__name__)

SQL_KEYWORDS = [
    'SELECT', 'FROM', 'WHERE', 'JOIN', 'INNER', 'LEFT', 'RIGHT', 'OUTER',
    'ORDER', 'BY', 'GROUP', 'HAVING', 'AND', 'OR', 'NOT', 'IN', 'LIKE',
    'BETWEEN', 'IS', 'NULL', 'AS', 'ON', 'DISTINCT', 'COUNT', 'SUM', 'AVG',
    'MIN', 'MAX', 'TOP', 'ASC', 'DESC', 'LIMIT',
]

ENTITY_KEYWORDS = ('FROM', 'JOIN')
ATTRIBUTE_KEYWORDS = ('SELECT', 'WHERE', 'ORDER BY', 'GROUP BY')

# Keywords that end a FROM/JOIN table reference
TERMINATING_KEYWORDS = ('ON', 'WHERE', 'ORDER', 'GROUP', 'HAVING', 'LIMIT', 'SELECT',
                        'AND', 'OR', 'UNION', 'SET')

ODATA_ATTRIBUTE_PARAMETERS = ('$select', '$filter', '$orderby')

_SCAN_PATTERN = re.compile(r'\b(FROM|JOIN|SELECT|WHERE|ORDER\s+BY|GROUP\s+BY)\b', re.IGNORECASE)
_TERMINATOR_PATTERN = re.compile(r'\b(' + '|'.join(TERMINATING_KEYWORDS) + r')\b', re.IGNORECASE)
_QUALIFIED_NAME_PATTERN = re.compile(r'(?<!\w)([A-Za-z_]\w*)\.(\w*)$')
_FROM_TABLE_PATTERN = re.compile(r'\bFROM\s+(\w+)', re.IGNORECASE)
_TABLE_REFERENCE_PATTERN = re.compile(r'\b(?:FROM|JOIN)\s+(\w+)(?:\s+(?:AS\s+)?(\w+))?', re.IGNORECASE)
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'?")
_VERSION_SEGMENT_PATTERN = re.compile(r'^v\d+\.\d+$', re.IGNORECASE)

_FETCH_ENTITY_NAME = re.compile(r'<(?:link-)?entity\b[^>]*?\sname\s*=\s*["\']([^"\']*)$')
_FETCH_ATTRIBUTE_CONTEXTS = [
    ('attribute', re.compile(r'<attribute\b[^>]*?\sname\s*=\s*["\']([^"\']*)$')),
    ('order', re.compile(r'<order\b[^>]*?\sattribute\s*=\s*["\']([^"\']*)$')),
    ('condition', re.compile(r'<condition\b[^>]*?\sattribute\s*=\s*["\']([^"\']*)$')),
]
_FETCH_ENTITY_TAG = re.compile(r'<(/?)(link-entity|entity)\b([^>]*?)(/?)>')
_FETCH_NAME_ATTRIBUTE = re.compile(r'\sname\s*=\s*["\']([^"\']+)["\']')


def mask_string_literals(text: str) -> str:
    """Blank out the contents of '...' literals, keeping every offset intact"""
    return _STRING_LITERAL_PATTERN.sub(lambda m: "'" + ' ' * (len(m.group(0)) - 1), text)


def extract_collection_name(path: str) -> str:
    """Trailing path segment of an OData URL, without key predicate"""
    path = path.split('?', 1)[0].rstrip('/')
    segment = path.rsplit('/', 1)[-1]
    return segment.split('(', 1)[0]


def parse_query_context(text: str, cursor_offset: int,
                        dialect: Union[QueryDialect, str] = QueryDialect.SQL) -> QueryContext:
    """Classify the identifier under the cursor as entity, attribute or none"""
    text = text or ''
    cursor = max(0, min(cursor_offset, len(text)))
    dialect = QueryDialect(dialect)

    if dialect is QueryDialect.ODATA:
        return _parse_odata_context(text, cursor)
    if dialect is QueryDialect.FETCHXML:
        return _parse_fetchxml_context(text, cursor)
    return _parse_sql_context(text, cursor)


def _current_word(before: str) -> str:
    match = re.search(r'(\w+)$', before)
    return match.group(1) if match else ''


def _parse_sql_context(text: str, cursor: int) -> QueryContext:
    before = text[:cursor]
    current_word = _current_word(before)
    masked = mask_string_literals(text)
    masked_before = masked[:cursor]

    # Check if we're after a dot (alias.attribute); numeric literals such as 1.5 don't count
    dot_match = _QUALIFIED_NAME_PATTERN.search(masked_before)
    if dot_match:
        return QueryContext(
            kind=ContextKind.ATTRIBUTE,
            entity_name=dot_match.group(1),
            partial_token=dot_match.group(2),
            cursor_offset=cursor,
            keyword='.',
        )

    statement_start = masked.rfind(';', 0, cursor) + 1
    statement_end = masked.find(';', cursor)
    if statement_end == -1:
        statement_end = len(masked)

    keywords = list(_SCAN_PATTERN.finditer(masked_before, statement_start))
    if not keywords:
        return QueryContext(kind=ContextKind.NONE, partial_token=current_word, cursor_offset=cursor)

    nearest = keywords[-1]
    keyword = ' '.join(nearest.group(1).upper().split())

    if keyword in ENTITY_KEYWORDS:
        after_keyword = masked_before[nearest.end():]
        # Words already completed after the keyword (the one being typed excluded)
        completed = after_keyword[:len(after_keyword) - len(current_word)].split()
        if not _TERMINATOR_PATTERN.search(after_keyword) and len(completed) < 2:
            return QueryContext(
                kind=ContextKind.ENTITY,
                partial_token=current_word,
                cursor_offset=cursor,
                keyword=keyword,
            )
        return QueryContext(kind=ContextKind.NONE, partial_token=current_word,
                            cursor_offset=cursor, keyword=keyword)

    # Attribute keyword: the FROM clause of this statement names the table
    from_match = _FROM_TABLE_PATTERN.search(masked, statement_start, statement_end)
    if from_match and not (from_match.start(1) <= cursor <= from_match.end(1)):
        return QueryContext(
            kind=ContextKind.ATTRIBUTE,
            entity_name=text[from_match.start(1):from_match.end(1)],
            partial_token=current_word,
            cursor_offset=cursor,
            keyword=keyword,
        )

    logger.debug(f"No FROM clause yet for {keyword} context at offset {cursor}")
    return QueryContext(kind=ContextKind.NONE, partial_token=current_word,
                        cursor_offset=cursor, keyword=keyword)


def _parse_odata_context(text: str, cursor: int) -> QueryContext:
    before = text[:cursor]
    path_before, separator, query_before = before.partition('?')
    full_path = text.split('?', 1)[0]

    if not separator:
        segment = path_before.rsplit('/', 1)[-1]
        # Only the last path segment names the collection
        if path_before.count('/') == full_path.count('/'):
            return QueryContext(kind=ContextKind.ENTITY, partial_token=segment,
                                cursor_offset=cursor, keyword='path')
        return QueryContext(kind=ContextKind.NONE, partial_token=segment, cursor_offset=cursor)

    parameter = query_before.rsplit('&', 1)[-1]
    key, equals, value = parameter.partition('=')
    if not equals:
        return QueryContext(kind=ContextKind.NONE, partial_token=key, cursor_offset=cursor)

    key = key.strip().lower()
    current_word = _current_word(value)
    if key not in ODATA_ATTRIBUTE_PARAMETERS:
        return QueryContext(kind=ContextKind.NONE, partial_token=current_word,
                            cursor_offset=cursor, keyword=key)

    # Inside a quoted filter literal there is nothing to complete
    if key == '$filter' and value.count("'") % 2 == 1:
        return QueryContext(kind=ContextKind.NONE, partial_token=current_word,
                            cursor_offset=cursor, keyword=key)

    collection = extract_collection_name(full_path)
    return QueryContext(
        kind=ContextKind.ATTRIBUTE,
        entity_name=collection or None,
        partial_token=current_word,
        cursor_offset=cursor,
        keyword=key,
    )


def _enclosing_fetch_entity(before: str) -> Optional[str]:
    """Name of the innermost entity/link-entity still open at the cursor"""
    stack: List[str] = []
    for match in _FETCH_ENTITY_TAG.finditer(before):
        closing, _, attributes, self_closing = match.groups()
        if closing:
            if stack:
                stack.pop()
            continue
        if self_closing:
            continue
        name_match = _FETCH_NAME_ATTRIBUTE.search(' ' + attributes)
        stack.append(name_match.group(1) if name_match else '')
    return stack[-1] if stack and stack[-1] else None


def _parse_fetchxml_context(text: str, cursor: int) -> QueryContext:
    before = text[:cursor]

    entity_match = _FETCH_ENTITY_NAME.search(before)
    if entity_match:
        return QueryContext(kind=ContextKind.ENTITY, partial_token=entity_match.group(1),
                            cursor_offset=cursor, keyword='entity')

    for tag, pattern in _FETCH_ATTRIBUTE_CONTEXTS:
        match = pattern.search(before)
        if match:
            return QueryContext(
                kind=ContextKind.ATTRIBUTE,
                entity_name=_enclosing_fetch_entity(before),
                partial_token=match.group(1),
                cursor_offset=cursor,
                keyword=tag,
            )

    return QueryContext(kind=ContextKind.NONE, partial_token=_current_word(before), cursor_offset=cursor)


def parse_entity_name(query: str, dialect: Union[QueryDialect, str]) -> Optional[str]:
    """Entity the whole query is about, or None while it is still being typed"""
    if not query:
        return None
    dialect = QueryDialect(dialect)

    if dialect is QueryDialect.SQL:
        match = re.search(r'\bfrom\s+([a-zA-Z0-9_]+)', mask_string_literals(query), re.IGNORECASE)
        # Short names are most likely still being typed
        if match and len(match.group(1)) >= 3:
            return query[match.start(1):match.end(1)]
        return None

    if dialect is QueryDialect.ODATA:
        segments = [s for s in query.split('?', 1)[0].split('/') if s]
        version_index = next((i for i, s in enumerate(segments) if _VERSION_SEGMENT_PATTERN.match(s)), -1)
        if version_index == -1:
            return segments[-1].split('(', 1)[0] if segments else None
        if version_index == len(segments) - 1:
            return None
        return segments[version_index + 1].split('(', 1)[0]

    match = re.search(r'<entity[^>]*\sname=["\']([^"\']+)["\']', query, re.IGNORECASE)
    if match and len(match.group(1)) >= 3:
        return match.group(1)
    return None


def extract_entity_from_query(query: str) -> Optional[str]:
    """Table named by the first FROM clause of a SQL query"""
    match = _FROM_TABLE_PATTERN.search(mask_string_literals(query or ''))
    return query[match.start(1):match.end(1)] if match else None


def resolve_table_alias(query: str, name: str) -> str:
    """Map a SQL alias back to its table; unknown names come back unchanged"""
    for match in _TABLE_REFERENCE_PATTERN.finditer(mask_string_literals(query or '')):
        table, alias = match.group(1), match.group(2)
        if alias and alias.upper() not in SQL_KEYWORDS and alias.lower() == name.lower():
            return table
        if table.lower() == name.lower():
            return table
    return name


def is_valid_sql_keyword(word: str) -> bool:
    return word.upper() in SQL_KEYWORDS
