import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple, Union
from urllib.parse import parse_qsl, urlsplit

from .entity_names import derive_navigation_property, looks_like_foreign_key, pluralize, singularize
from .models import ConversionResult, QueryConversionError, QueryDialect
from .query_context import extract_collection_name, mask_string_literals

logger = logging.getLogger(__name__)

ODATA_BASE_PATH = '/api/data/v9.2/'

DIALECT_LABELS = {
    QueryDialect.SQL: 'SQL',
    QueryDialect.ODATA: 'OData',
    QueryDialect.FETCHXML: 'FetchXML',
}

ODATA_TO_SQL_OPERATORS = {'eq': '=', 'ne': '!=', 'gt': '>', 'ge': '>=', 'lt': '<', 'le': '<='}
SQL_TO_ODATA_OPERATORS = {'=': 'eq', '!=': 'ne', '<>': 'ne', '>': 'gt', '>=': 'ge', '<': 'lt', '<=': 'le'}

_ODATA_CONDITION = re.compile(r'^\s*(\w+)\s+(eq|ne|gt|ge|lt|le)\s+(.+?)\s*$')
_SQL_CLAUSE = re.compile(r'\b(SELECT|FROM|WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT)\b', re.IGNORECASE)
_SQL_CLAUSE_ORDER = ['SELECT', 'FROM', 'WHERE', 'GROUP BY', 'HAVING', 'ORDER BY', 'LIMIT']
_SQL_JOIN = re.compile(r'\b(?:(?:INNER|LEFT|RIGHT|FULL|CROSS)\s+(?:OUTER\s+)?)?JOIN\b', re.IGNORECASE)
_TABLE_REFERENCE = re.compile(r'^\s*(\w+)(?:\s+(?:AS\s+)?(\w+))?\s*$', re.IGNORECASE)
_JOIN_SEGMENT = re.compile(r'^(\w+)(?:\s+(?:AS\s+)?(?!ON\b)(\w+))?\s+ON\s+(.+)$', re.IGNORECASE | re.DOTALL)
_JOIN_CONDITION = re.compile(r'^\s*\(?\s*(\w+)\.(\w+)\s*=\s*(\w+)\.(\w+)')
_SELECT_PREFIX = re.compile(r'^(?:(DISTINCT)\s+)?(?:TOP\s+(\d+)\s+)?', re.IGNORECASE)
_SELECT_ITEM = re.compile(r'^(?:(\w+)\.)?(\w+|\*)(?:\s+(?:AS\s+)?\w+)?$', re.IGNORECASE)
_ORDER_ITEM = re.compile(r'^([\w.]+)(?:\s+(ASC|DESC))?$', re.IGNORECASE)
_CONDITION_TOKEN = re.compile(
    r"\s*(?:(?P<string>'(?:[^']|'')*')"
    r"|(?P<op><>|!=|>=|<=|=|>|<)"
    r"|(?P<paren>[(),])"
    r"|(?P<word>[\w.:@$-]+)"
    r"|(?P<other>\S))"
)
_NUMBER = re.compile(r'^-?\d+(?:\.\d+)?$')
_GUID = re.compile(r'^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$')
_UNSUPPORTED_CONDITION_KEYWORDS = ('IN', 'BETWEEN', 'EXISTS', 'SELECT')


def verification_warning(source: QueryDialect, target: QueryDialect) -> str:
    return f"Automatic conversion from {DIALECT_LABELS[source]} to {DIALECT_LABELS[target]} - please verify the result"


# --- OData -----------------------------------------------------------------

class ODataCondition(NamedTuple):
    field: str
    operator: str
    value: str


@dataclass
class ODataQuery:
    """Path-dialect query split into its parts"""
    collection: str
    select: List[str] = field(default_factory=list)
    expand: Optional[str] = None
    filter: Optional[str] = None
    orderby: List[Tuple[str, bool]] = field(default_factory=list)
    top: Optional[int] = None

    def to_text(self) -> str:
        params = []
        if self.select:
            params.append(f"$select={','.join(self.select)}")
        if self.expand:
            params.append(f"$expand={self.expand}")
        if self.filter:
            params.append(f"$filter={self.filter}")
        if self.orderby:
            params.append('$orderby=' + ','.join(f"{name} desc" if desc else name for name, desc in self.orderby))
        if self.top is not None:
            params.append(f"$top={self.top}")

        text = ODATA_BASE_PATH + self.collection
        if params:
            text += '?' + '&'.join(params)
        return text


def parse_odata_query(text: str) -> ODataQuery:
    parts = urlsplit(text.strip())
    collection = extract_collection_name(parts.path)
    if not collection:
        raise QueryConversionError('No entity set found in OData path')

    params = {key.lower(): value for key, value in parse_qsl(parts.query, keep_blank_values=True)}
    query = ODataQuery(collection=collection)
    query.select = [name.strip() for name in params.get('$select', '').split(',') if name.strip()]
    query.expand = params.get('$expand') or None
    query.filter = params.get('$filter') or None
    query.orderby = parse_orderby(params.get('$orderby', ''))

    top = params.get('$top')
    if top:
        if not top.strip().isdigit():
            raise QueryConversionError(f"$top must be a number, got '{top}'")
        query.top = int(top)
    return query


def split_odata_filter(filter_text: str) -> List[str]:
    """Naive split on ' and '; parenthesised or or-joined groups are not understood"""
    return [clause.strip() for clause in filter_text.split(' and ') if clause.strip()]


def parse_odata_condition(clause: str) -> Optional[ODataCondition]:
    match = _ODATA_CONDITION.match(clause)
    if not match:
        return None
    return ODataCondition(match.group(1), match.group(2), match.group(3))


def parse_orderby(orderby: str) -> List[Tuple[str, bool]]:
    """'name desc,createdon' -> [('name', True), ('createdon', False)]"""
    entries = []
    for part in orderby.split(','):
        tokens = part.split()
        if not tokens:
            continue
        entries.append((tokens[0], len(tokens) > 1 and tokens[1].lower() == 'desc'))
    return entries


def unquote_odata_literal(value: str) -> str:
    if len(value) >= 2 and value.startswith("'") and value.endswith("'"):
        return value[1:-1].replace("''", "'")
    return value


def format_odata_literal(value: str) -> str:
    """Numbers, booleans, null and GUIDs stay bare; everything else is quoted"""
    if _NUMBER.match(value) or _GUID.match(value) or value.lower() in ('true', 'false', 'null'):
        return value
    return "'" + value.replace("'", "''") + "'"


# --- SQL -------------------------------------------------------------------

@dataclass
class TableReference:
    name: str
    alias: Optional[str] = None

    @property
    def qualifiers(self) -> set:
        names = {self.name.lower()}
        if self.alias:
            names.add(self.alias.lower())
        return names


@dataclass
class JoinClause:
    table: TableReference
    condition: str
    join_type: str = 'JOIN'


def split_sql_clauses(sql: str) -> Dict[str, str]:
    """Cut a SELECT statement into its top-level clauses.

    Keywords inside string literals are ignored; a clause keyword that appears
    twice (subqueries, unions) is rejected.
    """
    text = sql.strip().rstrip(';').strip()
    masked = mask_string_literals(text)

    found = []
    for match in _SQL_CLAUSE.finditer(masked):
        keyword = ' '.join(match.group(1).upper().split())
        if any(keyword == seen for seen, _, _ in found):
            raise QueryConversionError(f"Multiple {keyword} clauses are not supported")
        found.append((keyword, match.start(), match.end()))

    if not found or found[0][0] != 'SELECT' or found[0][1] != 0:
        raise QueryConversionError('Query must start with SELECT')
    if 'FROM' not in [keyword for keyword, _, _ in found]:
        raise QueryConversionError('Query has no FROM clause')

    order = [_SQL_CLAUSE_ORDER.index(keyword) for keyword, _, _ in found]
    if order != sorted(order):
        raise QueryConversionError('Clauses are not in SELECT/FROM/WHERE/ORDER BY/LIMIT order')

    clauses = {}
    for index, (keyword, _, end) in enumerate(found):
        stop = found[index + 1][1] if index + 1 < len(found) else len(text)
        clauses[keyword] = text[end:stop].strip()
    return clauses


def parse_table_reference(text: str) -> TableReference:
    match = _TABLE_REFERENCE.match(text)
    if not match:
        raise QueryConversionError(f"Could not parse table reference '{text.strip()}'")
    return TableReference(match.group(1), match.group(2))


def parse_from_clause(from_text: str) -> Tuple[TableReference, List[JoinClause]]:
    """FROM body -> primary table plus its JOINs"""
    masked = mask_string_literals(from_text)
    join_matches = list(_SQL_JOIN.finditer(masked))

    primary_text = from_text[:join_matches[0].start()] if join_matches else from_text
    primary = parse_table_reference(primary_text)

    joins = []
    for index, match in enumerate(join_matches):
        stop = join_matches[index + 1].start() if index + 1 < len(join_matches) else len(from_text)
        segment = from_text[match.end():stop].strip()
        segment_match = _JOIN_SEGMENT.match(segment)
        if not segment_match:
            raise QueryConversionError(f"Could not parse JOIN clause '{segment}'")
        table = TableReference(segment_match.group(1), segment_match.group(2))
        joins.append(JoinClause(table, segment_match.group(3).strip(), ' '.join(match.group(0).upper().split())))
    return primary, joins


def parse_join_condition(condition: str) -> Optional[Tuple[str, str, str, str]]:
    """'a.primarycontactid = b.contactid' -> ('a', 'primarycontactid', 'b', 'contactid')"""
    match = _JOIN_CONDITION.match(condition)
    return match.groups() if match else None


def _split_top_level(text: str, separator: str = ',') -> List[str]:
    masked = mask_string_literals(text)
    parts, depth, start = [], 0, 0
    for index, char in enumerate(masked):
        if char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
        elif char == separator and depth == 0:
            parts.append(text[start:index].strip())
            start = index + 1
    parts.append(text[start:].strip())
    return [part for part in parts if part]


def _like_to_function(field_name: str, pattern: str, warnings: List[str]) -> str:
    inner = unquote_odata_literal(pattern)
    leading, trailing = inner.startswith('%'), inner.endswith('%')
    core = inner.strip('%')
    if '%' in core or '_' in core:
        warnings.append(f"LIKE pattern {pattern} has inner wildcards that OData cannot express")
    literal = "'" + core.replace("'", "''") + "'"
    if leading and trailing:
        return f"contains({field_name},{literal})"
    if trailing:
        return f"startswith({field_name},{literal})"
    if leading:
        return f"endswith({field_name},{literal})"
    return f"{field_name} eq {literal}"


def _join_condition_pieces(pieces: List[str]) -> str:
    text = ''
    for piece in pieces:
        if not text or text.endswith('(') or piece in (')', ','):
            text += piece
        else:
            text += ' ' + piece
    return text


def convert_sql_condition(condition: str,
                          resolve_field: Optional[Callable[[str], str]] = None) -> Tuple[str, List[str]]:
    """SQL boolean expression -> OData $filter expression plus warnings"""
    resolve_field = resolve_field or (lambda name: name)
    tokens = [(m.lastgroup, m.group(m.lastgroup)) for m in _CONDITION_TOKEN.finditer(condition)
              if m.lastgroup]
    pieces: List[str] = []
    warnings: List[str] = []

    index = 0
    while index < len(tokens):
        kind, value = tokens[index]
        upper = value.upper()
        following = tokens[index + 1][1].upper() if index + 1 < len(tokens) else None

        if kind == 'string' or kind == 'paren':
            pieces.append(value)
        elif kind == 'op':
            pieces.append(SQL_TO_ODATA_OPERATORS[value])
        elif kind == 'other':
            warnings.append(f"Unrecognised token '{value}' was passed through unchanged")
            pieces.append(value)
        elif upper == 'IS':
            negate = following == 'NOT'
            index += 2 if negate else 1
            if index >= len(tokens) or tokens[index][1].upper() != 'NULL':
                raise QueryConversionError('Expected NULL after IS')
            pieces.append('ne null' if negate else 'eq null')
        elif upper == 'LIKE' or (upper == 'NOT' and following == 'LIKE'):
            negate = upper == 'NOT'
            index += 2 if negate else 1
            if not pieces or index >= len(tokens) or tokens[index][0] != 'string':
                raise QueryConversionError('LIKE needs a column and a quoted pattern')
            function = _like_to_function(pieces.pop(), tokens[index][1], warnings)
            pieces.append(f"not {function}" if negate else function)
        elif upper in ('AND', 'OR', 'NOT'):
            pieces.append(upper.lower())
        elif upper in ('NULL', 'TRUE', 'FALSE'):
            pieces.append(upper.lower())
        elif upper in _UNSUPPORTED_CONDITION_KEYWORDS:
            raise QueryConversionError(f"{upper} is not supported in WHERE conditions")
        elif _NUMBER.match(value) or _GUID.match(value):
            pieces.append(value)
        else:
            pieces.append(resolve_field(value))
        index += 1

    return _join_condition_pieces(pieces), warnings


# --- Converter -------------------------------------------------------------

class QueryConverter:
    """Converts queries between SQL, OData and FetchXML via the OData form"""

    @classmethod
    def convert(cls, source_text: str, from_dialect: Union[QueryDialect, str],
                to_dialect: Union[QueryDialect, str]) -> ConversionResult:
        try:
            source = QueryDialect(from_dialect)
            target = QueryDialect(to_dialect)
        except ValueError:
            return ConversionResult.failure(source_text, f"Conversion from {from_dialect} to {to_dialect} not supported")

        if source is target:
            return ConversionResult(succeeded=True, text=source_text)
        if not (source_text or '').strip():
            return ConversionResult(succeeded=True, text='')

        converter = cls._converters().get((source, target))
        if converter is None:
            return ConversionResult.failure(source_text, f"Conversion from {source.value} to {target.value} not supported")

        try:
            return converter(source_text)
        except QueryConversionError as e:
            logger.info(f"{DIALECT_LABELS[source]} to {DIALECT_LABELS[target]} conversion failed: {e}")
            return ConversionResult.failure(
                source_text, f"Failed to convert {DIALECT_LABELS[source]} to {DIALECT_LABELS[target]}: {e}")
        except Exception as e:
            logger.error(f"Unexpected conversion error: {e}")
            return ConversionResult.failure(source_text, f"Conversion failed: {e}")

    @classmethod
    def _converters(cls) -> Dict[Tuple[QueryDialect, QueryDialect], Callable[[str], ConversionResult]]:
        return {
            (QueryDialect.ODATA, QueryDialect.FETCHXML): cls.odata_to_fetchxml,
            (QueryDialect.ODATA, QueryDialect.SQL): cls.odata_to_sql,
            (QueryDialect.FETCHXML, QueryDialect.ODATA): cls.fetchxml_to_odata,
            (QueryDialect.SQL, QueryDialect.ODATA): cls.sql_to_odata,
            (QueryDialect.SQL, QueryDialect.FETCHXML): cls.sql_to_fetchxml,
            (QueryDialect.FETCHXML, QueryDialect.SQL): cls.fetchxml_to_sql,
        }

    @staticmethod
    def odata_to_fetchxml(odata_query: str) -> ConversionResult:
        query = parse_odata_query(odata_query)
        warnings = [verification_warning(QueryDialect.ODATA, QueryDialect.FETCHXML)]

        fetch = ET.Element('fetch', {
            'version': '1.0',
            'output-format': 'xml-platform',
            'mapping': 'logical',
            'distinct': 'false',
        })
        if query.top is not None:
            fetch.set('top', str(query.top))
        entity = ET.SubElement(fetch, 'entity', {'name': singularize(query.collection)})

        if query.select:
            for name in query.select:
                ET.SubElement(entity, 'attribute', {'name': name})
        else:
            ET.SubElement(entity, 'all-attributes')

        if query.filter:
            if ' or ' in query.filter or '(' in query.filter:
                warnings.append("Filter was split on ' and ' only; grouped or 'or' conditions may be wrong")
            conditions = []
            for clause in split_odata_filter(query.filter):
                condition = parse_odata_condition(clause)
                if condition is None:
                    warnings.append(f"Filter clause '{clause}' could not be converted and was dropped")
                    continue
                conditions.append(condition)
            if conditions:
                filter_element = ET.SubElement(entity, 'filter', {'type': 'and'})
                for condition in conditions:
                    ET.SubElement(filter_element, 'condition', {
                        'attribute': condition.field,
                        'operator': condition.operator,
                        'value': unquote_odata_literal(condition.value),
                    })

        for name, descending in query.orderby:
            ET.SubElement(entity, 'order', {'attribute': name, 'descending': 'true' if descending else 'false'})

        if query.expand:
            warnings.append('$expand is not converted to link-entity elements')

        ET.indent(fetch, space='  ')
        return ConversionResult.ok(ET.tostring(fetch, encoding='unicode'), warnings)

    @staticmethod
    def odata_to_sql(odata_query: str) -> ConversionResult:
        query = parse_odata_query(odata_query)
        warnings = [verification_warning(QueryDialect.ODATA, QueryDialect.SQL)]

        sql = f"SELECT {', '.join(query.select) or '*'} FROM {singularize(query.collection)}"

        if query.filter:
            predicates = []
            for clause in split_odata_filter(query.filter):
                condition = parse_odata_condition(clause)
                if condition is None:
                    warnings.append(f"Filter clause '{clause}' could not be converted and was dropped")
                    continue
                if condition.value == 'null' and condition.operator in ('eq', 'ne'):
                    predicates.append(f"{condition.field} IS {'NOT ' if condition.operator == 'ne' else ''}NULL")
                else:
                    predicates.append(f"{condition.field} {ODATA_TO_SQL_OPERATORS[condition.operator]} {condition.value}")
            if predicates:
                sql += ' WHERE ' + ' AND '.join(predicates)

        if query.orderby:
            sql += ' ORDER BY ' + ', '.join(f"{name} DESC" if desc else name for name, desc in query.orderby)
        if query.top is not None:
            sql += f" LIMIT {query.top}"
        if query.expand:
            warnings.append('$expand has no SQL equivalent here and was dropped')

        return ConversionResult.ok(sql, warnings)

    @staticmethod
    def fetchxml_to_odata(fetchxml_query: str) -> ConversionResult:
        try:
            root = ET.fromstring(fetchxml_query.strip())
        except ET.ParseError as e:
            raise QueryConversionError(f"Invalid XML format: {e}") from e

        entities = [root] if root.tag == 'entity' else root.findall('.//entity')
        if not entities:
            raise QueryConversionError('No entity element found in FetchXML')
        if len(entities) > 1:
            raise QueryConversionError('FetchXML must contain exactly one entity element')
        entity = entities[0]
        entity_name = entity.get('name')
        if not entity_name:
            raise QueryConversionError('Entity name not specified')

        warnings = [verification_warning(QueryDialect.FETCHXML, QueryDialect.ODATA)]
        query = ODataQuery(collection=pluralize(entity_name))

        if entity.find('all-attributes') is None:
            query.select = [a.get('name') for a in entity.findall('attribute') if a.get('name')]

        expands = []
        for link in entity.findall('link-entity'):
            segment, link_warnings = _link_entity_to_expand(link, entity_name)
            expands.append(segment)
            warnings.extend(link_warnings)
        query.expand = ','.join(expands) or None

        filter_parts = []
        for filter_element in entity.findall('filter'):
            if any((f.get('type') or 'and').lower() == 'or' for f in filter_element.iter('filter')):
                warnings.append("An 'or' filter was flattened into 'and' conditions")
            for condition in filter_element.iter('condition'):
                part = _condition_to_odata(condition, warnings)
                if part:
                    filter_parts.append(part)
        query.filter = ' and '.join(filter_parts) or None

        for order in entity.findall('order'):
            attribute = order.get('attribute')
            if attribute:
                query.orderby.append((attribute, (order.get('descending') or '').lower() == 'true'))

        top = root.get('top') or root.get('count')
        if top and top.isdigit():
            query.top = int(top)

        return ConversionResult.ok(query.to_text(), warnings)

    @staticmethod
    def sql_to_odata(sql_query: str) -> ConversionResult:
        clauses = split_sql_clauses(sql_query)
        warnings = [verification_warning(QueryDialect.SQL, QueryDialect.ODATA)]

        primary, joins = parse_from_clause(clauses['FROM'])
        query = ODataQuery(collection=pluralize(primary.name))

        select_text = clauses['SELECT']
        prefix = _SELECT_PREFIX.match(select_text)
        if prefix.group(1):
            warnings.append('DISTINCT has no OData equivalent and was ignored')
        if prefix.group(2):
            query.top = int(prefix.group(2))
        select_text = select_text[prefix.end():]

        # Navigation property per join, keyed by every qualifier of the joined table
        navigation: Dict[str, str] = {}
        expand_targets = []
        for join in joins:
            target, join_warnings = _navigation_for_join(join, primary)
            warnings.extend(join_warnings)
            expand_targets.append(target)
            for qualifier in join.table.qualifiers:
                navigation[qualifier] = target

        primary_fields: List[str] = []
        join_fields: Dict[str, List[str]] = {target: [] for target in expand_targets}
        for item in _split_top_level(select_text):
            match = _SELECT_ITEM.match(item)
            if not match:
                warnings.append(f"Expression '{item}' in SELECT is not supported and was skipped")
                continue
            qualifier, name = match.group(1), match.group(2)
            if qualifier is None or qualifier.lower() in primary.qualifiers:
                if name != '*':
                    primary_fields.append(name)
            elif qualifier.lower() in navigation:
                if name != '*':
                    join_fields[navigation[qualifier.lower()]].append(name)
            else:
                warnings.append(f"Unknown table qualifier '{qualifier}' in SELECT; '{name}' was kept on {primary.name}")
                primary_fields.append(name)
        query.select = primary_fields

        segments = []
        for target in expand_targets:
            fields = join_fields[target]
            segments.append(f"{target}($select={','.join(fields)})" if fields else target)
        query.expand = ','.join(segments) or None

        def resolve_field(name: str) -> str:
            if '.' not in name:
                return name
            qualifier, column = name.split('.', 1)
            if qualifier.lower() in primary.qualifiers:
                return column
            if qualifier.lower() in navigation:
                return f"{navigation[qualifier.lower()]}/{column}"
            warnings.append(f"Unknown table qualifier '{qualifier}' in '{name}'")
            return column

        if clauses.get('WHERE'):
            query.filter, condition_warnings = convert_sql_condition(clauses['WHERE'], resolve_field)
            warnings.extend(condition_warnings)

        for keyword in ('GROUP BY', 'HAVING'):
            if keyword in clauses:
                warnings.append(f"{keyword} is not supported and was ignored")

        for item in _split_top_level(clauses.get('ORDER BY', '')):
            match = _ORDER_ITEM.match(item)
            if not match:
                warnings.append(f"ORDER BY entry '{item}' could not be converted and was dropped")
                continue
            query.orderby.append((resolve_field(match.group(1)), (match.group(2) or '').upper() == 'DESC'))

        if 'LIMIT' in clauses:
            limit = clauses['LIMIT']
            if not limit.isdigit():
                raise QueryConversionError(f"LIMIT must be a number, got '{limit}'")
            query.top = int(limit)

        return ConversionResult.ok(query.to_text(), warnings)

    @classmethod
    def sql_to_fetchxml(cls, sql_query: str) -> ConversionResult:
        return cls._chain(sql_query, cls.sql_to_odata, cls.odata_to_fetchxml)

    @classmethod
    def fetchxml_to_sql(cls, fetchxml_query: str) -> ConversionResult:
        return cls._chain(fetchxml_query, cls.fetchxml_to_odata, cls.odata_to_sql)

    @staticmethod
    def _chain(text: str, first: Callable[[str], ConversionResult],
               second: Callable[[str], ConversionResult]) -> ConversionResult:
        intermediate = first(text)
        if not intermediate.succeeded:
            return intermediate
        final = second(intermediate.text)
        if not final.succeeded:
            return final
        return ConversionResult.ok(final.text, intermediate.warnings + final.warnings)


def _navigation_for_join(join: JoinClause, primary: TableReference) -> Tuple[str, List[str]]:
    """Pick the $expand target for a JOIN from its ON condition"""
    parsed = parse_join_condition(join.condition)
    primary_field = None
    if parsed:
        left_qualifier, left_field, right_qualifier, right_field = parsed
        if left_qualifier.lower() in primary.qualifiers:
            primary_field = left_field
        elif right_qualifier.lower() in primary.qualifiers:
            primary_field = right_field

    if primary_field and looks_like_foreign_key(primary_field, primary.name):
        navigation = derive_navigation_property(primary_field)
        return navigation, [
            f"Navigation property '{navigation}' was derived from '{primary_field}' - "
            f"verify it matches the relationship name"
        ]

    collection = pluralize(join.table.name)
    return collection, [
        f"JOIN on {join.table.name} looks like a reverse lookup; "
        f"expanding '{collection}' may need manual adjustment"
    ]


def _link_entity_to_expand(link: ET.Element, parent_name: str) -> Tuple[str, List[str]]:
    link_name = link.get('name') or ''
    lookup = link.get('to') or ''
    attributes = [a.get('name') for a in link.findall('attribute') if a.get('name')]

    if lookup and looks_like_foreign_key(lookup, parent_name):
        target = derive_navigation_property(lookup)
        warnings = [f"Navigation property '{target}' was derived from link-entity attribute '{lookup}' - "
                    f"verify it matches the relationship name"]
    else:
        target = pluralize(link_name)
        warnings = [f"link-entity {link_name} looks like a reverse lookup; "
                    f"expanding '{target}' may need manual adjustment"]

    if link.find('filter') is not None:
        warnings.append(f"Filters inside link-entity {link_name} were not converted")
    segment = f"{target}($select={','.join(attributes)})" if attributes else target
    return segment, warnings


def _condition_to_odata(condition: ET.Element, warnings: List[str]) -> Optional[str]:
    attribute = condition.get('attribute')
    operator = condition.get('operator')
    value = condition.get('value')
    if not attribute or not operator:
        warnings.append('A condition without attribute or operator was skipped')
        return None

    if value is None:
        if operator == 'null':
            return f"{attribute} eq null"
        if operator == 'not-null':
            return f"{attribute} ne null"
        warnings.append(f"Condition on {attribute} with operator '{operator}' has no value and was skipped")
        return None

    # Operator names pass through unchanged
    return f"{attribute} {operator} {format_odata_literal(value)}"


convert = QueryConverter.convert
