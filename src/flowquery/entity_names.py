"""Entity-set naming heuristics.

Dataverse exposes each table under a plural entity-set name in the Web API
(``account`` -> ``accounts``). Without metadata the plural has to be guessed:
a small exception table is consulted first and the regular English suffix
rules run afterwards. Irregular nouns that are not listed come out wrong;
callers that have metadata should prefer
``MetadataCache.get_entity_collection_name``.
"""

PLURAL_EXCEPTIONS = {
    'account': 'accounts',
    'contact': 'contacts',
    'lead': 'leads',
    'opportunity': 'opportunities',
    'systemuser': 'systemusers',
    'team': 'teams',
    'businessunit': 'businessunits',
    'activityparty': 'activityparties',
    'activitypointer': 'activitypointers',
    'queueitem': 'queueitems',
    'principalobjectattributeaccess': 'principalobjectattributeaccessset',
}

SINGULAR_EXCEPTIONS = {plural: singular for singular, plural in PLURAL_EXCEPTIONS.items()}

_SIBILANT_SUFFIXES = ('s', 'x', 'z', 'ch', 'sh')
_VOWELS = 'aeiou'


def pluralize(word: str) -> str:
    """Singular logical name -> plural collection name"""
    if not word:
        return word

    lowered = word.lower()
    if lowered in PLURAL_EXCEPTIONS:
        return PLURAL_EXCEPTIONS[lowered]

    if lowered.endswith('y') and len(lowered) > 1 and lowered[-2] not in _VOWELS:
        return word[:-1] + 'ies'
    if lowered.endswith(_SIBILANT_SUFFIXES):
        return word + 'es'
    return word + 's'


def singularize(word: str) -> str:
    """Plural collection name -> singular logical name"""
    if not word:
        return word

    lowered = word.lower()
    if lowered in SINGULAR_EXCEPTIONS:
        return SINGULAR_EXCEPTIONS[lowered]

    if lowered.endswith('ies') and len(lowered) > 3:
        return word[:-3] + 'y'
    if lowered.endswith(tuple(suffix + 'es' for suffix in ('ss', 'x', 'z', 'ch', 'sh'))):
        return word[:-2]
    if lowered.endswith('s') and not lowered.endswith('ss'):
        return word[:-1]
    return word


def derive_navigation_property(field_name: str) -> str:
    """Guess the single-valued navigation property behind a lookup column.

    ``primarycontactid`` -> ``primarycontact``; the Web API form
    ``_parentcustomerid_value`` is accepted too.
    """
    name = field_name
    if name.startswith('_') and name.lower().endswith('_value'):
        name = name[1:-len('_value')]
    if name.lower().endswith('id') and len(name) > 2:
        name = name[:-2]
    return name


def looks_like_foreign_key(field_name: str, table_name: str) -> bool:
    """True for lookup-shaped columns that are not the table's own primary key"""
    lowered = field_name.lower()
    if lowered.startswith('_') and lowered.endswith('_value'):
        return True
    return lowered.endswith('id') and len(lowered) > 2 and lowered != f"{table_name.lower()}id"
