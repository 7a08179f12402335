"""Tests for editor completion providers."""

import asyncio
import time

import pytest

from flowquery.intellisense import (
    MAX_ENTITY_SUGGESTIONS,
    CompletionKind,
    CompletionMetadata,
    CompletionProvider,
    metadata_provider_from_cache,
    register_completion_providers,
)
from flowquery.metadata import MetadataCache
from flowquery.models import AttributeMetadata, EntityMetadata, QueryDialect

ENTITIES = (
    EntityMetadata("account", "accounts", "Account", (
        AttributeMetadata("name", "Account Name", "String"),
        AttributeMetadata("numberofemployees", "Employees", "Integer"),
        AttributeMetadata("primarycontactid", "Primary Contact", "Lookup"),
    )),
    EntityMetadata("contact", "contacts", "Contact", (
        AttributeMetadata("fullname", "Full Name", "String"),
    )),
)


class FakeRegistry:
    def __init__(self):
        self.registered = {}

    def register_completion_item_provider(self, language_id, provider):
        self.registered[language_id] = provider


class RecordingProvider:
    """Async metadata provider that remembers which entity was requested"""

    def __init__(self, entities=ENTITIES):
        self.entities = entities
        self.requested = []

    async def __call__(self, entity_name):
        self.requested.append(entity_name)
        entity = next((e for e in self.entities
                       if entity_name in (e.logical_name, e.collection_name)), None)
        return CompletionMetadata(attributes=entity.attributes if entity else (), entities=self.entities)


@pytest.fixture
def metadata_provider():
    return RecordingProvider()


def _labels(items):
    return [item.label for item in items]


class TestRegistration:
    def test_registers_three_languages(self, metadata_provider):
        registry = FakeRegistry()
        providers = register_completion_providers(registry, metadata_provider)
        assert set(registry.registered) == {"sql", "odata", "xml"}
        assert registry.registered["xml"].dialect is QueryDialect.FETCHXML
        assert len(providers) == 3


class TestSqlCompletions:
    @pytest.mark.asyncio
    async def test_attributes_after_select(self, metadata_provider):
        provider = CompletionProvider("sql", "sql", metadata_provider)
        items = await provider.provide_completion_items("SELECT na FROM account", 9)
        assert _labels(items) == ["name"]
        assert items[0].kind is CompletionKind.FIELD
        assert items[0].replace_length == 2
        assert metadata_provider.requested == ["account"]

    @pytest.mark.asyncio
    async def test_alias_resolves_to_table(self, metadata_provider):
        provider = CompletionProvider("sql", "sql", metadata_provider)
        text = "SELECT c.full FROM contact c"
        items = await provider.provide_completion_items(text, 13)
        assert _labels(items) == ["fullname"]
        assert metadata_provider.requested == ["contact"]

    @pytest.mark.asyncio
    async def test_entities_after_from(self, metadata_provider):
        provider = CompletionProvider("sql", "sql", metadata_provider)
        items = await provider.provide_completion_items("SELECT name FROM acc", 20)
        assert _labels(items) == ["account"]
        assert items[0].kind is CompletionKind.CLASS
        assert metadata_provider.requested == [None]

    @pytest.mark.asyncio
    async def test_keywords_without_context(self, metadata_provider):
        provider = CompletionProvider("sql", "sql", metadata_provider)
        items = await provider.provide_completion_items("SEL", 3)
        assert _labels(items) == ["SELECT"]
        assert items[0].kind is CompletionKind.KEYWORD

    @pytest.mark.asyncio
    async def test_provider_failure_gives_no_items(self, caplog):
        async def failing(entity_name):
            raise RuntimeError("metadata service unavailable")

        provider = CompletionProvider("sql", "sql", failing)
        items = await provider.provide_completion_items("SELECT na FROM account", 9)
        assert items == []
        assert "metadata service unavailable" in caplog.text


class TestODataCompletions:
    @pytest.mark.asyncio
    async def test_keywords_after_question_mark(self, metadata_provider):
        provider = CompletionProvider("odata", "odata", metadata_provider)
        text = "/api/data/v9.2/accounts?"
        items = await provider.provide_completion_items(text, len(text))
        assert "$select=" in _labels(items)
        assert all(item.kind is CompletionKind.KEYWORD for item in items)
        assert metadata_provider.requested == []

    @pytest.mark.asyncio
    async def test_keyword_prefix_after_ampersand(self, metadata_provider):
        provider = CompletionProvider("odata", "odata", metadata_provider)
        text = "/api/data/v9.2/accounts?$top=1&$fi"
        items = await provider.provide_completion_items(text, len(text))
        assert _labels(items) == ["$filter="]
        assert items[0].replace_length == 3

    @pytest.mark.asyncio
    async def test_collections_in_path(self, metadata_provider):
        provider = CompletionProvider("odata", "odata", metadata_provider)
        text = "/api/data/v9.2/con"
        items = await provider.provide_completion_items(text, len(text))
        assert _labels(items) == ["contacts"]
        assert items[0].kind is CompletionKind.FOLDER

    @pytest.mark.asyncio
    async def test_select_attributes(self, metadata_provider):
        provider = CompletionProvider("odata", "odata", metadata_provider)
        text = "/api/data/v9.2/accounts?$select=name,num"
        items = await provider.provide_completion_items(text, len(text))
        assert _labels(items) == ["numberofemployees"]
        assert metadata_provider.requested == ["accounts"]


class TestFetchXmlCompletions:
    @pytest.mark.asyncio
    async def test_attribute_names(self, metadata_provider):
        provider = CompletionProvider("xml", "fetchxml", metadata_provider)
        text = '<fetch><entity name="contact"><attribute name="f'
        items = await provider.provide_completion_items(text, len(text))
        assert _labels(items) == ["fullname"]

    @pytest.mark.asyncio
    async def test_entities_offered_when_no_context(self):
        many = tuple(EntityMetadata(f"entity{i}", f"entity{i}s") for i in range(MAX_ENTITY_SUGGESTIONS + 10))
        provider = CompletionProvider("xml", "fetchxml", RecordingProvider(many))
        items = await provider.provide_completion_items("<fetch>", 7)
        assert len(items) == MAX_ENTITY_SUGGESTIONS


class TestCacheAdapter:
    @pytest.mark.asyncio
    async def test_attributes_from_cache(self):
        cache = MetadataCache(lambda: list(ENTITIES))
        provide = metadata_provider_from_cache(cache)

        metadata = await provide("accounts")
        assert [a.logical_name for a in metadata.attributes][0] == "name"
        assert len(metadata.entities) == 2

        metadata = await provide(None)
        assert metadata.attributes == ()

    @pytest.mark.asyncio
    async def test_slow_fetch_keeps_event_loop_running(self):
        def slow_fetch():
            time.sleep(0.3)
            return list(ENTITIES)

        provide = metadata_provider_from_cache(MetadataCache(slow_fetch))
        ticks = []

        async def ticker():
            loop = asyncio.get_running_loop()
            for _ in range(8):
                ticks.append(loop.time())
                await asyncio.sleep(0.05)

        metadata, _ = await asyncio.gather(provide("account"), ticker())
        assert len(metadata.entities) == 2
        assert max(later - earlier for earlier, later in zip(ticks, ticks[1:])) < 0.2
