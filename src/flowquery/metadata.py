import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .entity_names import pluralize
from .models import AttributeMetadata, EntityMetadata

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300


class MetadataCache:
    """Entity metadata held for a fixed time-to-live.

    ``fetch_metadata`` is called lazily on first use and again once the entry
    is older than ``ttl_seconds``. It may return ``{"entities": [...]}``, an
    OData ``{"value": [...]}`` payload or a plain list of EntityDefinitions
    records (dicts or ``EntityMetadata`` instances). A coroutine supplier can
    only be used through the ``*_async`` accessors.
    """

    def __init__(self, fetch_metadata: Callable[[], Any], ttl_seconds: float = CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.fetch_metadata = fetch_metadata
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entities: Optional[Tuple[EntityMetadata, ...]] = None
        self._by_name: Dict[str, EntityMetadata] = {}
        self._loaded_at: Optional[float] = None

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self.clock() - self._loaded_at >= self.ttl_seconds

    def invalidate(self):
        self._entities = None
        self._by_name = {}
        self._loaded_at = None

    def refresh(self) -> Tuple[EntityMetadata, ...]:
        return self._load(self.fetch_metadata())

    async def refresh_async(self) -> Tuple[EntityMetadata, ...]:
        """Fetch off the event loop; coroutine suppliers are awaited directly"""
        if inspect.iscoroutinefunction(self.fetch_metadata):
            payload = await self.fetch_metadata()
        else:
            payload = await asyncio.to_thread(self.fetch_metadata)
        if inspect.isawaitable(payload):
            payload = await payload
        return self._load(payload)

    def _load(self, payload: Any) -> Tuple[EntityMetadata, ...]:
        entities = tuple(self._coerce(record) for record in self._records(payload))
        self._entities = entities
        self._by_name = {e.logical_name.lower(): e for e in entities if e.logical_name}
        self._loaded_at = self.clock()
        logger.debug(f"Loaded metadata for {len(entities)} entities")
        return entities

    def get_entities(self) -> Tuple[EntityMetadata, ...]:
        if self._entities is None or self.is_stale():
            return self.refresh()
        return self._entities

    async def get_entities_async(self) -> Tuple[EntityMetadata, ...]:
        if self._entities is None or self.is_stale():
            return await self.refresh_async()
        return self._entities

    @staticmethod
    def _records(payload: Any) -> List[Any]:
        if payload is None:
            return []
        if isinstance(payload, dict):
            return list(payload.get('entities') or payload.get('value') or [])
        return list(payload)

    @staticmethod
    def _coerce(record: Any) -> EntityMetadata:
        if isinstance(record, EntityMetadata):
            return record
        return EntityMetadata.from_dataverse(record)

    def get_entity_by_name(self, logical_name: str) -> Optional[EntityMetadata]:
        if not logical_name:
            return None
        self.get_entities()
        return self._by_name.get(logical_name.lower())

    def get_entity_by_collection_name(self, collection_name: str) -> Optional[EntityMetadata]:
        if not collection_name:
            return None
        lowered = collection_name.lower()
        return next((e for e in self.get_entities() if e.collection_name.lower() == lowered), None)

    def find_entity(self, name: str) -> Optional[EntityMetadata]:
        """Look up by logical name, then by collection name"""
        return self.get_entity_by_name(name) or self.get_entity_by_collection_name(name)

    def cached_entity(self, name: str) -> Optional[EntityMetadata]:
        """find_entity against what is already loaded, without fetching"""
        if not name:
            return None
        lowered = name.lower()
        return self._by_name.get(lowered) or next(
            (e for e in self._entities or () if e.collection_name.lower() == lowered), None)

    def search_entities(self, search_term: str) -> List[EntityMetadata]:
        term = (search_term or '').lower()
        return [
            e for e in self.get_entities()
            if term in e.logical_name.lower() or term in e.display_name.lower()
        ]

    def search_attributes(self, entity_name: str, search_term: str) -> List[AttributeMetadata]:
        entity = self.find_entity(entity_name)
        if entity is None:
            return []
        term = (search_term or '').lower()
        return [
            a for a in entity.attributes
            if term in a.logical_name.lower() or term in a.display_name.lower()
        ]

    def get_entity_collection_name(self, logical_name: str) -> str:
        """Entity-set name from metadata, pluralized guess otherwise"""
        entity = self.get_entity_by_name(logical_name)
        if entity is not None:
            return entity.collection_name
        return pluralize(logical_name)
