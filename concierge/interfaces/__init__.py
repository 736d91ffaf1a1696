# interfaces/__init__.py
"""
Collaborator interfaces and stores

- kv_store: shared key-value store (Redis / in-memory)
- session_store: conversation context persistence and turn locks
- quota_manager: per-tier daily quotas
- catalog_store: relational catalog reads (MySQL / in-memory)
- search_index: full-text search index client
- availability_provider: external availability lookups
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from concierge.interfaces.kv_store import KeyValueStore, RedisKeyValueStore, MemoryKeyValueStore
    from concierge.interfaces.session_store import SessionStore
    from concierge.interfaces.quota_manager import QuotaManager
    from concierge.interfaces.catalog_store import CatalogStore, MySQLCatalogStore, MemoryCatalogStore
    from concierge.interfaces.search_index import SearchIndex, OpenSearchIndex, SearchParams
    from concierge.interfaces.availability_provider import AvailabilityProvider, HttpAvailabilityProvider

__all__ = [
    "KeyValueStore", "RedisKeyValueStore", "MemoryKeyValueStore",
    "SessionStore",
    "QuotaManager",
    "CatalogStore", "MySQLCatalogStore", "MemoryCatalogStore",
    "SearchIndex", "OpenSearchIndex", "SearchParams",
    "AvailabilityProvider", "HttpAvailabilityProvider",
]
