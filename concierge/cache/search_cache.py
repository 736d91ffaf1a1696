# cache/search_cache.py
"""
Short-TTL cache for search worker results.

The read path is explicit: try_cache() returns the cached items or None, and
raises CacheUnavailableError when the store itself fails so the caller can
log the miss and compute instead.
"""

import hashlib
import json
from typing import Any, Dict, List, Optional

from loguru import logger

from concierge.errors import CacheUnavailableError
from concierge.interfaces.kv_store import KeyValueStore


KEY_PREFIX = "search:worker:"


def cache_key(params: Dict[str, Any]) -> str:
    """Key derived from the query shape"""
    shape = json.dumps(params, sort_keys=True, default=str)
    return f"{KEY_PREFIX}{hashlib.sha256(shape.encode('utf-8')).hexdigest()[:24]}"


async def try_cache(store: Optional[KeyValueStore], key: str) -> Optional[List[Dict[str, Any]]]:
    """
    Read cached search items.

    Returns:
        Cached items, or None on a miss (or when no store is configured)

    Raises:
        CacheUnavailableError: the store could not be read
    """
    if store is None:
        return None
    try:
        raw = await store.get(key)
    except Exception as e:
        raise CacheUnavailableError(str(e)) from e
    if not raw:
        return None
    logger.debug(f"Search cache hit: {key}")
    return json.loads(raw)


async def store_cache(store: Optional[KeyValueStore], key: str, items: List[Dict[str, Any]], ttl_seconds: int) -> bool:
    """Write items; a failed write is reported and otherwise ignored"""
    if store is None or not items:
        return False
    try:
        await store.set(key, json.dumps(items), ttl_seconds=ttl_seconds)
        return True
    except Exception as e:
        logger.warning(f"Search cache write failed for {key}: {e}")
        return False
