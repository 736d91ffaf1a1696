"""Result caching"""

from concierge.cache.search_cache import cache_key, try_cache, store_cache

__all__ = ["cache_key", "try_cache", "store_cache"]
