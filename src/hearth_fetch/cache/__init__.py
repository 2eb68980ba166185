"""Card art cache for the hearth-fetch library."""

from hearth_fetch.cache.disk import CacheStats, DiskCache, EntryState, cache_key

__all__ = [
    "CacheStats",
    "DiskCache",
    "EntryState",
    "cache_key",
]
