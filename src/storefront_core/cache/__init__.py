from .cache_protocol import ICacheStore
from .tagged_cache import CacheOptions, CacheTTL, TaggedCache

__all__ = ["ICacheStore", "CacheOptions", "CacheTTL", "TaggedCache"]
