from price_cache.models.base import Base
from price_cache.models.cache_document import CacheDocument

__all__ = ["Base", "CacheDocument"]
