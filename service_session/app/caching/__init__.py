"""
Query caching package.

Provides the process-wide ``CacheStore`` that backs every data accessor and
the ``QueryKeys`` factory that names its entries. Prefer short staleness
windows and explicit invalidation after mutations.
"""

from .cache_store import CacheSnapshot, CacheStore, QueryResult
from .keys import QueryKey, QueryKeys, filter_hash

__all__ = [
    "CacheSnapshot",
    "CacheStore",
    "QueryKey",
    "QueryKeys",
    "QueryResult",
    "filter_hash",
]
