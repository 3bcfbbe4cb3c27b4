"""Transaction history persistence layer.

Provides key-value storage backends, the TTL/size bounded cache, cache entry
models, and the paginated history fetcher.
"""

from ammtrail.data.cache import CacheLayer, run_sweep_loop
from ammtrail.data.fetcher import HistoryFetcher
from ammtrail.data.models import CacheEntry, CacheKind
from ammtrail.data.storage import KeyValueStorage, MemoryStorage, SqliteStorage

__all__ = [
    "CacheEntry",
    "CacheKind",
    "CacheLayer",
    "HistoryFetcher",
    "KeyValueStorage",
    "MemoryStorage",
    "run_sweep_loop",
    "SqliteStorage",
]
