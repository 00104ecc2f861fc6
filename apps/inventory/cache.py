# apps/inventory/cache.py
"""
Read cache for the inventory service.

Backed by Django's cache framework. Keys are built from
(operation, item_id) and every key is recorded in an index for its item,
so a mutation drops exactly the entries for that item. Cross-item results
(reorder suggestions, turnover analysis) are indexed under AGGREGATE and
dropped on every mutation.

`get_or_set` stamps the index generation before building and skips the
store when an invalidation ran in between, so a build that raced a
mutation is returned once but never cached.

Usage:
    cache = InventoryCache()
    status = cache.get_or_set('status', 'ITEM001', lambda: build_status())
    cache.invalidate('ITEM001')
"""
import logging
import threading
from collections import defaultdict

from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # seconds
AGGREGATE = '__aggregate__'

_MISSING = object()


class InventoryCache:

    def __init__(self, alias=None, ttl=CACHE_TTL, prefix='larder'):
        alias = alias or getattr(settings, 'LARDER_CACHE_ALIAS', 'default')
        self.backend = caches[alias]
        self.ttl = ttl
        self.prefix = prefix
        self._index_lock = threading.RLock()
        self._generations = defaultdict(int)

    def key(self, operation, item_id=None):
        return f"{self.prefix}:{operation}:{item_id if item_id is not None else '*'}"

    def _index_key(self, item_id):
        return f"{self.prefix}:index:{item_id}"

    def get(self, operation, item_id=None, default=None):
        value = self.backend.get(self.key(operation, item_id), _MISSING)
        if value is _MISSING:
            return default
        logger.debug(f"Cache hit: {operation} {item_id}")
        return value

    def set(self, operation, item_id, value, index_under=None):
        """
        Store a value and index its key.

        Args:
            operation: Operation name ('status', 'reorder', ...)
            item_id: Item the value belongs to, or a category/None for aggregates
            value: Picklable value
            index_under: Index bucket (defaults to item_id)
        """
        key = self.key(operation, item_id)
        self.backend.set(key, value, self.ttl)

        bucket = index_under if index_under is not None else item_id
        index_key = self._index_key(bucket)
        with self._index_lock:
            keys = self.backend.get(index_key, set())
            keys.add(key)
            self.backend.set(index_key, keys, self.ttl)

    def set_aggregate(self, operation, scope, value):
        self.set(operation, scope, value, index_under=AGGREGATE)

    def get_or_set(self, operation, item_id, factory, index_under=None):
        value = self.get(operation, item_id, _MISSING)
        if value is not _MISSING:
            return value

        bucket = index_under if index_under is not None else item_id
        with self._index_lock:
            generation = self._generations[bucket]
        value = factory()
        with self._index_lock:
            if self._generations[bucket] != generation:
                logger.debug(f"Not caching {operation} {item_id}: invalidated during build")
                return value
            self.set(operation, item_id, value, index_under=index_under)
        return value

    def invalidate(self, item_id):
        """Drop every entry indexed under the item plus all aggregate entries."""
        with self._index_lock:
            stale = set()
            for bucket in (item_id, AGGREGATE):
                self._generations[bucket] += 1
                index_key = self._index_key(bucket)
                stale |= self.backend.get(index_key, set())
                stale.add(index_key)
            self.backend.delete_many(list(stale))

    def clear(self):
        self.backend.clear()
