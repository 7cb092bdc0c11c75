"""
Cache Coherence

Two tables drive the cache:

- CACHE_DOMAINS: every cached read path, with its TTL
- EVICTION_TRIGGERS: for each kind of write, which single-entity keys and
  which whole domains become stale

Keys are a pure function of the domain and the full parameter set, so equal
queries always share an entry. Listing and search results mix many entities,
so writes evict those domains wholesale instead of tracking membership.

The cache is never the source of truth. A failed get is a miss; a failed set
or evict is logged and dropped. Evictions run only after the durable write
has committed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar
from urllib.parse import quote

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PayloadError

from ratings.config.settings import CacheSettings
from ratings.metrics import CACHE_EVICTIONS, CACHE_FAULTS, CACHE_LOOKUPS
from ratings.reviews.errors import CacheUnavailable
from ratings.serving.cache import CacheBackend

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# quote() always escapes "!", so no encoded value can equal this
NULL_SENTINEL = "!null"


class CacheDomain(str, Enum):
    """Named groups of cache keys sharing a TTL and invalidation policy"""
    PRODUCTS = "products"
    PRODUCT_LIST = "productList"
    PRODUCT_SEARCH = "productSearch"
    REVIEWS = "reviews"
    REVIEWS_BY_PRODUCT = "reviewsByProduct"
    REVIEWS_BY_USER = "reviewsByUser"


class WriteEvent(str, Enum):
    """Writes that invalidate cached reads"""
    REVIEW_CREATED = "review_created"
    REVIEW_UPDATED = "review_updated"
    REVIEW_DELETED = "review_deleted"
    REVIEW_MODERATED = "review_moderated"
    AGGREGATE_CHANGED = "aggregate_changed"
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"


@dataclass(frozen=True)
class EvictionRule:
    """Domains whose entry for the written entity goes stale, and domains that go stale entirely"""
    exact: Tuple[CacheDomain, ...] = ()
    whole: Tuple[CacheDomain, ...] = ()


_REVIEW_WRITE = EvictionRule(
    exact=(CacheDomain.REVIEWS,),
    whole=(CacheDomain.REVIEWS_BY_PRODUCT, CacheDomain.REVIEWS_BY_USER),
)

EVICTION_TRIGGERS: Dict[WriteEvent, EvictionRule] = {
    WriteEvent.REVIEW_CREATED: EvictionRule(
        whole=(CacheDomain.REVIEWS_BY_PRODUCT, CacheDomain.REVIEWS_BY_USER),
    ),
    WriteEvent.REVIEW_UPDATED: _REVIEW_WRITE,
    WriteEvent.REVIEW_DELETED: _REVIEW_WRITE,
    WriteEvent.REVIEW_MODERATED: _REVIEW_WRITE,
    WriteEvent.AGGREGATE_CHANGED: EvictionRule(
        exact=(CacheDomain.PRODUCTS,),
        whole=(CacheDomain.PRODUCT_LIST, CacheDomain.PRODUCT_SEARCH),
    ),
    WriteEvent.PRODUCT_CREATED: EvictionRule(
        whole=(CacheDomain.PRODUCT_LIST, CacheDomain.PRODUCT_SEARCH),
    ),
    WriteEvent.PRODUCT_UPDATED: EvictionRule(
        exact=(CacheDomain.PRODUCTS,),
        whole=(CacheDomain.PRODUCT_LIST, CacheDomain.PRODUCT_SEARCH),
    ),
    WriteEvent.PRODUCT_DELETED: EvictionRule(
        exact=(CacheDomain.PRODUCTS,),
        whole=(
            CacheDomain.PRODUCT_LIST,
            CacheDomain.PRODUCT_SEARCH,
            CacheDomain.REVIEWS,
            CacheDomain.REVIEWS_BY_PRODUCT,
            CacheDomain.REVIEWS_BY_USER,
        ),
    ),
}


def domain_ttls(settings: CacheSettings) -> Dict[CacheDomain, int]:
    """TTL in seconds for every cache domain"""
    return {
        CacheDomain.PRODUCTS: settings.product_ttl,
        CacheDomain.PRODUCT_LIST: settings.product_list_ttl,
        CacheDomain.PRODUCT_SEARCH: settings.product_search_ttl,
        CacheDomain.REVIEWS: settings.default_ttl,
        CacheDomain.REVIEWS_BY_PRODUCT: settings.default_ttl,
        CacheDomain.REVIEWS_BY_USER: settings.default_ttl,
    }


def normalize(value: Any) -> str:
    """
    Render one parameter value for a cache key.

    Values are percent-encoded, so ":" and "=" inside a value can never be
    read as delimiters.
    """
    if value is None:
        return NULL_SENTINEL
    if isinstance(value, Enum):
        value = value.value
    elif isinstance(value, bool):
        value = "true" if value else "false"
    return quote(str(value), safe="")


def domain_prefix(domain: CacheDomain) -> str:
    return f"{CacheDomain(domain).value}::"


def cache_key(domain: CacheDomain, **params: Any) -> str:
    """
    Canonical key for a read.

    Parameter order does not matter; every parameter, including None ones,
    is part of the key, and distinct parameter sets never share a key.

    Example:
        >>> cache_key(CacheDomain.REVIEWS_BY_PRODUCT, product_id="p1", page=1)
        'reviewsByProduct::page=1:product_id=p1'
    """
    parts = ":".join(f"{name}={normalize(params[name])}" for name in sorted(params))
    return f"{domain_prefix(domain)}{parts}"


def entity_key(domain: CacheDomain, entity_id: str) -> str:
    """Key of a single-entity read (product-by-id, review-by-id)"""
    return cache_key(domain, id=entity_id)


class CacheCoherenceManager:
    """
    Read-through access and write-triggered eviction over a CacheBackend.

    Example:
        coherence = CacheCoherenceManager(RedisCacheBackend(), domain_ttls(settings.cache))
        product = await coherence.read_through(
            CacheDomain.PRODUCTS, {"id": product_id}, load_product, ProductResponse
        )
    """

    def __init__(
        self,
        backend: CacheBackend,
        ttls: Mapping[CacheDomain, int],
        enabled: bool = True,
    ):
        self._backend = backend
        self._ttls = dict(ttls)
        self.enabled = enabled

    def ttl_for(self, domain: CacheDomain) -> int:
        return self._ttls[CacheDomain(domain)]

    async def read_through(
        self,
        domain: CacheDomain,
        params: Mapping[str, Any],
        loader: Callable[[], Awaitable[M]],
        model: Type[M],
    ) -> M:
        """
        Return the cached payload for (domain, params), or load, cache and return it.

        Errors raised by ``loader`` propagate untouched and nothing is cached.
        """
        if not self.enabled:
            return await loader()

        key = cache_key(domain, **params)
        raw = await self._safe_get(key)
        if raw is not None:
            try:
                value = model.model_validate_json(raw)
                CACHE_LOOKUPS.labels(domain=CacheDomain(domain).value, result="hit").inc()
                logger.debug("Cache hit", key=key)
                return value
            except PayloadError:
                logger.warning("Discarding unreadable cache entry", key=key)
                await self._safe_evict(key)

        CACHE_LOOKUPS.labels(domain=CacheDomain(domain).value, result="miss").inc()
        logger.debug("Cache miss", key=key)
        value = await loader()
        await self._safe_set(key, value.model_dump_json(), self.ttl_for(domain))
        return value

    async def evict_for(self, event: WriteEvent, entity_id: Optional[str] = None) -> None:
        """
        Evict everything ``event`` makes stale. Call after the durable write committed.
        """
        event = WriteEvent(event)
        rule = EVICTION_TRIGGERS[event]
        CACHE_EVICTIONS.labels(event=event.value).inc()
        if entity_id is not None:
            for domain in rule.exact:
                await self._safe_evict(entity_key(domain, entity_id))
        for domain in rule.whole:
            await self._safe_evict_domain(domain)
        logger.debug(
            "Cache evicted",
            cache_event=event.value,
            entity_id=entity_id,
            exact=[d.value for d in rule.exact] if entity_id is not None else [],
            whole=[d.value for d in rule.whole],
        )

    async def _safe_get(self, key: str) -> Optional[str]:
        try:
            return await self._backend.get(key)
        except CacheUnavailable as e:
            CACHE_FAULTS.labels(operation="get").inc()
            logger.warning("Cache get failed, treating as miss", key=key, error=str(e))
            return None

    async def _safe_set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._backend.set_with_ttl(key, value, ttl)
        except CacheUnavailable as e:
            CACHE_FAULTS.labels(operation="set").inc()
            logger.warning("Cache set failed, skipping", key=key, error=str(e))

    async def _safe_evict(self, key: str) -> None:
        try:
            await self._backend.evict(key)
        except CacheUnavailable as e:
            CACHE_FAULTS.labels(operation="evict").inc()
            logger.warning("Cache evict failed, skipping", key=key, error=str(e))

    async def _safe_evict_domain(self, domain: CacheDomain) -> None:
        prefix = domain_prefix(domain)
        try:
            await self._backend.evict_by_prefix(prefix)
        except CacheUnavailable as e:
            CACHE_FAULTS.labels(operation="evict_by_prefix").inc()
            logger.warning("Cache domain eviction failed, skipping", domain=prefix, error=str(e))
