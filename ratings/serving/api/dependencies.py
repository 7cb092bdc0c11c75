"""
API Dependencies

Service wiring and caller identity. Authentication happens upstream; the
gateway forwards the caller in the identity headers named in settings.
"""

from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ratings.catalog.service import ProductCatalogService
from ratings.config import Settings, get_settings
from ratings.reviews.coherence import CacheCoherenceManager, domain_ttls
from ratings.reviews.errors import StoreUnavailable
from ratings.reviews.records import ROLE_USER, Actor
from ratings.reviews.service import ReviewLifecycleService
from ratings.reviews.stores import SqlProductStore, SqlReviewStore
from ratings.serving.cache import CacheBackend


def build_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession],
    cache_backend: CacheBackend,
    settings: Optional[Settings] = None,
) -> None:
    """Attach the review and catalog services to ``app.state``."""
    settings = settings or get_settings()
    timeout = settings.database.operation_timeout

    review_store = SqlReviewStore(session_factory, timeout)
    product_store = SqlProductStore(session_factory, timeout)
    coherence = CacheCoherenceManager(
        cache_backend,
        domain_ttls(settings.cache),
        enabled=settings.cache.enabled,
    )

    app.state.review_service = ReviewLifecycleService(
        review_store, product_store, coherence, settings.ratings
    )
    app.state.catalog_service = ProductCatalogService(product_store, coherence, settings.ratings)


def get_review_service(request: Request) -> ReviewLifecycleService:
    service = getattr(request.app.state, "review_service", None)
    if service is None:
        raise StoreUnavailable("Review storage is not available")
    return service


def get_catalog_service(request: Request) -> ProductCatalogService:
    service = getattr(request.app.state, "catalog_service", None)
    if service is None:
        raise StoreUnavailable("Product storage is not available")
    return service


def get_optional_actor(request: Request) -> Optional[Actor]:
    """Caller identity from the gateway headers, or None for anonymous calls."""
    security = get_settings().security
    user_id = request.headers.get(security.user_id_header)
    if not user_id:
        return None
    raw_roles = request.headers.get(security.user_roles_header, "")
    roles = frozenset(r.strip().upper() for r in raw_roles.split(",") if r.strip())
    return Actor(user_id=user_id, roles=roles or frozenset({ROLE_USER}))


def get_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return actor


def require_roles(*roles: str) -> Callable[[Actor], Actor]:
    """Dependency admitting only callers holding one of ``roles``."""
    wanted = frozenset(roles)

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.roles & wanted:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return actor

    return dependency
