"""
FastAPI Application Factory

Creates and configures the API application.
"""

from typing import Callable, Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ratings.config import get_settings
from ratings.serving.api.errors import register_error_handlers
from ratings.serving.api.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from ratings.serving.api.routes import health_router, products_router, reviews_router


def create_api_app(lifespan: Optional[Callable] = None) -> FastAPI:
    """
    Build the API app with middleware, error mapping and routers.

    The review and catalog services are expected on ``app.state``; the
    lifespan puts them there, tests may assign them directly.
    """
    settings = get_settings()
    app = FastAPI(
        title="Product Ratings API",
        description="Product reviews, moderation and rating aggregates",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=[settings.security.user_id_header, settings.security.user_roles_header, "Content-Type"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    register_error_handlers(app)

    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(reviews_router, prefix="/api/v1/reviews", tags=["Reviews"])
    app.include_router(products_router, prefix="/api/v1/products", tags=["Products"])

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/api/v1/info")
    async def api_info():
        return {
            "name": "Product Ratings API",
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app
