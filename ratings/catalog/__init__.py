"""
Catalog Module
"""
from .service import ProductCatalogService

__all__ = ["ProductCatalogService"]
