"""
Database Module
"""
from .connection import (
    build_session_factory,
    check_database_health,
    close_database,
    create_schema,
    get_session_factory,
    init_database,
)
from .models import Base, Product, Review, ReviewStatus

__all__ = [
    "build_session_factory",
    "check_database_health",
    "close_database",
    "create_schema",
    "get_session_factory",
    "init_database",
    "Base",
    "Product",
    "Review",
    "ReviewStatus",
]
