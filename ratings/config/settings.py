"""
Product Ratings Settings

Every knob comes from the environment (or .env) through pydantic-settings.
Each section reads its own prefix: POSTGRES_, REDIS_, CACHE_, RATINGS_.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "testing", "staging", "production")


class DatabaseSettings(BaseSettings):
    """Durable store (PostgreSQL via asyncpg)"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    db: str = "product_ratings"
    user: str = "ratings"
    password: SecretStr = SecretStr("ratings")
    echo: bool = False
    url: Optional[str] = Field(default=None, description="Complete SQLAlchemy async URL; wins over the parts above")
    operation_timeout: float = Field(default=5.0, gt=0, description="Seconds allowed for one store call")

    @property
    def async_url(self) -> str:
        if self.url:
            return self.url
        secret = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{secret}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Cache backend connection"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[SecretStr] = None
    url: Optional[str] = Field(default=None, description="redis:// URL; wins over host/port/db")
    max_connections: int = 50
    socket_timeout: float = 2.0
    key_prefix: str = Field(default="ecommerce:", description="Namespace in front of every cache key")
    operation_timeout: float = Field(default=2.0, gt=0, description="Seconds allowed for one cache call")

    def get_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password.get_secret_value()}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class CacheSettings(BaseSettings):
    """Read-through cache switches and per-domain TTLs (seconds)"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    enabled: bool = True
    default_ttl: int = Field(default=1800, gt=0, description="Review domains")
    product_ttl: int = Field(default=3600, gt=0, description="Product by id")
    product_list_ttl: int = Field(default=600, gt=0, description="Product list pages")
    product_search_ttl: int = Field(default=900, gt=0, description="Product search pages")


class RatingsSettings(BaseSettings):
    """Review engine behaviour"""

    model_config = SettingsConfigDict(env_prefix="RATINGS_")

    aggregate_retry_budget: float = Field(default=5.0, ge=0, description="Seconds a recompute may keep retrying lost writes")
    aggregate_retry_base_delay: float = Field(default=0.005, ge=0, description="First backoff ceiling in seconds")
    aggregate_retry_max_delay: float = Field(default=0.1, ge=0, description="Largest backoff ceiling in seconds")
    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=100, ge=1)


class MonitoringSettings(BaseSettings):
    """Log level and renderer"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="json or console")


class SecuritySettings(BaseSettings):
    """Identity headers forwarded by the gateway, and CORS"""

    model_config = SettingsConfigDict(env_prefix="")

    user_id_header: str = Field(default="X-User-Id", alias="USER_ID_HEADER")
    user_roles_header: str = Field(default="X-User-Roles", alias="USER_ROLES_HEADER")
    cors_origins: List[str] = Field(default=["http://localhost:3000"], alias="CORS_ORIGINS")


class Settings(BaseSettings):
    """All sections behind one object; use get_settings()."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_env: str = Field(default="development", alias="APP_ENV")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    version: str = "1.0.0"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    ratings: RatingsSettings = Field(default_factory=RatingsSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        if v.lower() not in ENVIRONMENTS:
            raise ValueError(f"APP_ENV must be one of {ENVIRONMENTS}")
        return v.lower()

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """Settings are read from the environment once per process."""
    return Settings()
