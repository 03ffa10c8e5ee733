"""Environment-based application settings. Read-only; no business logic."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="index-sync", description="Service name")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Log level name")

    # Server
    host: str = Field(default="0.0.0.0", description="Listen host")
    port: int = Field(default=8000, ge=1, le=65535, description="Listen port")

    # Adapter wiring: "memory" keeps everything in-process, "mongo" uses MongoDB + OpenSearch
    backend: Literal["memory", "mongo"] = Field(default="mongo", description="Adapter backend")

    # MongoDB (see config/storage/mongo for connection semantics)
    mongo_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection URI",
    )
    mongo_connect_timeout_ms: int = Field(default=5000, ge=100, description="Connection timeout (ms)")
    mongo_server_selection_timeout_ms: int = Field(
        default=5000, ge=100, description="Server selection timeout (ms)"
    )
    mongo_max_pool_size: int = Field(default=50, ge=1, le=500, description="Max connection pool size")
    registry_database: str = Field(default="main", description="Database holding index definitions")
    registry_collection: str = Field(default="mongo_index", description="Collection holding index definitions")
    source_id_field: str | None = Field(
        default="id", description="Document field used as source id; falls back to _id when missing"
    )

    # OpenSearch
    opensearch_host: str = Field(default="http://localhost:9200", description="OpenSearch base URL")
    opensearch_username: str = Field(default="admin", description="OpenSearch username")
    opensearch_password: str = Field(default="admin", description="OpenSearch password")
    opensearch_use_ssl: bool = Field(default=True, description="Use HTTPS to OpenSearch")
    opensearch_verify_certs: bool = Field(default=False, description="Verify TLS certificates")
    opensearch_timeout: int = Field(default=30, ge=1, description="Request timeout (seconds)")
    opensearch_number_of_shards: int = Field(default=1, ge=1, description="Shards for new target indices")
    opensearch_number_of_replicas: int = Field(default=1, ge=0, description="Replicas for new target indices")

    # Rebuild / tasks
    rebuild_batch_size: int = Field(default=500, ge=1, le=10000, description="Documents per rebuild batch")
    rebuild_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Optional wall-clock limit for one rebuild, checked between batches"
    )
    task_ttl_seconds: float = Field(default=3600.0, ge=0, description="Retention of finished tasks (seconds)")
    scan_page_size: int = Field(default=500, ge=1, le=10000, description="Page size when scanning a target index")

    # Adapter retries
    retry_attempts: int = Field(default=3, ge=1, le=20, description="Attempts per adapter call")
    retry_base_delay: float = Field(default=0.5, ge=0, description="First backoff delay (seconds)")
    retry_max_delay: float = Field(default=10.0, ge=0, description="Backoff cap (seconds)")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance. Use for app lifetime."""
    return Settings()
