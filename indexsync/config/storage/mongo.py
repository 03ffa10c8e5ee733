"""MongoDB connection config (read from settings). Read-only; no business logic."""

from indexsync.config.settings import get_settings


def get_mongo_config() -> dict:
    """Return MongoDB connection parameters from settings for use by resources."""
    s = get_settings()
    return {
        "uri": s.mongo_uri,
        "registry_database": s.registry_database,
        "registry_collection": s.registry_collection,
        "connect_timeout_ms": s.mongo_connect_timeout_ms,
        "server_selection_timeout_ms": s.mongo_server_selection_timeout_ms,
        "max_pool_size": s.mongo_max_pool_size,
    }
