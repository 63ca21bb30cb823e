from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional, Tuple


class ConfigurationError(RuntimeError):
    """Raised when required settings are missing or invalid."""


@dataclass(frozen=True)
class Settings:
    """
    Application settings loaded from environment variables.

    Env vars:
    - PERSISTENCE_BACKEND: 'mongodb' (default) or 'memory'
    - MONGODB_URL: MongoDB connection string (required for mongodb)
    - MONGODB_DB: database name (required for mongodb)
    - MONGODB_COLLECTION: collection holding todos. Default 'todos'
    - MONGODB_MAX_POOL_SIZE: driver connection pool size. Default 10
    - CORS_ALLOW_ORIGINS: comma-separated list of allowed origins; '*' by default
    - LOG_LEVEL: logging level name. Default 'INFO'
    - HOST / PORT: listen address used by `python -m todo_api`
    """

    persistence_backend: str
    mongodb_url: Optional[str]
    mongodb_db: Optional[str]
    mongodb_collection: str
    mongodb_max_pool_size: int
    cors_allow_origins: List[str]
    log_level: str
    host: str
    port: int

    # PUBLIC_INTERFACE
    def require_mongodb(self) -> Tuple[str, str]:
        """
        Return (url, database name), raising ConfigurationError when either is unset.
        """
        if not self.mongodb_url or not self.mongodb_db:
            raise ConfigurationError(
                "Missing required environment variables: MONGODB_URL and/or MONGODB_DB"
            )
        return self.mongodb_url, self.mongodb_db


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name, default)
    if value is None or value == "":
        return default
    return value


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return default


def _parse_origins(origins_value: str) -> List[str]:
    """
    Parse CORS origins from env. Supports:
    - '*' to allow all origins
    - Comma-separated list of origins
    """
    value = origins_value.strip()
    if value == "*":
        return ["*"]
    return [o.strip() for o in value.split(",") if o.strip()]


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Return application settings loaded from environment variables."""
    backend = _get_env("PERSISTENCE_BACKEND", "mongodb").strip().lower()
    if backend not in {"mongodb", "memory"}:
        raise ConfigurationError(
            f"Unsupported PERSISTENCE_BACKEND {backend!r}; expected 'mongodb' or 'memory'"
        )

    return Settings(
        persistence_backend=backend,
        mongodb_url=os.getenv("MONGODB_URL") or None,
        mongodb_db=os.getenv("MONGODB_DB") or None,
        mongodb_collection=_get_env("MONGODB_COLLECTION", "todos").strip(),
        mongodb_max_pool_size=_parse_int(_get_env("MONGODB_MAX_POOL_SIZE", "10"), 10),
        cors_allow_origins=_parse_origins(_get_env("CORS_ALLOW_ORIGINS", "*")),
        log_level=_get_env("LOG_LEVEL", "INFO").strip().upper(),
        host=_get_env("HOST", "0.0.0.0").strip(),
        port=_parse_int(_get_env("PORT", "3000"), 3000),
    )
