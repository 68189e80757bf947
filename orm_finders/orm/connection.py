import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Engine

from orm_finders.exceptions import EnvNotFoundError

logger = logging.getLogger("ORM-Finders")


@dataclass
class StoreConnection:
    """Database connection configuration for one named store.

    Either ``url`` is given explicitly (any SQLAlchemy URL, e.g. ``sqlite://``),
    or the URL is assembled from the host/port/credential fields.
    """

    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: str | None = None
    database: str | None = None
    driver: str = "postgresql+psycopg"
    url: str | None = None

    @property
    def db_url(self) -> str:
        """Construct the SQLAlchemy database URL."""
        if self.url is not None:
            return self.url
        if self.database is None:
            return f"{self.driver}://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"{self.driver}://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"

    def get_engine(self, **engine_kwargs: Any) -> Engine:
        """Create a SQLAlchemy engine using the connection configuration."""
        from sqlalchemy import create_engine

        return create_engine(self.db_url, **engine_kwargs)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "StoreConnection":
        """Build a connection from one entry of ``stores.yaml``.

        Args:
            cfg: Either ``{"url": ...}`` or ``{"host", "port", "user", "password", "database"}``.
                A missing password falls back to the POSTGRES_PASSWORD environment variable.

        Returns:
            StoreConnection instance with loaded configuration.
        """
        if cfg.get("url") is not None:
            return cls(url=str(cfg["url"]))

        password = cfg.get("password") or os.environ.get("POSTGRES_PASSWORD")
        if password is None:
            raise EnvNotFoundError("POSTGRES_PASSWORD")

        return cls(
            host=cfg.get("host", "localhost"),
            port=int(cfg.get("port", 5432)),
            username=cfg.get("user"),
            password=password,
            database=cfg.get("database"),
            driver=cfg.get("driver", "postgresql+psycopg"),
        )

    @classmethod
    def from_env(cls) -> "StoreConnection":
        """Load database connection configuration from environment variables.

        DATABASE_URL wins when set; otherwise the POSTGRES_* variables are used.

        Returns:
            StoreConnection instance with loaded configuration.
        """
        url = os.getenv("DATABASE_URL")
        if url:
            return cls(url=url)

        host = os.getenv("POSTGRES_HOST", "localhost")
        port = int(os.getenv("POSTGRES_PORT", "5432"))
        database = os.getenv("POSTGRES_DB", None)

        username = os.getenv("POSTGRES_USER")
        if username is None:
            raise EnvNotFoundError("POSTGRES_USER")
        password = os.getenv("POSTGRES_PASSWORD")
        if password is None:
            raise EnvNotFoundError("POSTGRES_PASSWORD")

        logger.debug(f"Loaded store connection for {host}:{port} from environment")
        return cls(
            host=host,
            port=port,
            username=username,
            password=password,
            database=database,
        )
