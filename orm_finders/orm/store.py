"""Named stores for orm-finders.

A store is a named persistence target. Only stores backed by a SQLAlchemy
engine (``SQLStore``) can run literal SQL; other stores registered in a
``StoreRegistry`` are visible to repositories but reject raw queries.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import Connection, Dialect, Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.sql.expression import ClauseElement

from orm_finders.exceptions import StoreAlreadyRegisteredError, UnknownStoreError, UnsupportedStoreError
from orm_finders.orm.connection import StoreConnection

logger = logging.getLogger("ORM-Finders")

DEFAULT_STORE_NAME = "default"


class BaseStore:
    """A named persistence target.

    The base class cannot execute literal SQL. Subclasses that can set
    ``supports_raw_query`` and override ``connection``, ``compile_statement``
    and ``session``.
    """

    supports_raw_query = False

    def __init__(self, name: str):
        self.name = name

    @contextmanager
    def connection(self) -> Iterator[Any]:
        raise UnsupportedStoreError("connection", self.name)
        yield  # pragma: no cover

    def compile_statement(self, statement: ClauseElement) -> tuple[str, list[Any]]:
        raise UnsupportedStoreError("compile_statement", self.name)

    def session(self) -> Session:
        """Return the session records loaded from this store are attached to."""
        raise UnsupportedStoreError("session", self.name)

    def dispose(self) -> None:
        """Release any resources held by the store."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class SQLStore(BaseStore):
    """A store served by a SQLAlchemy engine."""

    supports_raw_query = True

    def __init__(self, name: str, engine: Engine):
        """Initialize the store.

        Args:
            name: Name the store is registered under.
            engine: SQLAlchemy engine owning the connection pool.
        """
        super().__init__(name)
        self.engine = engine
        self._sessions: scoped_session | None = None

    @classmethod
    def from_connection(cls, name: str, connection: StoreConnection, **engine_kwargs: Any) -> "SQLStore":
        """Create a store from a connection configuration."""
        return cls(name, connection.get_engine(**engine_kwargs))

    @property
    def dialect(self) -> Dialect:
        return self.engine.dialect

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Check out a connection, returning it to the pool on every exit path."""
        with self.engine.connect() as conn:
            yield conn

    def session(self) -> Session:
        """Return the thread-local session bound to this store."""
        if self._sessions is None:
            self._sessions = scoped_session(sessionmaker(bind=self.engine))
        return self._sessions()

    def remove_session(self) -> None:
        """Close and discard the thread-local session."""
        if self._sessions is not None:
            self._sessions.remove()

    def compile_statement(self, statement: ClauseElement) -> tuple[str, list[Any]]:
        """Compile a SQLAlchemy statement into driver-level SQL and positional bind values.

        Dialects with a named paramstyle (e.g. psycopg's ``pyformat``) are
        compiled with the positional ``format`` style instead so the result
        can be executed with a plain sequence of bind values. Expanding
        parameters such as ``column.in_([...])`` are rendered as one
        placeholder per value.

        Args:
            statement: Any SQLAlchemy statement, e.g. ``select(User).where(User.id == 1)``.

        Returns:
            Tuple of (sql text, ordered bind values).
        """
        dialect = self.dialect
        if not dialect.positional:
            dialect = type(dialect)(paramstyle="format")
        compiled = statement.compile(dialect=dialect, compile_kwargs={"render_postcompile": True})
        params = compiled.params
        bind_values = [params[name] for name in compiled.positiontup or ()]
        return str(compiled), bind_values

    def dispose(self) -> None:
        self.remove_session()
        self.engine.dispose()


class StoreRegistry:
    """Name -> store mapping shared by repositories."""

    def __init__(self):
        self._stores: dict[str, BaseStore] = {}

    def register(self, store: BaseStore, replace: bool = False) -> BaseStore:
        """Register a store under its name.

        Args:
            store: The store to register.
            replace: Overwrite an existing store with the same name.

        Returns:
            The registered store.

        Raises:
            StoreAlreadyRegisteredError: If the name is taken and replace is False.
        """
        if store.name in self._stores and not replace:
            raise StoreAlreadyRegisteredError(store.name)
        self._stores[store.name] = store
        logger.info(f"Registered store '{store.name}' ({type(store).__name__})")
        return store

    def unregister(self, name: str) -> BaseStore:
        try:
            return self._stores.pop(name)
        except KeyError:
            raise UnknownStoreError(name) from None

    def get(self, name: str) -> BaseStore:
        try:
            return self._stores[name]
        except KeyError:
            raise UnknownStoreError(name) from None

    def names(self) -> list[str]:
        return sorted(self._stores)

    def dispose(self) -> None:
        """Dispose every registered store and empty the registry."""
        for store in self._stores.values():
            store.dispose()
            logger.info(f"Disposed store '{store.name}'")
        self._stores.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    @classmethod
    def from_config(cls, config_path: str | Path) -> "StoreRegistry":
        """Build a registry from a YAML file mapping store names to connection settings.

        Args:
            config_path: Path to ``stores.yaml`` or to the directory containing it.

        Returns:
            StoreRegistry with one SQLStore per entry.

        Example:
            ```yaml
            default:
              url: sqlite:///app.db
            reporting:
              host: localhost
              port: 5432
              user: postgres
              database: reporting
            ```
        """
        from omegaconf import DictConfig, OmegaConf

        path = Path(config_path)
        if path.is_dir():
            path = path / "stores.yaml"

        cfg = OmegaConf.load(path)
        if not isinstance(cfg, DictConfig):
            raise TypeError("stores.yaml must be a YAML mapping.")  # noqa: TRY003

        registry = cls()
        for name, entry in cfg.items():
            if not isinstance(entry, DictConfig):
                raise TypeError(f"Store '{name}' must be configured with a YAML mapping.")  # noqa: TRY003
            settings = OmegaConf.to_container(entry, resolve=True)
            registry.register(SQLStore.from_connection(str(name), StoreConnection.from_mapping(settings)))
        return registry


default_registry = StoreRegistry()
