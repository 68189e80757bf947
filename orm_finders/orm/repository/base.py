"""Repository layer for orm-finders.

Implements the Generic Repository + Unit of Work patterns on top of
SQLAlchemy, extended with record lookups by attribute, dynamic
``find_by_*`` finders and raw SQL queries mapped back into instances.
"""

import logging
from collections.abc import Mapping, Sequence
from contextlib import contextmanager
from enum import Enum
from typing import Any, Generic, TypeVar

from sqlalchemy import Connection, Select, inspect, select
from sqlalchemy.orm import Mapper, Session

from orm_finders.exceptions import NoSessionError, UnknownAttributeError, UnknownStoreError, UnsupportedStoreError
from orm_finders.orm.finders import Cardinality, DynamicFinderDispatcher, raise_missing_attribute
from orm_finders.orm.properties import resolve_properties
from orm_finders.orm.raw_query import (
    RawQueryOptions,
    RawQuerySpec,
    ResultCollection,
    execute_raw_query,
    normalize_query,
)
from orm_finders.orm.store import DEFAULT_STORE_NAME, BaseStore, SQLStore, StoreRegistry, default_registry

logger = logging.getLogger("ORM-Finders")

T = TypeVar("T")


class Selector(Enum):
    """Special selectors understood by ``GenericRepository.lookup``."""

    FIRST = "first"
    LAST = "last"
    ALL = "all"


class GenericRepository(Generic[T]):
    """Generic repository implementing common CRUD operations and finders.

    Besides the declared methods, any ``find_by_<attr>[_and_<attr>...]`` or
    ``find_all_by_<attr>[_and_<attr>...]`` name resolves to a finder that
    takes one positional argument per attribute:

        >>> repo = GenericRepository(session, User)
        >>> repo.find_by_name_and_age("Jane", 31)
        >>> repo.find_all_by_country("NL")
    """

    def __init__(self, session: Session, model_cls: type[T], registry: StoreRegistry | None = None):
        """Initialize repository with a session and model class.

        Args:
            session: SQLAlchemy session for the model's default store.
            model_cls: The SQLAlchemy model class this repository manages.
            registry: Store registry used to resolve store names. Defaults to the process-wide registry.
        """
        self.session = session
        self.model_cls = model_cls
        self.registry = registry if registry is not None else default_registry
        self._implicit_store: SQLStore | None = None
        self._finders = DynamicFinderDispatcher(
            lookup=self._find_by_conditions,
            fallback=raise_missing_attribute(self),
            validate=self._validate_attribute_names,
        )

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails
        finders = self.__dict__.get("_finders")
        if finders is None:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")
        return finders.resolve(name)

    @property
    def mapper(self) -> Mapper:
        return inspect(self.model_cls)

    @property
    def default_store_name(self) -> str:
        """Store used when a query does not name one."""
        return getattr(self.model_cls, "__default_store__", DEFAULT_STORE_NAME)

    def add(self, entity: T) -> T:
        """Add a new entity to the session.

        Args:
            entity: The entity instance to add.

        Returns:
            The added entity.
        """
        self.session.add(entity)
        return entity

    def add_all(self, entities: list[T]) -> list[T]:
        """Add multiple entities to the session.

        Args:
            entities: List of entity instances to add.

        Returns:
            The added entities.
        """
        self.session.add_all(entities)
        return entities

    def get_by_id(self, _id: Any) -> T | None:
        """Retrieve an entity by its primary key.

        Args:
            _id: The primary key value.

        Returns:
            The entity if found, None otherwise.
        """
        return self.session.get(self.model_cls, _id)

    def get_all(self, limit: int | None = None, offset: int | None = None) -> list[T]:
        """Retrieve all entities of this type.

        Args:
            limit: Maximum number of results to return.
            offset: Number of results to skip.

        Returns:
            List of all entities.
        """
        stmt = select(self.model_cls)
        if offset:
            stmt = stmt.offset(offset)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def delete(self, entity: T) -> None:
        self.session.delete(entity)

    def delete_by_id(self, _id: Any) -> bool:
        """Delete an entity by its primary key.

        Returns:
            True if entity was deleted, False if not found.
        """
        entity = self.get_by_id(_id)
        if entity:
            self.delete(entity)
            return True
        return False

    def count(self) -> int:
        return self.session.query(self.model_cls).count()

    def exists(self, _id: Any) -> bool:
        return self.get_by_id(_id) is not None

    def lookup(self, selector: Any) -> T | list[T] | None:
        """Look up the entity or entities for a selector.

        Args:
            selector: ``Selector.FIRST``, ``Selector.LAST``, ``Selector.ALL``, or a primary key value.

        Returns:
            A list of every entity for ``Selector.ALL``; otherwise the entity found, or None.
        """
        if selector is Selector.FIRST:
            return self.first()
        if selector is Selector.LAST:
            return self.last()
        if selector is Selector.ALL:
            return self.all()
        return self.get_by_id(selector)

    def first(self, conditions: Mapping[str, Any] | None = None, **kw: Any) -> T | None:
        """Retrieve the first entity matching the conditions, ordered by primary key.

        Args:
            conditions: Attribute name -> value. Sequence values match with IN, None matches NULL.
            **kw: Further conditions, merged over ``conditions``.

        Returns:
            The entity if found, None otherwise.
        """
        stmt = self._select(conditions, kw).order_by(*self.mapper.primary_key).limit(1)
        return self.session.execute(stmt).scalars().first()

    def last(self, conditions: Mapping[str, Any] | None = None, **kw: Any) -> T | None:
        """Retrieve the last entity matching the conditions, ordered by primary key."""
        stmt = self._select(conditions, kw).order_by(*(column.desc() for column in self.mapper.primary_key)).limit(1)
        return self.session.execute(stmt).scalars().first()

    def all(self, conditions: Mapping[str, Any] | None = None, **kw: Any) -> list[T]:
        """Retrieve every entity matching the conditions, ordered by primary key."""
        stmt = self._select(conditions, kw).order_by(*self.mapper.primary_key)
        return list(self.session.execute(stmt).scalars().all())

    def find_or_create(self, conditions: Mapping[str, Any], attributes: Mapping[str, Any] | None = None) -> T:
        """Return the first entity matching ``conditions``, creating it when there is none.

        A created entity is built from ``conditions`` merged with ``attributes``,
        added to the session and flushed.
        """
        entity = self.first(conditions)
        if entity is not None:
            return entity
        entity = self._build(conditions, attributes)
        self.add(entity)
        self.session.flush()
        logger.debug(f"Created {self.model_cls.__name__} for {list(conditions)}")
        return entity

    def find_or_initialize(self, conditions: Mapping[str, Any], attributes: Mapping[str, Any] | None = None) -> T:
        """Return the first entity matching ``conditions``, or a new unsaved one.

        The new entity is not added to the session.
        """
        entity = self.first(conditions)
        if entity is not None:
            return entity
        return self._build(conditions, attributes)

    def find_by_sql(
        self,
        query: str | Sequence[Any] | Any,
        options: RawQueryOptions | None = None,
        **option_kwargs: Any,
    ) -> ResultCollection:
        """Find entities with your own SQL query or SQLAlchemy statement.

        A query on the store this repository's session is bound to runs on the
        session's own connection, so it sees rows the session has flushed.

        Args:
            query: A SQL string, a ``[sql, *bind_values]`` sequence, or a SQLAlchemy
                statement such as ``select(User).where(...)``. Placeholders in
                literal SQL use the driver's paramstyle.
            options: A RawQueryOptions instance.
            **option_kwargs: ``repository``, ``properties`` and ``reload`` when ``options`` is omitted.

        Returns:
            A ResultCollection with one entity per row, in row order.

        Raises:
            InvalidQueryArgumentError: If ``query`` is not a query of some kind.
            UnsupportedStoreError: If the store cannot execute literal SQL.
            UnknownStoreError: If the named store is not registered.

        Example:
            >>> repo.find_by_sql(["SELECT id, name FROM users WHERE country = ?", "NL"])
            >>> repo.find_by_sql("SELECT id FROM users LIMIT 1", properties=["id"])
            >>> repo.find_by_sql(select(User).where(User.age > 30), repository="replica", reload=True)
        """
        if options is None:
            options = RawQueryOptions(**option_kwargs)
        elif option_kwargs:
            raise TypeError("Pass either options or keyword options to find_by_sql, not both.")  # noqa: TRY003

        store = self._resolve_store(options.repository)
        sql, bind_values = normalize_query(query, store)
        if not store.supports_raw_query:
            raise UnsupportedStoreError("find_by_sql", store.name)

        session = self._session_for(store)
        spec = RawQuerySpec(
            sql=sql,
            bind_values=tuple(bind_values),
            store=store,
            properties=resolve_properties(self.model_cls, options.properties),
            reload=options.reload,
        )
        return execute_raw_query(spec, session, self._session_connection(store))

    def _resolve_store(self, name: str | None) -> BaseStore:
        name = name or self.default_store_name
        if name in self.registry:
            return self.registry.get(name)
        if name != self.default_store_name:
            raise UnknownStoreError(name)

        # Unregistered default store: the engine this repository's session is bound to
        if self._implicit_store is None:
            self._implicit_store = SQLStore(name, self.session.get_bind(self.model_cls).engine)
        return self._implicit_store

    def _session_for(self, store: BaseStore) -> Session:
        if store.name == self.default_store_name:
            return self.session
        return store.session()

    def _session_connection(self, store: BaseStore) -> Connection | None:
        # Queries on the store behind this session join its open transaction
        if store.name != self.default_store_name or not isinstance(store, SQLStore):
            return None
        if self.session.get_bind(self.model_cls).engine is not store.engine:
            return None
        return self.session.connection(bind_arguments={"mapper": self.mapper})

    def _validate_attribute_names(self, names: Sequence[str]) -> None:
        column_attrs = self.mapper.column_attrs
        for name in names:
            if name not in column_attrs:
                raise UnknownAttributeError(self.model_cls.__name__, name)

    def _select(self, conditions: Mapping[str, Any] | None, extra: Mapping[str, Any]) -> Select:
        merged = {**(conditions or {}), **extra}
        self._validate_attribute_names(list(merged))

        stmt = select(self.model_cls)
        for name, value in merged.items():
            attribute = getattr(self.model_cls, name)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(attribute.in_(value))
            else:
                stmt = stmt.where(attribute == value)
        return stmt

    def _find_by_conditions(self, conditions: Mapping[str, Any], cardinality: Cardinality) -> T | list[T] | None:
        if cardinality is Cardinality.ALL:
            return self.all(conditions)
        return self.first(conditions)

    def _build(self, conditions: Mapping[str, Any], attributes: Mapping[str, Any] | None) -> T:
        values = {**conditions, **(attributes or {})}
        self._validate_attribute_names(list(values))
        return self.model_cls(**values)


class UnitOfWork:
    """Unit of Work pattern for managing database transactions.

    Ensures data consistency by grouping multiple repository operations
    into a single atomic transaction.
    """

    def __init__(self, session_factory: Any):
        """Initialize Unit of Work with a session factory.

        Args:
            session_factory: SQLAlchemy sessionmaker instance.
        """
        self.session_factory = session_factory
        self.session: Session | None = None

    def __enter__(self) -> "UnitOfWork":
        self.session = self.session_factory()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the context manager and clean up session.

        Automatically rolls back if an exception occurred.
        """
        if exc_type is not None:
            self.rollback()
        if self.session:
            self.session.close()

    def commit(self) -> None:
        """Commit the current transaction."""
        if self.session:
            self.session.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        if self.session:
            self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        if self.session:
            self.session.flush()


def create_repository(session: Session, model_cls: type[T], registry: StoreRegistry | None = None) -> GenericRepository[T]:
    """Factory function to create a repository instance.

    Example:
        >>> session = SessionFactory()
        >>> user_repo = create_repository(session, User)
        >>> user = user_repo.find_by_email("jane@example.com")
    """
    return GenericRepository(session, model_cls, registry)


@contextmanager
def repository_context(session_factory, model_cls: type[T], registry: StoreRegistry | None = None):
    """Context manager for quick repository operations.

    Combines UnitOfWork and Repository creation for simple use cases
    where you need to perform operations on a single model type.

    Args:
        session_factory: SQLAlchemy sessionmaker.
        model_cls: The model class for the repository.
        registry: Store registry for raw queries on named stores.

    Yields:
        A tuple of (repository, unit_of_work) for operations.

    Example:
        >>> with repository_context(SessionFactory, User) as (repo, uow):
        ...     user = repo.find_or_create({"email": "jane@example.com"}, {"name": "Jane"})
        ...     uow.commit()
    """
    with UnitOfWork(session_factory) as uow:
        if uow.session is None:
            raise NoSessionError
        repo = GenericRepository(uow.session, model_cls, registry)
        yield repo, uow
