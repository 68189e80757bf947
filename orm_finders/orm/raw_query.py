"""Raw SQL execution mapped back into ORM instances.

The literal SQL is sent to the driver as-is through ``exec_driver_sql``, so
placeholders follow the driver's paramstyle (``?`` for sqlite3, ``%s`` for
psycopg) and bind values are passed positionally.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, overload

from sqlalchemy import Connection, Dialect, inspect
from sqlalchemy.orm import Mapper, Session, make_transient_to_detached
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.sql.expression import Executable

from orm_finders.exceptions import InvalidQueryArgumentError, UnsupportedStoreError
from orm_finders.orm.properties import AttributeSet, PropertiesOption
from orm_finders.orm.store import BaseStore

logger = logging.getLogger("ORM-Finders")

ResultRow = dict[str, Any]


@dataclass(frozen=True)
class RawQueryOptions:
    """Options accepted by ``find_by_sql``.

    Attributes:
        repository: Name of the store to query. None uses the model's default store.
        properties: Attributes to load. A single name, an instrumented attribute,
            a list of either, or an AttributeSet. None loads every declared column.
        reload: Overwrite attributes of instances already present in the session.
    """

    repository: str | None = None
    properties: PropertiesOption | None = None
    reload: bool = False

    def __post_init__(self):
        if self.repository is not None and not isinstance(self.repository, str):
            raise TypeError(f"repository must be a store name, got {type(self.repository).__name__}.")  # noqa: TRY003
        if not isinstance(self.reload, bool):
            raise TypeError(f"reload must be a bool, got {type(self.reload).__name__}.")  # noqa: TRY003


@dataclass(frozen=True)
class RawQuerySpec:
    """A normalized raw query, ready to execute."""

    sql: str
    bind_values: tuple[Any, ...]
    store: BaseStore
    properties: AttributeSet
    reload: bool = False


@dataclass(frozen=True)
class RecordQuery:
    """Describes how loaded rows become records."""

    store: BaseStore
    model_cls: type
    fields: AttributeSet
    reload: bool = False


class ResultCollection(Sequence):
    """Ordered records returned by a raw query, together with the query that loaded them."""

    def __init__(self, query: RecordQuery, records: Iterable[Any]):
        self.query = query
        self._records = list(records)

    @overload
    def __getitem__(self, index: int) -> Any: ...

    @overload
    def __getitem__(self, index: slice) -> list[Any]: ...

    def __getitem__(self, index):
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ResultCollection):
            return self._records == other._records
        if isinstance(other, list):
            return self._records == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ResultCollection({self.query.model_cls.__name__}, {len(self)} records)"


def normalize_query(query: Any, store: BaseStore, method_name: str = "find_by_sql") -> tuple[str, list[Any]]:
    """Split a query-like value into SQL text and positional bind values.

    Args:
        query: ``"SELECT ..."``, ``["SELECT ... WHERE a = ?", value, ...]``
            or a SQLAlchemy statement such as ``select(User)``.
        store: Store whose dialect compiles SQLAlchemy statements.
        method_name: Public name reported in errors.

    Returns:
        Tuple of (sql text, bind values).

    Raises:
        InvalidQueryArgumentError: For any other kind of value.
    """
    if isinstance(query, str):
        return query, []
    if isinstance(query, (list, tuple)):
        if not query or not isinstance(query[0], str):
            raise InvalidQueryArgumentError(method_name, query)
        sql, *bind_values = query
        return sql, bind_values
    if isinstance(query, Executable):
        if not store.supports_raw_query:
            raise UnsupportedStoreError(method_name, store.name)
        return store.compile_statement(query)
    raise InvalidQueryArgumentError(method_name, query)


def _typecasters(fields: AttributeSet, dialect: Dialect) -> dict[str, Any]:
    casters = {}
    for column in fields.columns:
        processor = column.type.dialect_impl(dialect).result_processor(dialect, None)
        if processor is not None:
            casters[column.name] = processor
    return casters


def _primary_key_attributes(mapper: Mapper) -> list[str]:
    return [mapper.get_property_by_column(column).key for column in mapper.primary_key]


def _new_instance(mapper: Mapper, values: Mapping[str, Any]) -> Any:
    instance = mapper.class_manager.new_instance()
    for key, value in values.items():
        set_committed_value(instance, key, value)
    return instance


def load_records(query: RecordQuery, rows: Iterable[ResultRow], session: Session) -> list[Any]:
    """Hydrate mapped instances from filtered rows.

    Rows are keyed by storage column name. An instance whose identity is
    already in ``session`` is reused; its attributes are overwritten only when
    ``query.reload`` is set, otherwise only its unloaded attributes are filled.
    New instances with a complete primary key join the session as persistent
    objects (no INSERT is issued) and their unprojected attributes stay
    unloaded. Rows without a complete primary key produce transient instances.

    Args:
        query: The record query describing model, fields and reload behavior.
        rows: Filtered result rows, in the order they were read.
        session: Session the records are attached to.

    Returns:
        One record per row, in row order.
    """
    mapper: Mapper = inspect(query.model_cls)
    field_map = query.fields.field_map
    pk_keys = _primary_key_attributes(mapper)
    dialect = getattr(query.store, "dialect", None)
    casters = _typecasters(query.fields, dialect) if dialect is not None else {}

    records = []
    for row in rows:
        values = {}
        for field, value in row.items():
            caster = casters.get(field)
            values[field_map[field]] = caster(value) if caster is not None else value

        pk = tuple(values.get(key) for key in pk_keys)
        if any(value is None for value in pk):
            records.append(_new_instance(mapper, values))
            continue

        existing = session.identity_map.get(mapper.identity_key_from_primary_key(pk))
        if existing is not None:
            keys = values.keys() if query.reload else values.keys() & inspect(existing).unloaded
            for key in keys:
                set_committed_value(existing, key, values[key])
            records.append(existing)
            continue

        instance = _new_instance(mapper, values)
        make_transient_to_detached(instance)
        session.add(instance)
        records.append(instance)
    return records


def _read_rows(conn: Connection, spec: RawQuerySpec) -> list[ResultRow]:
    used_fields = spec.properties.field_map
    rows: list[ResultRow] = []

    result = conn.exec_driver_sql(spec.sql, spec.bind_values)
    try:
        fields = list(result.keys())
        for values in result:
            rows.append({field: value for field, value in zip(fields, values) if field in used_fields})
    finally:
        result.close()
    return rows


def fetch_rows(spec: RawQuerySpec, connection: Connection | None = None) -> list[ResultRow]:
    """Run the query and keep only the projected columns.

    With ``connection`` given (the session's own connection, inside its
    transaction) the query runs there and the connection is left open.
    Otherwise a connection is checked out from the store and returned to the
    pool on every exit path. The cursor is always closed; nothing is returned
    when iteration fails part way through.
    """
    if not spec.store.supports_raw_query:
        raise UnsupportedStoreError("find_by_sql", spec.store.name)

    logger.debug(f"Executing raw query on store '{spec.store.name}' with {len(spec.bind_values)} bind value(s)")
    if connection is not None:
        rows = _read_rows(connection, spec)
    else:
        with spec.store.connection() as conn:
            rows = _read_rows(conn, spec)

    logger.debug(f"Raw query on store '{spec.store.name}' returned {len(rows)} row(s)")
    return rows


def execute_raw_query(spec: RawQuerySpec, session: Session, connection: Connection | None = None) -> ResultCollection:
    """Execute a raw query and return its rows as records of ``spec.properties.model_cls``."""
    rows = fetch_rows(spec, connection)
    query = RecordQuery(spec.store, spec.properties.model_cls, spec.properties, spec.reload)
    return ResultCollection(query, load_records(query, rows, session))
