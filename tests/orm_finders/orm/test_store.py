"""Tests for orm_finders.orm.store module."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select, text
from sqlalchemy.dialects import postgresql

from orm_finders.exceptions import StoreAlreadyRegisteredError, UnknownStoreError, UnsupportedStoreError
from orm_finders.orm.store import BaseStore, SQLStore, StoreRegistry
from tests.models import User


class TestStoreRegistry:
    """Tests for StoreRegistry."""

    def test_register_and_get(self, registry: StoreRegistry):
        store = BaseStore("archive")

        assert registry.register(store) is store
        assert registry.get("archive") is store
        assert "archive" in registry
        assert registry.names() == ["archive"]
        assert len(registry) == 1

    def test_duplicate_name_is_rejected(self, registry: StoreRegistry):
        registry.register(BaseStore("archive"))

        with pytest.raises(StoreAlreadyRegisteredError, match="replace=True"):
            registry.register(BaseStore("archive"))

    def test_replace(self, registry: StoreRegistry):
        registry.register(BaseStore("archive"))
        replacement = registry.register(BaseStore("archive"), replace=True)

        assert registry.get("archive") is replacement

    def test_get_unknown_store(self, registry: StoreRegistry):
        with pytest.raises(UnknownStoreError, match="Store 'missing' is not registered."):
            registry.get("missing")

    def test_unregister(self, registry: StoreRegistry):
        store = registry.register(BaseStore("archive"))

        assert registry.unregister("archive") is store
        assert "archive" not in registry
        with pytest.raises(UnknownStoreError):
            registry.unregister("archive")

    def test_dispose_disposes_every_store(self, registry: StoreRegistry):
        first, second = MagicMock(spec=BaseStore), MagicMock(spec=BaseStore)
        first.name, second.name = "first", "second"
        registry.register(first)
        registry.register(second)

        registry.dispose()

        first.dispose.assert_called_once_with()
        second.dispose.assert_called_once_with()
        assert len(registry) == 0

    def test_from_config(self, tmp_path):
        (tmp_path / "stores.yaml").write_text(
            f"default:\n  url: sqlite:///{tmp_path / 'default.db'}\nreporting:\n  url: sqlite:///{tmp_path / 'reporting.db'}\n"
        )

        registry = StoreRegistry.from_config(tmp_path)
        try:
            assert registry.names() == ["default", "reporting"]
            assert isinstance(registry.get("reporting"), SQLStore)
            assert registry.get("reporting").engine.url.database == str(tmp_path / "reporting.db")
        finally:
            registry.dispose()

    def test_from_config_rejects_scalar_entries(self, tmp_path):
        config_file = tmp_path / "stores.yaml"
        config_file.write_text("default: sqlite://\n")

        with pytest.raises(TypeError, match="Store 'default'"):
            StoreRegistry.from_config(config_file)


class TestBaseStore:
    """Tests for BaseStore."""

    def test_cannot_run_raw_queries(self):
        store = BaseStore("archive")

        assert store.supports_raw_query is False
        with pytest.raises(UnsupportedStoreError, match="'archive'"), store.connection():
            pass
        with pytest.raises(UnsupportedStoreError):
            store.compile_statement(select(User))
        with pytest.raises(UnsupportedStoreError, match="#session"):
            store.session()


class TestSQLStore:
    """Tests for SQLStore."""

    def test_connection_is_returned_to_pool(self, db_engine):
        store = SQLStore("default", db_engine)

        with store.connection() as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1
            assert db_engine.pool.checkedout() == 1

        assert db_engine.pool.checkedout() == 0

    def test_connection_is_returned_to_pool_on_error(self, db_engine):
        store = SQLStore("default", db_engine)

        with pytest.raises(RuntimeError), store.connection():
            raise RuntimeError("boom")

        assert db_engine.pool.checkedout() == 0

    def test_session_is_thread_local_and_bound(self, db_engine):
        store = SQLStore("default", db_engine)

        assert store.session() is store.session()
        assert store.session().get_bind() is db_engine
        store.remove_session()

    def test_session_registry_is_created_on_first_use(self, db_engine):
        store = SQLStore("default", db_engine)
        store.remove_session()
        assert store._sessions is None

        session = store.session()

        assert store._sessions is not None
        assert store.session() is session
        store.dispose()

    def test_compile_statement_expands_in_lists(self, db_engine):
        store = SQLStore("default", db_engine)

        sql, bind_values = store.compile_statement(select(User.id).where(User.id.in_([1, 2, 3])))

        assert "POSTCOMPILE" not in sql
        assert "users.id IN (?, ?, ?)" in sql
        assert bind_values == [1, 2, 3]

    def test_compile_statement_with_qmark_dialect(self, db_engine):
        store = SQLStore("default", db_engine)

        sql, bind_values = store.compile_statement(select(User.id, User.name).where(User.age == 31, User.name != "Bob"))

        assert sql.count("?") == 2
        assert "users.age = ?" in sql
        assert bind_values == [31, "Bob"]

    def test_compile_text_clause(self, db_engine):
        store = SQLStore("default", db_engine)

        sql, bind_values = store.compile_statement(text("SELECT id FROM users WHERE name = :name").bindparams(name="Bob"))

        assert sql == "SELECT id FROM users WHERE name = ?"
        assert bind_values == ["Bob"]

    def test_compile_statement_with_named_paramstyle_dialect(self):
        engine = MagicMock()
        engine.dialect = postgresql.psycopg.dialect()
        store = SQLStore("pg", engine)

        sql, bind_values = store.compile_statement(select(User.id).where(User.age == 31))

        assert "users.age = %s" in sql
        assert bind_values == [31]

    def test_compile_in_list_with_named_paramstyle_dialect(self):
        engine = MagicMock()
        engine.dialect = postgresql.psycopg.dialect()
        store = SQLStore("pg", engine)

        sql, bind_values = store.compile_statement(select(User.id).where(User.name.in_(["Alice", "Bob"])))

        assert "users.name IN (%s, %s)" in sql
        assert bind_values == ["Alice", "Bob"]
