from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from orm_finders.orm.store import StoreRegistry
from tests.models import SEED_USERS, Base, User


@pytest.fixture
def db_engine(tmp_path) -> Generator[Engine, Any, None]:
    """Create a file-backed SQLite engine with the test tables.

    A file database (rather than ``sqlite://``) gives every pooled connection
    the same data, which raw queries on a separate connection rely on.
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'finders.db'}")
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Create a thread-safe scoped session factory bound to the test engine."""
    return scoped_session(sessionmaker(bind=db_engine))


@pytest.fixture
def db_session(session_factory) -> Generator[Session, Any, None]:
    """Create a new database session for each test.

    The session is rolled back after the test to discard uncommitted work.
    """
    session = session_factory()

    yield session

    session.rollback()
    session_factory.remove()


@pytest.fixture
def seeded_session(db_session: Session) -> Session:
    """A session whose database holds the seed users, with an empty identity map."""
    db_session.add_all([User(**values) for values in SEED_USERS])
    db_session.commit()
    db_session.expunge_all()
    return db_session


@pytest.fixture
def registry() -> Generator[StoreRegistry, Any, None]:
    """An isolated store registry, disposed after the test."""
    store_registry = StoreRegistry()

    yield store_registry

    store_registry.dispose()
