"""Repository module for orm-finders.

This module provides repository classes for data access layer operations.
"""

from orm_finders.orm.repository.base import (
    GenericRepository,
    Selector,
    UnitOfWork,
    create_repository,
    repository_context,
)

__all__ = [
    "GenericRepository",
    "Selector",
    "UnitOfWork",
    "create_repository",
    "repository_context",
]
