"""Dynamic finders for orm-finders.

Names such as ``find_by_email`` or ``find_all_by_name_and_age`` are never
declared. When attribute lookup on a repository misses, the name is handed
to a ``DynamicFinderDispatcher``: if the name parses as a finder, the
dispatcher returns a callable that binds positional arguments to the
attributes named in it and runs the repository's generic lookup; any other
name is passed on, unchanged, to the next handler in the chain.

Example:
    >>> repo = GenericRepository(session, User)
    >>> repo.find_by_email("jane@example.com")          # -> repo.first({"email": ...})
    >>> repo.find_all_by_name_and_age("Jane", 31)       # -> repo.all({"name": ..., "age": ...})
"""

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from orm_finders.exceptions import BindingArityMismatchError

logger = logging.getLogger("ORM-Finders")

FINDER_PATTERN = re.compile(r"^find_(all_by|by)_([_a-zA-Z]\w*)$")
ATTRIBUTE_SEPARATOR = "_and_"


class Cardinality(Enum):
    """How many records a finder returns."""

    FIRST = "first"
    ALL = "all"


@dataclass(frozen=True)
class FinderMatch:
    """Structured result of parsing a finder name."""

    cardinality: Cardinality
    attribute_names: tuple[str, ...]


def parse_finder_name(name: str) -> FinderMatch | None:
    """Parse a method name into a finder request.

    Args:
        name: The attribute name that could not be resolved.

    Returns:
        A FinderMatch when the name follows the ``find_by_*`` / ``find_all_by_*``
        convention, None otherwise.
    """
    match = FINDER_PATTERN.match(name)
    if match is None:
        return None

    prefix, attributes = match.groups()
    cardinality = Cardinality.ALL if prefix == "all_by" else Cardinality.FIRST
    return FinderMatch(cardinality, tuple(attributes.split(ATTRIBUTE_SEPARATOR)))


def bind_finder_arguments(match: FinderMatch, args: Sequence[Any], finder_name: str = "finder") -> dict[str, Any]:
    """Zip the attribute names of a finder with the call's positional arguments.

    Raises:
        BindingArityMismatchError: If the number of arguments differs from the number of attributes.
    """
    if len(args) != len(match.attribute_names):
        raise BindingArityMismatchError(finder_name, len(match.attribute_names), len(args))
    return dict(zip(match.attribute_names, args, strict=True))


def raise_missing_attribute(owner: object) -> Callable[[str], Any]:
    """Build the terminal fallback: the standard AttributeError for ``owner``."""

    def fallback(name: str) -> Any:
        raise AttributeError(f"'{type(owner).__name__}' object has no attribute '{name}'")

    return fallback


class DynamicFinderDispatcher:
    """Resolve unknown names into finder callables, deferring everything else.

    Args:
        lookup: Generic lookup entry point, called as ``lookup(conditions, cardinality)``.
        fallback: Next handler in the chain, called with the original name
            when it is not a finder. Its return value (or exception) is passed through.
    """

    def __init__(
        self,
        lookup: Callable[[Mapping[str, Any], Cardinality], Any],
        fallback: Callable[[str], Any],
        validate: Callable[[Sequence[str]], None] | None = None,
    ):
        self.lookup = lookup
        self.fallback = fallback
        self.validate = validate

    def resolve(self, name: str) -> Any:
        match = parse_finder_name(name)
        if match is None:
            return self.fallback(name)

        if self.validate is not None:
            self.validate(match.attribute_names)

        def finder(*args: Any) -> Any:
            conditions = bind_finder_arguments(match, args, name)
            logger.debug(f"Dispatching {name} as {match.cardinality.value} lookup on {list(conditions)}")
            return self.lookup(conditions, match.cardinality)

        finder.__name__ = name
        return finder
