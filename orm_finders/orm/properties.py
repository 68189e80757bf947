"""Attribute projections for mapped classes."""

from collections.abc import Iterable, Iterator
from typing import Any, Union

from sqlalchemy import Column, inspect
from sqlalchemy.orm import ColumnProperty, Mapper, QueryableAttribute

from orm_finders.exceptions import UnknownAttributeError

PropertyLike = Union[str, ColumnProperty, QueryableAttribute]
PropertiesOption = Union[PropertyLike, Iterable[PropertyLike], "AttributeSet"]


class AttributeSet:
    """Ordered set of column attributes belonging to one mapped class.

    Every member is a ``ColumnProperty`` of the owning model's mapper; building a
    set with an attribute of another model raises ``UnknownAttributeError``.
    Duplicates are dropped, first occurrence wins.
    """

    def __init__(self, model_cls: type, attributes: Iterable[PropertyLike]):
        self.model_cls = model_cls
        self.mapper: Mapper = inspect(model_cls)

        resolved: dict[str, ColumnProperty] = {}
        for attribute in attributes:
            prop = _column_property(self.mapper, attribute)
            resolved.setdefault(prop.key, prop)
        self._properties = tuple(resolved.values())

    @classmethod
    def all(cls, model_cls: type) -> "AttributeSet":
        """Every declared column attribute of the model, in mapper order."""
        return cls(model_cls, inspect(model_cls).column_attrs)

    @property
    def names(self) -> list[str]:
        return [prop.key for prop in self._properties]

    @property
    def columns(self) -> list[Column]:
        return [prop.columns[0] for prop in self._properties]

    @property
    def field_map(self) -> dict[str, str]:
        """Storage column name -> attribute key."""
        return {prop.columns[0].name: prop.key for prop in self._properties}

    def __iter__(self) -> Iterator[ColumnProperty]:
        return iter(self._properties)

    def __len__(self) -> int:
        return len(self._properties)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return item in self.names
        if isinstance(item, QueryableAttribute):
            item = item.property
        return item in self._properties

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeSet):
            return NotImplemented
        return self.mapper is other.mapper and self._properties == other._properties

    def __hash__(self) -> int:
        return hash((self.mapper, self._properties))

    def __repr__(self) -> str:
        return f"AttributeSet({self.model_cls.__name__}, {self.names})"


def _column_property(mapper: Mapper, attribute: Any) -> ColumnProperty:
    model_name = mapper.class_.__name__

    if isinstance(attribute, str):
        prop = mapper.column_attrs.get(attribute)
        if prop is None:
            raise UnknownAttributeError(model_name, attribute)
        return prop

    if isinstance(attribute, QueryableAttribute):
        attribute = attribute.property

    if not isinstance(attribute, ColumnProperty):
        raise UnknownAttributeError(model_name, str(getattr(attribute, "key", attribute)))

    # Attributes inherited from a parent mapper are accepted, foreign ones are not
    if not mapper.isa(attribute.parent) or attribute.key not in mapper.column_attrs:
        raise UnknownAttributeError(model_name, f"{attribute.parent.class_.__name__}.{attribute.key}")
    return mapper.column_attrs[attribute.key]


def resolve_properties(model_cls: type, properties: PropertiesOption | None = None) -> AttributeSet:
    """Normalize a ``properties`` option into a single AttributeSet.

    Args:
        model_cls: The mapped class the projection belongs to.
        properties: None for every declared column, a single attribute name,
            an instrumented attribute (``User.id``), a ColumnProperty, a list of
            any of those, or a pre-built AttributeSet.

    Returns:
        The projection as an AttributeSet of ``model_cls``.

    Raises:
        UnknownAttributeError: If any attribute is not a column of ``model_cls``.
    """
    if properties is None:
        return AttributeSet.all(model_cls)
    if isinstance(properties, AttributeSet):
        # Re-validate so a set built for another model cannot slip through
        return properties if properties.model_cls is model_cls else AttributeSet(model_cls, properties)
    if isinstance(properties, (str, ColumnProperty, QueryableAttribute)):
        return AttributeSet(model_cls, [properties])
    return AttributeSet(model_cls, properties)
