"""
Builders for BlueQL data definition statements.

Identifiers cannot be bound as parameters, so they are validated here and
interpolated into the statement text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .query import Query
from .types import WireKind

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# BlueQL type names per wire kind
TYPE_NAMES: dict[WireKind, str] = {
    WireKind.BOOL: "bool",
    WireKind.UINT8: "uint8",
    WireKind.UINT16: "uint16",
    WireKind.UINT32: "uint32",
    WireKind.UINT64: "uint64",
    WireKind.SINT8: "sint8",
    WireKind.SINT16: "sint16",
    WireKind.SINT32: "sint32",
    WireKind.SINT64: "sint64",
    WireKind.FLOAT32: "float32",
    WireKind.FLOAT64: "float64",
    WireKind.BINARY: "binary",
    WireKind.STRING: "string",
}


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def _entity(space: str, model: str) -> str:
    return f"{_ident(space)}.{_ident(model)}"


def type_name(kind: WireKind | str) -> str:
    """Get the BlueQL spelling of a column type."""
    if isinstance(kind, str):
        return kind
    try:
        return TYPE_NAMES[kind]
    except KeyError:
        raise ValueError(f"{kind.name} has no column type; use list_of() for lists") from None


def list_of(kind: WireKind | str) -> str:
    """Column type for a list of ``kind``."""
    return f"list {{ type: {type_name(kind)} }}"


@dataclass(frozen=True)
class Field:
    """
    A model column.

    Attributes:
        name: Column name
        type: Wire kind or BlueQL type name
        nullable: Whether the column accepts null
        primary: Whether the column is the primary key
    """

    name: str
    type: WireKind | str = WireKind.STRING
    nullable: bool = False
    primary: bool = False

    def __post_init__(self) -> None:
        _ident(self.name)
        if self.primary and self.nullable:
            raise ValueError(f"primary key {self.name!r} cannot be nullable")

    def render(self) -> str:
        prefix = "null " if self.nullable else ""
        return f"{prefix}{self.name}: {type_name(self.type)}"


def create_space(space: str, if_not_exists: bool = False) -> Query:
    guard = "if not exists " if if_not_exists else ""
    return Query(f"create space {guard}{_ident(space)}")


def drop_space(space: str, if_exists: bool = False, allow_not_empty: bool = False) -> Query:
    guard = "if exists " if if_exists else ""
    force = "allow not empty " if allow_not_empty else ""
    return Query(f"drop space {guard}{force}{_ident(space)}")


def create_model(space: str, model: str, fields: list[Field], if_not_exists: bool = False) -> Query:
    """
    Build a ``create model`` statement.

    The primary key is always the first column; a field flagged ``primary``
    is moved there, otherwise the first field is the key.

    Raises:
        ValueError: If there are no fields, duplicate names or several primary keys
    """
    if not fields:
        raise ValueError("a model needs at least one field")
    names = [f.name for f in fields]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate field names in {names}")
    primary = [f for f in fields if f.primary]
    if len(primary) > 1:
        raise ValueError("a model can only have one primary key")
    if primary:
        ordered = primary + [f for f in fields if not f.primary]
    else:
        ordered = list(fields)
    if ordered[0].nullable:
        raise ValueError(f"primary key {ordered[0].name!r} cannot be nullable")

    guard = "if not exists " if if_not_exists else ""
    columns = ", ".join(f.render() for f in ordered)
    return Query(f"create model {guard}{_entity(space, model)}({columns})")


def drop_model(space: str, model: str, if_exists: bool = False, allow_not_empty: bool = False) -> Query:
    guard = "if exists " if if_exists else ""
    force = "allow not empty " if allow_not_empty else ""
    return Query(f"drop model {guard}{force}{_entity(space, model)}")


def use_space(space: str) -> Query:
    return Query(f"use {_ident(space)}")


def inspect(space: str | None = None, model: str | None = None) -> Query:
    """
    Build an ``inspect`` statement.

    With no arguments inspects the global namespace, with ``space`` a space,
    and with both a model.
    """
    if model is not None:
        if space is None:
            raise ValueError("inspecting a model requires its space")
        return Query(f"inspect model {_entity(space, model)}")
    if space is not None:
        return Query(f"inspect space {_ident(space)}")
    return Query("inspect global")
