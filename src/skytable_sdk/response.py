"""
Response types for the Skytable SDK.

Provides typed wrappers around decoded server responses instead of raw value trees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from .exceptions import ServerError
from .types import Value


class ResponseKind(str, Enum):
    """Shape of a server response."""

    EMPTY = "empty"
    VALUE = "value"
    ROW = "row"
    ROWS = "rows"
    ERROR = "error"


@dataclass(frozen=True)
class Row:
    """A single row: an ordered tuple of column values."""

    values: tuple[Value, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Value]:
        return iter(self.values)

    def __getitem__(self, index: int) -> Value:
        return self.values[index]

    def to_python(self) -> list[Any]:
        return [value.to_python() for value in self.values]


@dataclass(frozen=True)
class Response:
    """
    Response to a single query.

    Attributes:
        kind: Which shape the server answered with
        value: The value for VALUE responses
        rows: One row for ROW responses, every row for ROWS responses
        error_code: The server error code for ERROR responses
    """

    kind: ResponseKind
    value: Value | None = None
    rows: tuple[Row, ...] = field(default_factory=tuple)
    error_code: int | None = None

    # Constructors used by the decoder and by tests

    @classmethod
    def empty(cls) -> Response:
        return cls(ResponseKind.EMPTY)

    @classmethod
    def of_value(cls, value: Value) -> Response:
        return cls(ResponseKind.VALUE, value=value)

    @classmethod
    def of_row(cls, row: Row) -> Response:
        return cls(ResponseKind.ROW, rows=(row,))

    @classmethod
    def of_rows(cls, rows: list[Row] | tuple[Row, ...]) -> Response:
        return cls(ResponseKind.ROWS, rows=tuple(rows))

    @classmethod
    def of_error(cls, code: int) -> Response:
        return cls(ResponseKind.ERROR, error_code=code)

    @property
    def is_ok(self) -> bool:
        """Check if the server accepted the query."""
        return self.kind != ResponseKind.ERROR

    @property
    def is_error(self) -> bool:
        """Check if the server answered with an error code."""
        return self.kind == ResponseKind.ERROR

    @property
    def row(self) -> Row | None:
        """Get the row of a ROW response, or None."""
        if self.kind == ResponseKind.ROW:
            return self.rows[0]
        return None

    def raise_for_error(self) -> Response:
        """Raise ServerError for error responses, return self otherwise."""
        if self.error_code is not None and self.is_error:
            raise ServerError(self.error_code)
        return self

    def parse(self, target: Any = None) -> Any:
        """
        Convert the response into an application value.

        Args:
            target: Target type. ``None`` expects an empty response, a record
                class or ``tuple[...]`` expects a row, ``list[Record]`` expects
                rows, and any other type expects a single value.

        Raises:
            ServerError: If the server answered with an error code
            ConversionError: If the response shape does not match the target
        """
        from .marshal import from_response

        return from_response(self, target)
