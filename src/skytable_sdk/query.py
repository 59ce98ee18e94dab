"""
Query building for the Skytable SDK.

A ``QueryBuilder`` collects the statement text and its parameters, then
``finish()`` freezes them into an immutable ``Query`` that connections encode
and send. Several queries can be batched into a ``Pipeline``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from .exceptions import ConversionError, EmptyQueryError
from .marshal import is_record_type, schema_for, to_params, to_wire
from .protocol.codec import encode_param
from .types import Value, WireKind

LF = b"\n"


@dataclass(frozen=True)
class Query:
    """
    An immutable query: statement text plus ordered parameters.

    Attributes:
        statement: The BlueQL statement, or None for an empty query
        params: Parameters bound to the statement's ``?`` placeholders
    """

    statement: str | None = None
    params: tuple[Value, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.statement

    @property
    def param_count(self) -> int:
        return len(self.params)

    def _parts(self) -> tuple[bytes, bytes]:
        if not self.statement:
            raise EmptyQueryError("cannot encode an empty query")
        statement = self.statement.encode("utf-8")
        params = b"".join(encode_param(p) for p in self.params)
        return statement, params

    def encode(self) -> bytes:
        """
        Encode as a simple query packet.

        Raises:
            EmptyQueryError: If the query has no statement
        """
        statement, params = self._parts()
        window = str(len(statement)).encode("ascii")
        total = len(window) + 1 + len(statement) + len(params)
        return b"S" + str(total).encode("ascii") + LF + window + LF + statement + params

    def encode_pipelined(self) -> bytes:
        """Encode as one entry of a pipeline body."""
        statement, params = self._parts()
        return b"".join(
            [
                str(len(statement)).encode("ascii"),
                LF,
                str(len(params)).encode("ascii"),
                LF,
                statement,
                params,
            ]
        )


class QueryBuilder:
    """
    Mutable builder producing a frozen ``Query``.

    The first appended argument is the statement text; every later argument
    becomes a parameter. Records expand into one parameter per field.

    Example:
        q = QueryBuilder().append("insert into app.users(?, ?)").append("sayan").append(42).finish()
    """

    def __init__(self, statement: str | None = None):
        self._statement: str | None = None
        self._params: list[Value] = []
        self._finished = False
        if statement is not None:
            self.append(statement)

    @property
    def argument_count(self) -> int:
        return len(self._params) + (0 if self._statement is None else 1)

    def append(self, value: Any, tp: Any = None) -> QueryBuilder:
        """
        Append one argument.

        Args:
            value: Statement text (first call) or a parameter value
            tp: Optional type annotation selecting the wire kind

        Raises:
            RuntimeError: If the builder was already finished
            ConversionError: If the argument cannot be sent as a parameter
        """
        if self._finished:
            raise RuntimeError("query builder is already finished")

        if self._statement is None:
            if isinstance(value, Value) and value.kind == WireKind.STRING:
                value = value.data
            if not isinstance(value, str):
                raise ConversionError(
                    f"the first argument must be the statement text, got {type(value).__name__}",
                    position=0,
                )
            self._statement = value
            return self

        if tp is not None and is_record_type(tp):
            params = schema_for(tp).encode(value)
        elif tp is not None:
            params = [to_wire(value, tp)]
        else:
            params = to_params(value)

        for offset, param in enumerate(params):
            if param.kind.is_container:
                raise ConversionError(
                    f"{param.kind.name} values cannot be query parameters",
                    position=self.argument_count + offset,
                )
        self._params.extend(params)
        return self

    def extend(self, values: Iterable[Any]) -> QueryBuilder:
        for value in values:
            self.append(value)
        return self

    def finish(self) -> Query:
        """Freeze the builder into a ``Query``."""
        self._finished = True
        return Query(self._statement, tuple(self._params))


def query(statement: str, *params: Any) -> Query:
    """Build a query from a statement and its parameters in one call."""
    return QueryBuilder(statement).extend(params).finish()


class Pipeline:
    """
    An ordered batch of queries sent in one write.

    The server answers with one response per query, in order.
    """

    def __init__(self, queries: Iterable[Query] | None = None):
        self._queries: list[Query] = []
        for q in queries or ():
            self.add(q)

    @classmethod
    def of(cls, *queries: Query) -> Pipeline:
        return cls(queries)

    def add(self, q: Query) -> Pipeline:
        """
        Add a query to the batch.

        Raises:
            EmptyQueryError: If the query has no statement
        """
        if q.is_empty:
            raise EmptyQueryError("cannot add an empty query to a pipeline")
        self._queries.append(q)
        return self

    @property
    def queries(self) -> tuple[Query, ...]:
        return tuple(self._queries)

    def __len__(self) -> int:
        return len(self._queries)

    def __iter__(self) -> Iterator[Query]:
        return iter(self._queries)

    def encode(self) -> bytes:
        """
        Encode as a pipeline packet.

        Raises:
            EmptyQueryError: If the pipeline holds no queries
        """
        if not self._queries:
            raise EmptyQueryError("cannot execute an empty pipeline")
        body = b"".join(q.encode_pipelined() for q in self._queries)
        return b"P" + str(len(self._queries)).encode("ascii") + LF + str(len(body)).encode("ascii") + LF + body
