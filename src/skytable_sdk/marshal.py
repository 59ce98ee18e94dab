"""
Marshalling between application values and the wire type model.

Every supported Python type resolves to a ``Converter`` that knows both
directions. User-defined records (dataclasses, pydantic models, or classes
registered with an explicit field list) are described by a ``RecordSchema``
that is built once per class, validated, and cached, so that encoding and
decoding always consult the same field order.
"""

from __future__ import annotations

import collections.abc
import dataclasses
import functools
import threading
import types
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Annotated, Any, Sequence, Union, cast, get_args, get_origin, get_type_hints

from pydantic import BaseModel, ValidationError

from .exceptions import ConversionError, ServerError
from .response import Response, ResponseKind, Row
from .types import INTEGER_RANGES, TypedArray, Value, WireKind, Width

NoneType = type(None)


class Converter(ABC):
    """Bidirectional conversion for one application type."""

    name: str = "value"

    @abstractmethod
    def to_wire(self, obj: Any) -> Value:
        """Convert an application value into a wire value."""
        ...

    @abstractmethod
    def from_wire(self, value: Value) -> Any:
        """Convert a wire value into an application value."""
        ...

    def _mismatch(self, value: Value) -> ConversionError:
        return ConversionError(f"cannot convert {value.kind.name} to {self.name}")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class AnyConverter(Converter):
    name = "any"

    def to_wire(self, obj: Any) -> Value:
        return to_wire(obj)

    def from_wire(self, value: Value) -> Any:
        return value.to_python()


class ValueConverter(Converter):
    """Pass-through for callers that want the raw tree."""

    name = "Value"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, Value):
            raise ConversionError(f"expected Value, got {type(obj).__name__}")
        return obj

    def from_wire(self, value: Value) -> Any:
        return value


class NullConverter(Converter):
    name = "None"

    def to_wire(self, obj: Any) -> Value:
        if obj is not None:
            raise ConversionError(f"expected None, got {type(obj).__name__}")
        return Value.null()

    def from_wire(self, value: Value) -> Any:
        if not value.is_null:
            raise self._mismatch(value)
        return None


class BoolConverter(Converter):
    name = "bool"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, bool):
            raise ConversionError(f"expected bool, got {type(obj).__name__}")
        return Value.boolean(obj)

    def from_wire(self, value: Value) -> Any:
        if value.kind != WireKind.BOOL:
            raise self._mismatch(value)
        return value.data


class IntConverter(Converter):
    """
    Integers, optionally pinned to one wire width.

    Without a width, non-negative ints encode as UINT64 and negative ints as
    SINT64, and any integer kind decodes. With a width, decoding a wider wire
    value fails on overflow instead of truncating.
    """

    def __init__(self, kind: WireKind | None = None):
        self.kind = kind
        self.name = kind.name if kind is not None else "int"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, int) or isinstance(obj, bool):
            raise ConversionError(f"expected int, got {type(obj).__name__}")
        kind = self.kind
        if kind is None:
            kind = WireKind.UINT64 if obj >= 0 else WireKind.SINT64
        try:
            return Value(kind, obj)
        except ValueError as e:
            raise ConversionError(str(e)) from e

    def from_wire(self, value: Value) -> Any:
        if not value.kind.is_integer:
            raise self._mismatch(value)
        if self.kind is not None:
            low, high = INTEGER_RANGES[self.kind]
            if not low <= value.data <= high:
                raise ConversionError(f"{value.data} overflows {self.kind.name}")
        return value.data


class FloatConverter(Converter):
    def __init__(self, kind: WireKind = WireKind.FLOAT64):
        self.kind = kind
        self.name = kind.name if kind != WireKind.FLOAT64 else "float"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, (int, float)) or isinstance(obj, bool):
            raise ConversionError(f"expected float, got {type(obj).__name__}")
        try:
            return Value(self.kind, obj)
        except ValueError as e:
            raise ConversionError(str(e)) from e

    def from_wire(self, value: Value) -> Any:
        if not value.kind.is_float:
            raise self._mismatch(value)
        return value.data


class StrConverter(Converter):
    name = "str"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, str):
            raise ConversionError(f"expected str, got {type(obj).__name__}")
        return Value.string(obj)

    def from_wire(self, value: Value) -> Any:
        if value.kind != WireKind.STRING:
            raise self._mismatch(value)
        return value.data


class BytesConverter(Converter):
    name = "bytes"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, (bytes, bytearray, memoryview)):
            raise ConversionError(f"expected bytes, got {type(obj).__name__}")
        return Value.binary(bytes(obj))

    def from_wire(self, value: Value) -> Any:
        if value.kind != WireKind.BINARY:
            raise self._mismatch(value)
        return value.data


class OptionalConverter(Converter):
    def __init__(self, inner: Converter):
        self.inner = inner
        self.name = f"Optional[{inner.name}]"

    def to_wire(self, obj: Any) -> Value:
        if obj is None:
            return Value.null()
        return self.inner.to_wire(obj)

    def from_wire(self, value: Value) -> Any:
        if value.is_null:
            return None
        return self.inner.from_wire(value)


class ListConverter(Converter):
    """Variable length sequences; decodes both lists and typed arrays."""

    def __init__(self, inner: Converter):
        self.inner = inner
        self.name = f"list[{inner.name}]"

    def to_wire(self, obj: Any) -> Value:
        if not isinstance(obj, (list, tuple)):
            raise ConversionError(f"expected list, got {type(obj).__name__}")
        items = []
        for position, item in enumerate(obj):
            try:
                items.append(self.inner.to_wire(item))
            except ConversionError as e:
                raise ConversionError(e.message, position=position) from e
        return Value.list(items)

    def from_wire(self, value: Value) -> Any:
        if not value.kind.is_container:
            raise self._mismatch(value)
        return _decode_items(self.inner, value.data)


class TupleConverter(Converter):
    """Fixed arity sequences: ``tuple[A, B, C]``."""

    def __init__(self, items: Sequence[Converter]):
        self.items = tuple(items)
        self.name = f"tuple[{', '.join(c.name for c in self.items)}]"

    @property
    def arity(self) -> int:
        return len(self.items)

    def to_wire(self, obj: Any) -> Value:
        return Value.list(self.encode_fields(obj))

    def encode_fields(self, obj: Any) -> list[Value]:
        if not isinstance(obj, (list, tuple)) or len(obj) != self.arity:
            raise ConversionError(f"expected a sequence of {self.arity} items for {self.name}")
        values = []
        for position, (converter, item) in enumerate(zip(self.items, obj)):
            try:
                values.append(converter.to_wire(item))
            except ConversionError as e:
                raise ConversionError(e.message, position=position) from e
        return values

    def from_wire(self, value: Value) -> Any:
        if not value.kind.is_container:
            raise self._mismatch(value)
        return self.decode_fields(value.data)

    def decode_fields(self, values: Sequence[Value]) -> tuple[Any, ...]:
        if len(values) != self.arity:
            raise ConversionError(f"expected {self.arity} items for {self.name}, got {len(values)}")
        return tuple(_decode_items(self.items, values))


class RecordConverter(Converter):
    """Records travel as a list of their fields in schema order."""

    def __init__(self, schema: RecordSchema):
        self.schema = schema
        self.name = schema.record_type.__name__

    def to_wire(self, obj: Any) -> Value:
        return Value.list(self.schema.encode(obj))

    def from_wire(self, value: Value) -> Any:
        if not value.kind.is_container:
            raise self._mismatch(value)
        return self.schema.decode(value.data)


def _decode_items(converters: Converter | Sequence[Converter], values: Sequence[Value]) -> list[Any]:
    result = []
    for position, item in enumerate(values):
        converter = converters if isinstance(converters, Converter) else converters[position]
        try:
            result.append(converter.from_wire(item))
        except ConversionError as e:
            raise ConversionError(e.message, position=position) from e
    return result


# Record schemas


@dataclass(frozen=True)
class FieldSpec:
    """One record field: its name and the converter for its type."""

    name: str
    converter: Converter


@dataclass(frozen=True)
class RecordSchema:
    """
    Ordered field layout of a record type.

    Encoding and decoding both walk ``fields`` in order; the order must match
    the column order of the query text the record is used with.
    """

    record_type: type
    fields: tuple[FieldSpec, ...]

    @property
    def arity(self) -> int:
        return len(self.fields)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def encode(self, obj: Any) -> list[Value]:
        """Encode a record into its field values, in order."""
        if not isinstance(obj, self.record_type):
            raise ConversionError(f"expected {self.record_type.__name__}, got {type(obj).__name__}")
        values = []
        for position, spec in enumerate(self.fields):
            try:
                values.append(spec.converter.to_wire(getattr(obj, spec.name)))
            except ConversionError as e:
                raise ConversionError(e.message, field=spec.name, position=position) from e
        return values

    def decode(self, values: Sequence[Value]) -> Any:
        """Build a record from field values, in order."""
        if len(values) != self.arity:
            raise ConversionError(
                f"{self.record_type.__name__} expects {self.arity} fields, got {len(values)}"
            )
        kwargs: dict[str, Any] = {}
        for position, (spec, value) in enumerate(zip(self.fields, values)):
            try:
                kwargs[spec.name] = spec.converter.from_wire(value)
            except ConversionError as e:
                raise ConversionError(e.message, field=spec.name, position=position) from e
        try:
            return self.record_type(**kwargs)
        except ValidationError as e:
            raise ConversionError(f"{self.record_type.__name__} rejected decoded fields: {e}") from e


_schema_registry: dict[type, RecordSchema] = {}
_schema_lock = threading.Lock()


def register_record(record_type: type, fields: Sequence[tuple[str, Any]]) -> RecordSchema:
    """
    Register an explicit field layout for a record class.

    Args:
        record_type: The class; it must accept the fields as keyword arguments
        fields: Ordered ``(field name, type annotation)`` pairs

    Returns:
        The cached schema
    """
    if not fields:
        raise TypeError(f"{record_type.__name__} must declare at least one field")
    names = [name for name, _ in fields]
    if len(set(names)) != len(names):
        raise TypeError(f"{record_type.__name__} declares duplicate fields: {names}")
    schema = RecordSchema(
        record_type=record_type,
        fields=tuple(FieldSpec(name, resolve(annotation)) for name, annotation in fields),
    )
    with _schema_lock:
        _schema_registry[record_type] = schema
    return schema


def record(*fields: tuple[str, Any]) -> Any:
    """
    Class decorator form of ``register_record``.

    Usage:
        @record(("username", str), ("age", UInt8))
        class User:
            def __init__(self, username: str, age: int): ...
    """

    def wrap(cls: type) -> type:
        register_record(cls, fields)
        return cls

    return wrap


def is_record_type(tp: Any) -> bool:
    """Check if a type can be marshalled as a record."""
    if not isinstance(tp, type):
        return False
    if tp in _schema_registry:
        return True
    return dataclasses.is_dataclass(tp) or issubclass(tp, BaseModel)


def schema_for(record_type: type) -> RecordSchema:
    """Get (building and caching on first use) the schema for a record class."""
    schema = _schema_registry.get(record_type)
    if schema is not None:
        return schema

    fields: list[tuple[str, Any]] = []
    if isinstance(record_type, type) and issubclass(record_type, BaseModel):
        # pydantic keeps Annotated metadata apart from the annotation
        for name, info in record_type.model_fields.items():
            annotation = info.annotation if info.annotation is not None else Any
            if info.metadata:
                annotation = Annotated[(annotation, *info.metadata)]
            fields.append((name, annotation))
    elif dataclasses.is_dataclass(record_type):
        try:
            hints = get_type_hints(record_type, include_extras=True)
        except NameError as e:
            raise TypeError(f"cannot read type hints of {record_type.__name__}: {e}") from e
        fields = [(f.name, hints.get(f.name, Any)) for f in dataclasses.fields(record_type) if f.init]
    else:
        raise TypeError(f"{record_type.__name__} is not a dataclass, pydantic model or registered record")

    try:
        return register_record(record_type, fields)
    except TypeError as e:
        raise TypeError(f"{record_type.__name__}: {e}") from e


# Type resolution

_PLAIN: dict[Any, Converter] = {
    Any: AnyConverter(),
    Value: ValueConverter(),
    NoneType: NullConverter(),
    None: NullConverter(),
    bool: BoolConverter(),
    int: IntConverter(),
    float: FloatConverter(),
    str: StrConverter(),
    bytes: BytesConverter(),
}


@functools.lru_cache(maxsize=512)
def resolve(tp: Any) -> Converter:
    """
    Resolve a type annotation into a converter.

    Supports ``bool``, ``int``, ``float``, ``str``, ``bytes``, ``None``,
    ``Value``, width aliases (``UInt8`` ...), ``Optional[T]``, ``list[T]``,
    ``tuple[A, B]`` and record classes.

    Raises:
        TypeError: If the annotation has no wire representation
    """
    if tp in _PLAIN:
        return _PLAIN[tp]
    if isinstance(tp, type) and issubclass(tp, Value):
        return _PLAIN[Value]

    origin = get_origin(tp)
    args = get_args(tp)

    if origin is Annotated:
        inner, *metadata = args
        for marker in metadata:
            if isinstance(marker, Width):
                if marker.kind.is_integer and inner is int:
                    return IntConverter(marker.kind)
                if marker.kind.is_float and inner is float:
                    return FloatConverter(marker.kind)
                raise TypeError(f"{marker.kind.name} does not apply to {inner!r}")
        return resolve(inner)

    if origin is Union or origin is types.UnionType:
        members = [a for a in args if a is not NoneType]
        if len(members) != 1:
            raise TypeError(f"unions other than Optional[T] are not supported: {tp!r}")
        return OptionalConverter(resolve(members[0]))

    if origin in (list, collections.abc.Sequence) or tp is list:
        return ListConverter(resolve(args[0]) if args else AnyConverter())

    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return ListConverter(resolve(args[0]))
        return TupleConverter([resolve(a) for a in args])

    if is_record_type(tp):
        return RecordConverter(schema_for(tp))

    raise TypeError(f"no wire representation for {tp!r}")


# Inference for untyped values


def to_wire(obj: Any, tp: Any = None) -> Value:
    """
    Convert an application value into a wire value.

    Args:
        obj: The value
        tp: Optional type annotation; inferred from ``obj`` when omitted

    Raises:
        ConversionError: If the value has no wire representation
    """
    if tp is not None:
        try:
            return resolve(tp).to_wire(obj)
        except TypeError as e:
            raise ConversionError(str(e)) from e
    if isinstance(obj, Value):
        return obj
    if obj is None:
        return Value.null()
    if isinstance(obj, bool):
        return Value.boolean(obj)
    if isinstance(obj, int):
        return _PLAIN[int].to_wire(obj)
    if isinstance(obj, float):
        return Value.float64(obj)
    if isinstance(obj, str):
        return Value.string(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return Value.binary(bytes(obj))
    if isinstance(obj, (list, tuple)):
        return ListConverter(AnyConverter()).to_wire(obj)
    if is_record_type(type(obj)):
        return Value.list(schema_for(type(obj)).encode(obj))
    raise ConversionError(f"no wire representation for {type(obj).__name__}")


def to_params(obj: Any) -> list[Value]:
    """Convert a value into query parameters; records expand to one per field."""
    if not isinstance(obj, (Value, list, tuple)) and is_record_type(type(obj)):
        return schema_for(type(obj)).encode(obj)
    return [to_wire(obj)]


def from_wire(value: Value, tp: Any = Any) -> Any:
    """
    Convert a wire value into an application value of type ``tp``.

    Raises:
        ConversionError: If the value's kind or shape does not fit ``tp``
    """
    try:
        converter = resolve(tp)
    except TypeError as e:
        raise ConversionError(str(e)) from e
    return converter.from_wire(value)


def typed_array(element_kind: WireKind, values: Sequence[Any], nullable: bool = False) -> TypedArray:
    """Build a typed array, reporting bad elements as ConversionError."""
    try:
        return TypedArray.of(element_kind, values, nullable)
    except ValueError as e:
        raise ConversionError(str(e)) from e


def _row_decoder(tp: Any) -> Any:
    if tp is Row:
        return lambda row: row
    if tp is Any:
        return lambda row: row.to_python()
    try:
        converter = resolve(tp)
    except TypeError as e:
        raise ConversionError(str(e)) from e
    if isinstance(converter, RecordConverter):
        return lambda row: converter.schema.decode(row.values)
    if isinstance(converter, TupleConverter):
        return lambda row: converter.decode_fields(row.values)
    raise ConversionError(f"a row cannot be converted to {converter.name}")


def from_response(response: Response, tp: Any = None) -> Any:
    """
    Convert a response into an application value.

    See ``Response.parse`` for the accepted targets.
    """
    if response.kind == ResponseKind.ERROR:
        raise ServerError(response.error_code if response.error_code is not None else 0)
    if tp is Response:
        return response
    if tp is Any:
        if response.kind == ResponseKind.EMPTY:
            return None
        if response.kind == ResponseKind.VALUE:
            return cast(Value, response.value).to_python()
        rows = [row.to_python() for row in response.rows]
        return rows[0] if response.kind == ResponseKind.ROW else rows

    if tp is None or tp is NoneType:
        if response.kind != ResponseKind.EMPTY:
            raise ConversionError(f"expected an empty response, got {response.kind.value}")
        return None

    if response.kind == ResponseKind.EMPTY:
        raise ConversionError("expected data, got an empty response")

    if response.kind == ResponseKind.VALUE:
        return from_wire(cast(Value, response.value), tp)

    if response.kind == ResponseKind.ROW:
        decode = _row_decoder(tp)
        return decode(response.rows[0])

    # ROWS
    if get_origin(tp) is not list and tp is not list:
        raise ConversionError(f"expected list[...] for a multi-row response, got {tp!r}")
    args = get_args(tp)
    decode = _row_decoder(args[0] if args else Any)
    rows = []
    for position, row in enumerate(response.rows):
        try:
            rows.append(decode(row))
        except ConversionError as e:
            raise ConversionError(f"row {position}: {e.message}") from e
    return rows
