"""
Wire type model for the Skyhash protocol.

Provides the closed set of value kinds the protocol can carry, keyed by the
tag byte each kind uses on the wire, and an immutable value tree built from them.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Annotated, Any, Iterable


class WireKind(IntEnum):
    """Value kinds and their response tag bytes."""

    NULL = 0x00
    BOOL = 0x01
    UINT8 = 0x02
    UINT16 = 0x03
    UINT32 = 0x04
    UINT64 = 0x05
    SINT8 = 0x06
    SINT16 = 0x07
    SINT32 = 0x08
    SINT64 = 0x09
    FLOAT32 = 0x0A
    FLOAT64 = 0x0B
    BINARY = 0x0C
    STRING = 0x0D
    LIST = 0x0E
    TYPED_ARRAY = 0x0F

    @property
    def is_unsigned(self) -> bool:
        return WireKind.UINT8 <= self <= WireKind.UINT64

    @property
    def is_signed(self) -> bool:
        return WireKind.SINT8 <= self <= WireKind.SINT64

    @property
    def is_integer(self) -> bool:
        return self.is_unsigned or self.is_signed

    @property
    def is_float(self) -> bool:
        return self in (WireKind.FLOAT32, WireKind.FLOAT64)

    @property
    def is_sized(self) -> bool:
        """Whether the payload is a length token followed by raw bytes."""
        return self in (WireKind.BINARY, WireKind.STRING)

    @property
    def is_container(self) -> bool:
        return self in (WireKind.LIST, WireKind.TYPED_ARRAY)


# Inclusive bounds per integer kind
INTEGER_RANGES: dict[WireKind, tuple[int, int]] = {
    WireKind.UINT8: (0, 2**8 - 1),
    WireKind.UINT16: (0, 2**16 - 1),
    WireKind.UINT32: (0, 2**32 - 1),
    WireKind.UINT64: (0, 2**64 - 1),
    WireKind.SINT8: (-(2**7), 2**7 - 1),
    WireKind.SINT16: (-(2**15), 2**15 - 1),
    WireKind.SINT32: (-(2**31), 2**31 - 1),
    WireKind.SINT64: (-(2**63), 2**63 - 1),
}


def round_float32(value: float) -> float:
    """Round a Python float to the nearest IEEE-754 single precision value."""
    try:
        result: float = struct.unpack("<f", struct.pack("<f", value))[0]
    except OverflowError:
        raise ValueError(f"{value!r} is out of range for float32") from None
    return result


def _check_scalar(kind: WireKind, data: Any) -> Any:
    """Validate ``data`` for a scalar kind and return its normalized form."""
    if kind == WireKind.NULL:
        if data is not None:
            raise ValueError(f"NULL carries no data, got {data!r}")
        return None
    if kind == WireKind.BOOL:
        if not isinstance(data, bool):
            raise ValueError(f"BOOL requires a bool, got {type(data).__name__}")
        return data
    if kind.is_integer:
        if not isinstance(data, int) or isinstance(data, bool):
            raise ValueError(f"{kind.name} requires an int, got {type(data).__name__}")
        low, high = INTEGER_RANGES[kind]
        if not low <= data <= high:
            raise ValueError(f"{data} is out of range for {kind.name} [{low}, {high}]")
        return data
    if kind.is_float:
        if not isinstance(data, (int, float)) or isinstance(data, bool):
            raise ValueError(f"{kind.name} requires a float, got {type(data).__name__}")
        data = float(data)
        return round_float32(data) if kind == WireKind.FLOAT32 else data
    if kind == WireKind.STRING:
        if not isinstance(data, str):
            raise ValueError(f"STRING requires a str, got {type(data).__name__}")
        return data
    if kind == WireKind.BINARY:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ValueError(f"BINARY requires bytes, got {type(data).__name__}")
        return bytes(data)
    raise ValueError(f"{kind.name} is not a scalar kind")


@dataclass(frozen=True)
class Value:
    """
    One node of a wire value tree.

    Attributes:
        kind: The wire kind (and therefore the tag byte) of this value
        data: The Python payload; a tuple of ``Value`` for lists
    """

    kind: WireKind
    data: Any = None

    def __post_init__(self) -> None:
        kind = WireKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind == WireKind.TYPED_ARRAY:
            if not isinstance(self, TypedArray):
                raise ValueError("typed arrays must be built with TypedArray.of()")
            return
        if kind == WireKind.LIST:
            if not isinstance(self.data, (list, tuple)):
                raise ValueError(f"LIST requires a sequence, got {type(self.data).__name__}")
            items = tuple(self.data)
            for item in items:
                if not isinstance(item, Value):
                    raise ValueError(f"LIST elements must be Value, got {type(item).__name__}")
            object.__setattr__(self, "data", items)
            return
        object.__setattr__(self, "data", _check_scalar(kind, self.data))

    # Constructors

    @classmethod
    def null(cls) -> Value:
        return cls(WireKind.NULL)

    @classmethod
    def boolean(cls, value: bool) -> Value:
        return cls(WireKind.BOOL, value)

    @classmethod
    def uint8(cls, value: int) -> Value:
        return cls(WireKind.UINT8, value)

    @classmethod
    def uint16(cls, value: int) -> Value:
        return cls(WireKind.UINT16, value)

    @classmethod
    def uint32(cls, value: int) -> Value:
        return cls(WireKind.UINT32, value)

    @classmethod
    def uint64(cls, value: int) -> Value:
        return cls(WireKind.UINT64, value)

    @classmethod
    def sint8(cls, value: int) -> Value:
        return cls(WireKind.SINT8, value)

    @classmethod
    def sint16(cls, value: int) -> Value:
        return cls(WireKind.SINT16, value)

    @classmethod
    def sint32(cls, value: int) -> Value:
        return cls(WireKind.SINT32, value)

    @classmethod
    def sint64(cls, value: int) -> Value:
        return cls(WireKind.SINT64, value)

    @classmethod
    def float32(cls, value: float) -> Value:
        return cls(WireKind.FLOAT32, value)

    @classmethod
    def float64(cls, value: float) -> Value:
        return cls(WireKind.FLOAT64, value)

    @classmethod
    def string(cls, value: str) -> Value:
        return cls(WireKind.STRING, value)

    @classmethod
    def binary(cls, value: bytes) -> Value:
        return cls(WireKind.BINARY, value)

    @classmethod
    def list(cls, values: Iterable[Value]) -> Value:
        return cls(WireKind.LIST, tuple(values))

    # Accessors

    @property
    def is_null(self) -> bool:
        return self.kind == WireKind.NULL

    def to_python(self) -> Any:
        """Unwrap the tree into plain Python objects (lists for containers)."""
        if self.kind.is_container:
            return [item.to_python() for item in self.data]
        return self.data


@dataclass(frozen=True)
class TypedArray(Value):
    """
    A homogeneous array of one scalar kind.

    Null elements are only allowed when the array is declared ``nullable``.
    """

    element_kind: WireKind = WireKind.STRING
    nullable: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", WireKind.TYPED_ARRAY)
        element_kind = WireKind(self.element_kind)
        object.__setattr__(self, "element_kind", element_kind)
        if element_kind.is_container or element_kind == WireKind.NULL:
            raise ValueError(f"{element_kind.name} cannot be a typed array element kind")
        if not isinstance(self.data, (list, tuple)):
            raise ValueError(f"TYPED_ARRAY requires a sequence, got {type(self.data).__name__}")
        items = tuple(self.data)
        for index, item in enumerate(items):
            if not isinstance(item, Value):
                raise ValueError(f"element {index} must be Value, got {type(item).__name__}")
            if item.is_null:
                if not self.nullable:
                    raise ValueError(f"element {index} is null but the array is not nullable")
            elif item.kind != element_kind:
                raise ValueError(f"element {index} is {item.kind.name}, expected {element_kind.name}")
        object.__setattr__(self, "data", items)

    @classmethod
    def of(cls, element_kind: WireKind, values: Iterable[Any], nullable: bool = False) -> TypedArray:
        """
        Build a typed array from Python values or ``Value`` nodes.

        ``None`` entries become null elements.
        """
        items: list[Value] = []
        for item in values:
            if isinstance(item, Value):
                items.append(item)
            elif item is None:
                items.append(Value.null())
            else:
                items.append(Value(element_kind, item))
        return cls(WireKind.TYPED_ARRAY, tuple(items), element_kind, nullable)


@dataclass(frozen=True)
class Width:
    """Annotation marker pinning the wire kind of an int or float field."""

    kind: WireKind = field(default=WireKind.SINT64)


UInt8 = Annotated[int, Width(WireKind.UINT8)]
UInt16 = Annotated[int, Width(WireKind.UINT16)]
UInt32 = Annotated[int, Width(WireKind.UINT32)]
UInt64 = Annotated[int, Width(WireKind.UINT64)]
SInt8 = Annotated[int, Width(WireKind.SINT8)]
SInt16 = Annotated[int, Width(WireKind.SINT16)]
SInt32 = Annotated[int, Width(WireKind.SINT32)]
SInt64 = Annotated[int, Width(WireKind.SINT64)]
Float32 = Annotated[float, Width(WireKind.FLOAT32)]
Float64 = Annotated[float, Width(WireKind.FLOAT64)]
