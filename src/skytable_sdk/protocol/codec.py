"""
Skyhash 2.0 frame codec.

Encoding and decoding are pure and synchronous: the same functions back the
blocking and the asyncio connections, which only differ in how they wait for
more bytes.

Response frames (server -> client) start with a tag byte:

- 0x00..0x0F: a value (see ``WireKind``)
- 0x10: error response, followed by a little-endian u16 code
- 0x11: row, ``count LF`` then values
- 0x12: empty response
- 0x13: multirow, ``rows LF columns LF`` then values

Length and number tokens are ASCII decimal terminated by LF. A pipelined
answer is ``P count LF`` followed by that many responses.

Query parameters (client -> server) use their own, smaller tag table.
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from typing import Generic, TypeVar, cast

from ..exceptions import ConversionError, PipelineError, ProtocolError
from ..response import Response, ResponseKind, Row
from ..types import INTEGER_RANGES, TypedArray, Value, WireKind, round_float32

T = TypeVar("T")

LF = b"\n"

# Response-only tags
TAG_ERROR = 0x10
TAG_ROW = 0x11
TAG_EMPTY = 0x12
TAG_MULTIROW = 0x13
TAG_PIPELINE = ord("P")

# Query parameter tags
PARAM_NULL = 0x00
PARAM_BOOL = 0x01
PARAM_UINT = 0x02
PARAM_SINT = 0x03
PARAM_FLOAT = 0x04
PARAM_BINARY = 0x05
PARAM_STRING = 0x06

# Upper bound on any declared length or count; larger values are malformed
DEFAULT_MAX_SIZE = 1 << 30
MAX_DEPTH = 256
# Longest signed integer token: sign and 20 digits
_MAX_INT_TOKEN = 21
# Floats arrive without an exponent; the smallest f64 subnormal needs 327 bytes
_MAX_FLOAT_TOKEN = 400


# Encoding


def _encode_payload(kind: WireKind, data: object) -> bytes:
    if kind == WireKind.NULL:
        return b""
    if kind == WireKind.BOOL:
        return b"\x01" if data else b"\x00"
    if kind.is_integer:
        return str(data).encode("ascii") + LF
    if kind.is_float:
        return repr(float(data)).encode("ascii") + LF  # type: ignore[arg-type]
    if kind == WireKind.BINARY:
        raw = bytes(data)  # type: ignore[arg-type]
        return str(len(raw)).encode("ascii") + LF + raw
    if kind == WireKind.STRING:
        raw = str(data).encode("utf-8")
        return str(len(raw)).encode("ascii") + LF + raw
    raise ValueError(f"{kind.name} has no scalar payload")


def encode_value(value: Value) -> bytes:
    """Encode one value tree as a response-side frame."""
    parts: list[bytes] = []
    _encode_into(value, parts)
    return b"".join(parts)


def _encode_into(value: Value, parts: list[bytes]) -> None:
    parts.append(bytes((value.kind,)))
    if isinstance(value, TypedArray):
        parts.append(bytes((value.element_kind, 1 if value.nullable else 0)))
        parts.append(str(len(value.data)).encode("ascii") + LF)
        for item in value.data:
            if item.is_null:
                parts.append(b"\x00")
            else:
                parts.append(b"\x01" + _encode_payload(item.kind, item.data))
    elif value.kind == WireKind.LIST:
        parts.append(str(len(value.data)).encode("ascii") + LF)
        for item in value.data:
            _encode_into(item, parts)
    else:
        parts.append(_encode_payload(value.kind, value.data))


def encode_response(response: Response) -> bytes:
    """Encode a response frame, as the server would send it."""
    if response.kind == ResponseKind.EMPTY:
        return bytes((TAG_EMPTY,))
    if response.kind == ResponseKind.ERROR:
        code = response.error_code or 0
        return bytes((TAG_ERROR,)) + code.to_bytes(2, "little")
    if response.kind == ResponseKind.VALUE:
        return encode_value(cast(Value, response.value))

    parts: list[bytes] = []
    if response.kind == ResponseKind.ROW:
        row = response.rows[0]
        parts.append(bytes((TAG_ROW,)) + str(len(row)).encode("ascii") + LF)
        for value in row:
            _encode_into(value, parts)
        return b"".join(parts)

    columns = len(response.rows[0]) if response.rows else 0
    parts.append(bytes((TAG_MULTIROW,)))
    parts.append(str(len(response.rows)).encode("ascii") + LF)
    parts.append(str(columns).encode("ascii") + LF)
    for row in response.rows:
        if len(row) != columns:
            raise ValueError(f"all rows must have {columns} columns, got {len(row)}")
        for value in row:
            _encode_into(value, parts)
    return b"".join(parts)


def encode_pipeline_response(responses: list[Response]) -> bytes:
    """Encode the server's answer to a pipeline."""
    head = b"P" + str(len(responses)).encode("ascii") + LF
    return head + b"".join(encode_response(r) for r in responses)


def encode_param(value: Value) -> bytes:
    """
    Encode one query parameter.

    Raises:
        ConversionError: For lists and typed arrays, which cannot be parameters
    """
    kind = value.kind
    if kind == WireKind.NULL:
        return bytes((PARAM_NULL,))
    if kind == WireKind.BOOL:
        return bytes((PARAM_BOOL, 1 if value.data else 0))
    if kind.is_unsigned:
        return bytes((PARAM_UINT,)) + _encode_payload(kind, value.data)
    if kind.is_signed:
        return bytes((PARAM_SINT,)) + _encode_payload(kind, value.data)
    if kind.is_float:
        return bytes((PARAM_FLOAT,)) + _encode_payload(kind, value.data)
    if kind == WireKind.BINARY:
        return bytes((PARAM_BINARY,)) + _encode_payload(kind, value.data)
    if kind == WireKind.STRING:
        return bytes((PARAM_STRING,)) + _encode_payload(kind, value.data)
    raise ConversionError(f"{kind.name} values cannot be sent as query parameters")


# Decoding

# A parser suspends (yields) while the buffer is too short and returns its item
Parser = Generator[None, None, T]


@dataclass(frozen=True)
class DecodeResult(Generic[T]):
    """
    Outcome of one decode attempt.

    Attributes:
        complete: False when more bytes are needed
        value: The decoded item when complete
        position: Cursor after the item, or the unchanged start cursor
    """

    complete: bool
    value: T | None
    position: int

    @classmethod
    def incomplete(cls, position: int) -> DecodeResult[T]:
        return cls(False, None, position)


class Decoder:
    """
    Decodes response frames from a byte buffer starting at a cursor.

    Every ``decode_*`` method either consumes one whole item, reports that
    more bytes are needed (leaving the cursor where it was so the caller can
    retry after reading), or raises ``ProtocolError`` for malformed input.

    The ``parse_*`` methods are the resumable form used by connections: they
    return generators that suspend while the buffer is short and continue
    where they stopped once the caller has appended more bytes to the same
    ``bytearray``. Nothing is parsed twice.
    """

    def __init__(self, buffer: bytes | bytearray, position: int = 0, max_size: int = DEFAULT_MAX_SIZE):
        self.buffer = buffer
        self.position = position
        self.max_size = max_size

    def _attempt(self, parser: Parser[T]) -> DecodeResult[T]:
        start = self.position
        try:
            next(parser)
        except StopIteration as done:
            return DecodeResult(True, done.value, self.position)
        parser.close()
        self.position = start
        return DecodeResult.incomplete(start)

    def decode_value(self) -> DecodeResult[Value]:
        """Decode one tagged value."""
        return self._attempt(self.parse_value())

    def decode_response(self) -> DecodeResult[Response]:
        """Decode one response frame."""
        return self._attempt(self.parse_response())

    def decode_pipeline_header(self) -> DecodeResult[int]:
        """Decode ``P count LF`` and return the response count."""
        return self._attempt(self.parse_pipeline_header())

    def decode_pipeline(self) -> DecodeResult[list[Response]]:
        """
        Decode a whole pipelined answer.

        Raises:
            PipelineError: If a response is malformed; carries the responses
                decoded before it
        """

        def run() -> Parser[list[Response]]:
            count = yield from self.parse_pipeline_header()
            responses: list[Response] = []
            for index in range(count):
                try:
                    responses.append((yield from self.parse_response()))
                except ProtocolError as e:
                    raise PipelineError(f"response {index}: {e.message}", responses=responses) from e
            return responses

        return self._attempt(run())

    # Resumable parsers

    def parse_value(self) -> Parser[Value]:
        tag = yield from self._byte()
        return (yield from self._value(tag, 0))

    def parse_response(self) -> Parser[Response]:
        tag = yield from self._byte()
        if tag == TAG_ERROR:
            low = yield from self._byte()
            high = yield from self._byte()
            return Response.of_error(low | (high << 8))
        if tag == TAG_ROW:
            columns = yield from self._size()
            return Response.of_row((yield from self._row(columns)))
        if tag == TAG_EMPTY:
            return Response.empty()
        if tag == TAG_MULTIROW:
            count = yield from self._size()
            columns = yield from self._size()
            rows = []
            for _ in range(count):
                rows.append((yield from self._row(columns)))
            return Response.of_rows(rows)
        return Response.of_value((yield from self._value(tag, 0)))

    def parse_pipeline_header(self) -> Parser[int]:
        marker = yield from self._byte()
        if marker != TAG_PIPELINE:
            raise ProtocolError(f"expected pipeline marker, got {marker:#04x}")
        return (yield from self._size())

    # Primitives

    @property
    def remaining(self) -> int:
        return len(self.buffer) - self.position

    def _byte(self) -> Parser[int]:
        while self.position >= len(self.buffer):
            yield
        b = self.buffer[self.position]
        self.position += 1
        return b

    def _token(self, allowed: bytes, limit: int) -> Parser[bytes]:
        """Read up to LF; bytes outside ``allowed`` or an overlong token are malformed."""
        start = self.position
        while True:
            end = self.buffer.find(LF, start, start + limit + 1)
            chunk = bytes(self.buffer[start : end if end != -1 else min(len(self.buffer), start + limit + 1)])
            unexpected = chunk.translate(None, allowed)
            if unexpected:
                raise ProtocolError(f"unexpected byte {unexpected[0]:#04x} in number token")
            if end != -1:
                break
            if len(chunk) > limit:
                raise ProtocolError("number token is too long")
            yield
        if end == start:
            raise ProtocolError("empty number token")
        self.position = end + 1
        return chunk

    def _uint(self, high: int) -> Parser[int]:
        token = yield from self._token(b"0123456789", len(str(high)))
        value = int(token)
        if value > high:
            raise ProtocolError(f"{value} overflows the declared width")
        return value

    def _size(self) -> Parser[int]:
        size = yield from self._uint(2**64 - 1)
        if size > self.max_size:
            raise ProtocolError(f"declared size {size} exceeds the limit of {self.max_size}")
        return size

    def _sint(self, kind: WireKind) -> Parser[int]:
        low, high = INTEGER_RANGES[kind]
        token = yield from self._token(b"-0123456789", _MAX_INT_TOKEN)
        try:
            value = int(token)
        except ValueError:
            raise ProtocolError(f"invalid signed integer {token!r}") from None
        if not low <= value <= high:
            raise ProtocolError(f"{value} overflows {kind.name}")
        return value

    def _float(self, kind: WireKind) -> Parser[float]:
        token = yield from self._token(b"+-.0123456789eEinfaINFA", _MAX_FLOAT_TOKEN)
        try:
            value = float(token)
        except ValueError:
            raise ProtocolError(f"invalid float {token!r}") from None
        if kind != WireKind.FLOAT32:
            return value
        try:
            return round_float32(value)
        except ValueError:
            raise ProtocolError(f"{token.decode('ascii')} is out of range for FLOAT32") from None

    def _sized(self) -> Parser[bytes]:
        size = yield from self._size()
        while self.remaining < size:
            yield
        chunk = bytes(self.buffer[self.position : self.position + size])
        self.position += size
        return chunk

    # Values

    def _scalar(self, kind: WireKind) -> Parser[Value]:
        if kind == WireKind.NULL:
            return Value.null()
        if kind == WireKind.BOOL:
            b = yield from self._byte()
            if b > 1:
                raise ProtocolError(f"invalid boolean byte {b:#04x}")
            return Value.boolean(b == 1)
        if kind.is_unsigned:
            return Value(kind, (yield from self._uint(INTEGER_RANGES[kind][1])))
        if kind.is_signed:
            return Value(kind, (yield from self._sint(kind)))
        if kind.is_float:
            return Value(kind, (yield from self._float(kind)))
        if kind == WireKind.BINARY:
            return Value.binary((yield from self._sized()))
        if kind == WireKind.STRING:
            raw = yield from self._sized()
            try:
                return Value.string(raw.decode("utf-8"))
            except UnicodeDecodeError:
                raise ProtocolError("string is not valid UTF-8") from None
        raise ProtocolError(f"{kind.name} is not a scalar kind")

    def _value(self, tag: int, depth: int) -> Parser[Value]:
        if depth > MAX_DEPTH:
            raise ProtocolError("value nesting is too deep")
        try:
            kind = WireKind(tag)
        except ValueError:
            raise ProtocolError(f"unknown data type tag {tag:#04x}") from None
        if kind == WireKind.LIST:
            count = yield from self._size()
            items = []
            for _ in range(count):
                item_tag = yield from self._byte()
                items.append((yield from self._value(item_tag, depth + 1)))
            return Value.list(items)
        if kind == WireKind.TYPED_ARRAY:
            return (yield from self._typed_array())
        return (yield from self._scalar(kind))

    def _typed_array(self) -> Parser[TypedArray]:
        tag = yield from self._byte()
        try:
            element_kind = WireKind(tag)
        except ValueError:
            raise ProtocolError(f"unknown typed array element tag {tag:#04x}") from None
        if element_kind.is_container or element_kind == WireKind.NULL:
            raise ProtocolError(f"{element_kind.name} cannot be a typed array element")
        flag = yield from self._byte()
        if flag > 1:
            raise ProtocolError(f"invalid nullable flag {flag:#04x}")
        nullable = flag == 1
        count = yield from self._size()
        items: list[Value] = []
        for _ in range(count):
            marker = yield from self._byte()
            if marker == 0:
                if not nullable:
                    raise ProtocolError("null element in a non-nullable typed array")
                items.append(Value.null())
            elif marker == 1:
                items.append((yield from self._scalar(element_kind)))
            else:
                raise ProtocolError(f"invalid typed array element marker {marker:#04x}")
        return TypedArray(WireKind.TYPED_ARRAY, tuple(items), element_kind, nullable)

    def _row(self, columns: int) -> Parser[Row]:
        values = []
        for _ in range(columns):
            tag = yield from self._byte()
            values.append((yield from self._value(tag, 1)))
        return Row(tuple(values))


def decode_value(buffer: bytes, position: int = 0) -> DecodeResult[Value]:
    """Decode one value from ``buffer`` at ``position``."""
    return Decoder(buffer, position).decode_value()


def decode_response(buffer: bytes, position: int = 0) -> DecodeResult[Response]:
    """Decode one response frame from ``buffer`` at ``position``."""
    return Decoder(buffer, position).decode_response()
