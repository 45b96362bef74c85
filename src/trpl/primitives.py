"""Cursor based reads and writes of the replay format's primitive fields.

Fixed-width integers are little-endian. Variable-length integers use the
game's own VLQ flavour: 7-bit groups, most significant group first, with
the high bit set on every byte except the last one.

    0x00       -> 0
    0x81 0x00  -> 0x80
    0xFF 0x7F  -> 0x3FFF
"""

from __future__ import annotations

from typing import Any, Callable, Final

from construct import Construct, ConstructError, Int8ul, Int16ul, Int32ul, Int64ul, IntegerError, SizeofError
from construct import StreamError
from construct.core import stream_read, stream_write

from .errors import InvalidModel, MalformedInput, TruncatedInput

U64_MAX: Final[int] = (1 << 64) - 1
VLQ_MAX_BYTES: Final[int] = 10


def encode_vlq(value: int) -> bytes:
    value = int(value)
    if value < 0 or value > U64_MAX:
        raise IntegerError(f"varint out of range: {value}")
    out = bytearray([value & 0x7F])
    value >>= 7
    while value:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.reverse()
    return bytes(out)


def decode_vlq(next_byte: Callable[[], int]) -> int:
    value = 0
    for index in range(VLQ_MAX_BYTES):
        byte = next_byte()
        if index == 0 and byte == 0x80:
            raise IntegerError("non-canonical varint (leading zero group)")
        value = (value << 7) | (byte & 0x7F)
        if byte < 0x80:
            if value > U64_MAX:
                raise IntegerError("varint exceeds 64 bits")
            return value
    raise IntegerError(f"varint longer than {VLQ_MAX_BYTES} bytes")


class _Vlq(Construct):
    """construct field type for the VLQ varint."""

    def _parse(self, stream, context, path):
        return decode_vlq(lambda: stream_read(stream, 1, path)[0])

    def _build(self, obj, stream, context, path):
        try:
            data = encode_vlq(obj)
        except (TypeError, ValueError) as exc:
            raise IntegerError(f"cannot encode {obj!r} as varint", path=path) from exc
        stream_write(stream, data, len(data), path)
        return obj

    def _sizeof(self, context, path):
        raise SizeofError("varint has no fixed size", path=path)


Vlq = _Vlq()


class ByteReader:
    """Read cursor over `data[start:end]`.

    Doubles as a read-only binary stream so construct layouts can be parsed
    in place with `parse()`. Reads never extend past `end`.
    """

    def __init__(self, data: bytes, start: int = 0, end: int | None = None) -> None:
        self._data = bytes(data)
        self._view = memoryview(self._data)
        self._start = int(start)
        self._end = len(self._data) if end is None else int(end)
        if not (0 <= self._start <= self._end <= len(self._data)):
            raise ValueError(f"invalid reader bounds: {self._start}..{self._end} of {len(self._data)}")
        self._pos = self._start
        self._shortfall: tuple[int, int, int] | None = None

    @property
    def offset(self) -> int:
        return self._pos

    @property
    def end(self) -> int:
        return self._end

    @property
    def remaining(self) -> int:
        return self._end - self._pos

    def at_end(self) -> bool:
        return self._pos >= self._end

    # Stream protocol used by construct.

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = self.remaining
        if size > self.remaining:
            self._shortfall = (self._pos, int(size), self.remaining)
            return b""
        return bytes(self._take(size))

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = 0) -> int:
        base = {0: self._start, 1: self._pos, 2: self._end}[whence]
        target = base + int(offset)
        if not (self._start <= target <= self._end):
            raise ValueError(f"seek outside reader bounds: {target}")
        self._pos = target
        return self._pos

    def _take(self, size: int, what: str = "") -> memoryview:
        if size > self.remaining:
            raise TruncatedInput(offset=self._pos, requested=size, available=self.remaining, what=what)
        chunk = self._view[self._pos : self._pos + size]
        self._pos += size
        return chunk

    def read_u8(self) -> int:
        if self._pos >= self._end:
            raise TruncatedInput(offset=self._pos, requested=1, available=0, what="u8")
        value = self._data[self._pos]
        self._pos += 1
        return value

    def read_u16(self) -> int:
        return int.from_bytes(self._take(2, "u16"), "little")

    def read_u32(self) -> int:
        return int.from_bytes(self._take(4, "u32"), "little")

    def read_u64(self) -> int:
        return int.from_bytes(self._take(8, "u64"), "little")

    def read_varint(self) -> int:
        start = self._pos
        try:
            return decode_vlq(self.read_u8)
        except IntegerError as exc:
            raise MalformedInput(str(exc), offset=start) from exc

    def read_bytes(self, size: int) -> bytes:
        return bytes(self._take(int(size), "bytes"))

    def read_length_prefixed_bytes(self) -> bytes:
        length = self.read_varint()
        return bytes(self._take(length, "length-prefixed block"))

    def read_text(self) -> str:
        start = self._pos
        raw = self.read_length_prefixed_bytes()
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInput(f"text is not valid UTF-8: {exc.reason}", offset=start) from exc

    def parse(self, subcon: Construct) -> Any:
        start = self._pos
        self._shortfall = None
        try:
            return subcon.parse_stream(self)
        except StreamError as exc:
            if self._shortfall is not None:
                offset, requested, available = self._shortfall
                raise TruncatedInput(offset=offset, requested=requested, available=available, what=str(exc.path or "")) from exc
            raise TruncatedInput(offset=self._pos, requested=1, available=self.remaining) from exc
        except UnicodeDecodeError as exc:
            raise MalformedInput(f"text is not valid UTF-8: {exc.reason}", offset=start) from exc
        except ConstructError as exc:
            raise MalformedInput(str(exc), offset=start) from exc


class ByteWriter:
    """Growing output buffer; the mirror image of `ByteReader`."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def __len__(self) -> int:
        return len(self._buf)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def _fixed(self, subcon: Construct, value: int, what: str) -> None:
        try:
            self._buf += subcon.build(value)
        except ConstructError as exc:
            raise InvalidModel("value does not fit", field=what, expected=f"{what} range", actual=value) from exc

    def write_u8(self, value: int) -> None:
        self._fixed(Int8ul, value, "u8")

    def write_u16(self, value: int) -> None:
        self._fixed(Int16ul, value, "u16")

    def write_u32(self, value: int) -> None:
        self._fixed(Int32ul, value, "u32")

    def write_u64(self, value: int) -> None:
        self._fixed(Int64ul, value, "u64")

    def write_varint(self, value: int) -> None:
        try:
            self._buf += encode_vlq(value)
        except IntegerError as exc:
            raise InvalidModel("value does not fit", field="varint", expected="0..2**64-1", actual=value) from exc

    def write_bytes(self, data: bytes) -> None:
        self._buf += data

    def write_length_prefixed_bytes(self, data: bytes) -> None:
        self.write_varint(len(data))
        self._buf += data

    def write_text(self, text: str) -> None:
        try:
            raw = str(text).encode("utf-8")
        except UnicodeEncodeError as exc:
            raise InvalidModel("text is not encodable as UTF-8", field="text", actual=text) from exc
        self.write_length_prefixed_bytes(raw)

    def build(self, subcon: Construct, obj: Any, *, what: str = "") -> None:
        try:
            self._buf += subcon.build(obj)
        except UnicodeEncodeError as exc:
            raise InvalidModel("text is not encodable as UTF-8", field=what or "text") from exc
        except ConstructError as exc:
            raise InvalidModel(str(exc), field=what or subcon.__class__.__name__) from exc
