"""Compact variable-length binary encoding used on all sockets."""

from __future__ import annotations

from typing import Callable, Optional, TypeVar

from .errors import DecodeError, EncodeError

T = TypeVar("T")

_SINGLE_BYTE_LIMIT = 251
# (largest value, marker byte, width in bytes)
_WIDE_FORMS = (
    (0xFFFF, 251, 2),
    (0xFFFF_FFFF, 252, 4),
    (0xFFFF_FFFF_FFFF_FFFF, 253, 8),
    ((1 << 128) - 1, 254, 16),
)
_MARKER_WIDTHS = {marker: width for _, marker, width in _WIDE_FORMS}


def _zigzag_encode(value: int) -> int:
    return value * 2 if value >= 0 else -value * 2 - 1


def _zigzag_decode(value: int) -> int:
    return value // 2 if value % 2 == 0 else -((value + 1) // 2)


class Writer:
    """Accumulates encoded values into a byte string."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def varint(self, value: int) -> None:
        """Write an unsigned integer in variable-length form."""
        if value < 0:
            raise EncodeError(f"cannot encode negative value {value} as unsigned")
        if value < _SINGLE_BYTE_LIMIT:
            self._buffer.append(value)
            return
        for limit, marker, width in _WIDE_FORMS:
            if value <= limit:
                self._buffer.append(marker)
                self._buffer += value.to_bytes(width, "little")
                return
        raise EncodeError(f"integer {value} is too large")

    def zigzag(self, value: int) -> None:
        """Write a signed integer."""
        self.varint(_zigzag_encode(value))

    def boolean(self, value: bool) -> None:
        self._buffer.append(1 if value else 0)

    def string(self, value: str) -> None:
        try:
            data = value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise EncodeError(f"string is not valid UTF-8: {exc}") from exc
        self.raw_bytes(data)

    def raw_bytes(self, value: bytes) -> None:
        """Write a length-prefixed byte sequence."""
        self.varint(len(value))
        self._buffer += value

    def option(self, value: Optional[T], write: Callable[[T], None]) -> None:
        """Write an optional value, using ``write`` for the present case."""
        if value is None:
            self._buffer.append(0)
        else:
            self._buffer.append(1)
            write(value)

    def getvalue(self) -> bytes:
        return bytes(self._buffer)


class Reader:
    """Decodes values from a byte string in order."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def _take(self, count: int) -> bytes:
        end = self._pos + count
        if end > len(self._data):
            raise DecodeError(
                f"unexpected end of input: needed {count} bytes, {self.remaining()} left"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def varint(self) -> int:
        marker = self._take(1)[0]
        if marker < _SINGLE_BYTE_LIMIT:
            return marker
        width = _MARKER_WIDTHS.get(marker)
        if width is None:
            raise DecodeError(f"invalid integer marker byte {marker}")
        return int.from_bytes(self._take(width), "little")

    def zigzag(self) -> int:
        return _zigzag_decode(self.varint())

    def boolean(self) -> bool:
        byte = self._take(1)[0]
        if byte > 1:
            raise DecodeError(f"invalid boolean byte {byte}")
        return byte == 1

    def string(self) -> str:
        data = self.raw_bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"invalid UTF-8 string: {exc}") from exc

    def raw_bytes(self) -> bytes:
        return self._take(self.varint())

    def option(self, read: Callable[[], T]) -> Optional[T]:
        tag = self._take(1)[0]
        if tag == 0:
            return None
        if tag == 1:
            return read()
        raise DecodeError(f"invalid option tag {tag}")

    def remaining(self) -> int:
        return len(self._data) - self._pos