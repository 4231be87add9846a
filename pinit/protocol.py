"""Messages exchanged with the control tool and spawned wrappers, and their framing."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, TypeVar

from .codec import Reader, Writer
from .errors import DecodeError, EncodeError
from .models import ServiceConfig, ServiceStatus

_LENGTH_SIZE = 8
_I32_MIN, _I32_MAX = -(2**31), 2**31 - 1
_U32_MAX = 0xFFFF_FFFF


class _Message(Protocol):
    def to_bytes(self) -> bytes: ...


M = TypeVar("M")


def _read_tag(reader: Reader, enum_type: type, what: str):
    tag = reader.varint()
    try:
        return enum_type(tag)
    except ValueError:
        raise DecodeError(f"unknown {what} variant {tag}") from None


class CliCommandKind(Enum):
    START = 0
    STOP = 1
    RESTART = 2
    ENABLE = 3
    DISABLE = 4
    RELOAD = 5
    RELOAD_ALL = 6
    STATUS = 7
    CONFIG = 8
    LIST = 9
    SHUTDOWN = 10


_NAMED_COMMANDS = frozenset(
    {
        CliCommandKind.START,
        CliCommandKind.STOP,
        CliCommandKind.RESTART,
        CliCommandKind.ENABLE,
        CliCommandKind.DISABLE,
        CliCommandKind.RELOAD,
        CliCommandKind.STATUS,
        CliCommandKind.CONFIG,
    }
)


@dataclass(frozen=True)
class CliCommand:
    """A request from the control tool to the daemon."""

    kind: CliCommandKind
    name: Optional[str] = None

    def __post_init__(self) -> None:
        needs_name = self.kind in _NAMED_COMMANDS
        if needs_name and self.name is None:
            raise ValueError(f"{self.kind.name} requires a service name")
        if not needs_name and self.name is not None:
            raise ValueError(f"{self.kind.name} takes no service name")

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.kind.value)
        if self.name is not None:
            writer.string(self.name)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> CliCommand:
        reader = Reader(data)
        kind = _read_tag(reader, CliCommandKind, "CLI command")
        name = reader.string() if kind in _NAMED_COMMANDS else None
        return cls(kind, name)


class CliResponseKind(Enum):
    SUCCESS = 0
    ERROR = 1
    STATUS = 2
    LIST = 3
    CONFIG = 4
    SHUTTING_DOWN = 5


@dataclass(frozen=True)
class CliResponse:
    """The daemon's answer to a control tool request."""

    kind: CliResponseKind
    payload: Any = None

    def __post_init__(self) -> None:
        kind, payload = self.kind, self.payload
        if kind in (CliResponseKind.SUCCESS, CliResponseKind.ERROR):
            ok = isinstance(payload, str)
        elif kind is CliResponseKind.STATUS:
            ok = isinstance(payload, ServiceStatus)
        elif kind is CliResponseKind.LIST:
            ok = isinstance(payload, (list, tuple)) and all(
                isinstance(item, ServiceStatus) for item in payload
            )
            if ok:
                object.__setattr__(self, "payload", tuple(payload))
        elif kind is CliResponseKind.CONFIG:
            ok = isinstance(payload, ServiceConfig)
        else:
            ok = payload is None
        if not ok:
            raise ValueError(f"invalid payload for {kind.name}: {payload!r}")

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.kind.value)
        if self.kind in (CliResponseKind.SUCCESS, CliResponseKind.ERROR):
            writer.string(self.payload)
        elif self.kind in (CliResponseKind.STATUS, CliResponseKind.CONFIG):
            self.payload.encode(writer)
        elif self.kind is CliResponseKind.LIST:
            writer.varint(len(self.payload))
            for status in self.payload:
                status.encode(writer)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> CliResponse:
        reader = Reader(data)
        kind = _read_tag(reader, CliResponseKind, "CLI response")
        if kind in (CliResponseKind.SUCCESS, CliResponseKind.ERROR):
            return cls(kind, reader.string())
        if kind is CliResponseKind.STATUS:
            return cls(kind, ServiceStatus.decode(reader))
        if kind is CliResponseKind.LIST:
            count = reader.varint()
            return cls(kind, tuple(ServiceStatus.decode(reader) for _ in range(count)))
        if kind is CliResponseKind.CONFIG:
            return cls(kind, ServiceConfig.decode(reader))
        return cls(kind)


class PmsFromRemoteKind(Enum):
    WRAPPER_LAUNCHED = 0
    PROCESS_ATTACHED = 1
    PROCESS_EXITED = 2


@dataclass(frozen=True)
class PmsFromRemote:
    """A report from a launch wrapper to the process management service."""

    kind: PmsFromRemoteKind
    value: Any = None

    def __post_init__(self) -> None:
        kind, value = self.kind, self.value
        if kind is PmsFromRemoteKind.WRAPPER_LAUNCHED:
            ok = isinstance(value, uuid.UUID)
        elif kind is PmsFromRemoteKind.PROCESS_ATTACHED:
            ok = isinstance(value, int) and 0 <= value <= _U32_MAX
        else:
            ok = value is None or (isinstance(value, int) and _I32_MIN <= value <= _I32_MAX)
        if not ok:
            raise ValueError(f"invalid value for {kind.name}: {value!r}")

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.kind.value)
        if self.kind is PmsFromRemoteKind.WRAPPER_LAUNCHED:
            writer.raw_bytes(self.value.bytes)
        elif self.kind is PmsFromRemoteKind.PROCESS_ATTACHED:
            writer.varint(self.value)
        else:
            writer.option(self.value, writer.zigzag)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> PmsFromRemote:
        reader = Reader(data)
        kind = _read_tag(reader, PmsFromRemoteKind, "PMS report")
        if kind is PmsFromRemoteKind.WRAPPER_LAUNCHED:
            raw = reader.raw_bytes()
            if len(raw) != 16:
                raise DecodeError(f"launch id must be 16 bytes, got {len(raw)}")
            return cls(kind, uuid.UUID(bytes=raw))
        if kind is PmsFromRemoteKind.PROCESS_ATTACHED:
            pid = reader.varint()
            if pid > _U32_MAX:
                raise DecodeError(f"pid {pid} does not fit in 32 bits")
            return cls(kind, pid)
        code = reader.option(reader.zigzag)
        if code is not None and not _I32_MIN <= code <= _I32_MAX:
            raise DecodeError(f"exit code {code} does not fit in 32 bits")
        return cls(kind, code)


class PmsToRemote(Enum):
    """An instruction from the process management service to a wrapper."""

    ALLOW_START = 0
    KILL = 1
    ACK = 2

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.value)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> PmsToRemote:
        return _read_tag(Reader(data), cls, "PMS instruction")


class PmsToRemoteResponse(Enum):
    ACK = 0

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.value)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> PmsToRemoteResponse:
        return _read_tag(Reader(data), cls, "PMS response")


def frame(payload: bytes) -> bytes:
    """Prefix a payload with its length as a little-endian 64-bit integer."""
    if len(payload) >= 1 << 64:
        raise EncodeError("payload too large to frame")
    return len(payload).to_bytes(_LENGTH_SIZE, "little") + payload


async def read_message(reader: asyncio.StreamReader, message_type: type[M]) -> M:
    """Read one framed message; raises asyncio.IncompleteReadError at end of stream."""
    header = await reader.readexactly(_LENGTH_SIZE)
    length = int.from_bytes(header, "little")
    payload = await reader.readexactly(length)
    return message_type.from_bytes(payload)


async def write_message(writer: asyncio.StreamWriter, message: _Message) -> None:
    """Write one framed message and wait for it to drain."""
    writer.write(frame(message.to_bytes()))
    await writer.drain()