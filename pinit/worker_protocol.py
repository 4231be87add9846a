"""Messages exchanged between the controller and the worker process."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .codec import Reader, Writer
from .errors import DecodeError
from .models import ServiceConfig, ServiceRunState


@dataclass(frozen=True)
class BaseService:
    """The shareable part of a registered service."""

    config: ServiceConfig
    state: ServiceRunState
    enabled: bool

    def encode(self, writer: Writer) -> None:
        self.config.encode(writer)
        self.state.encode(writer)
        writer.boolean(self.enabled)

    @classmethod
    def decode(cls, reader: Reader) -> BaseService:
        config = ServiceConfig.decode(reader)
        state = ServiceRunState.decode(reader)
        return cls(config, state, reader.boolean())


def _read_tag(reader: Reader, enum_type: type, what: str):
    tag = reader.varint()
    try:
        return enum_type(tag)
    except ValueError:
        raise DecodeError(f"unknown {what} variant {tag}") from None


def _read_uuid(reader: Reader) -> uuid.UUID:
    raw = reader.raw_bytes()
    if len(raw) != 16:
        raise DecodeError(f"launch id must be 16 bytes, got {len(raw)}")
    return uuid.UUID(bytes=raw)


class WorkerCommandKind(Enum):
    CREATE = 0
    DESTROY = 1
    START = 2
    STOP = 3
    RESTART = 4
    STATUS = 5
    SHUTDOWN = 6


_NAMED = frozenset({WorkerCommandKind.DESTROY, WorkerCommandKind.STOP})
_LAUNCH = frozenset({WorkerCommandKind.START, WorkerCommandKind.RESTART})


@dataclass(frozen=True)
class WorkerCommand:
    """A request from the controller to the worker."""

    kind: WorkerCommandKind
    config: Optional[ServiceConfig] = None
    service_name: Optional[str] = None
    pinit_id: Optional[uuid.UUID] = None

    def __post_init__(self) -> None:
        kind = self.kind
        if kind is WorkerCommandKind.CREATE:
            ok = (
                isinstance(self.config, ServiceConfig)
                and self.service_name is None
                and self.pinit_id is None
            )
        elif kind in _NAMED:
            ok = (
                isinstance(self.service_name, str)
                and self.config is None
                and self.pinit_id is None
            )
        elif kind in _LAUNCH:
            ok = (
                isinstance(self.service_name, str)
                and isinstance(self.pinit_id, uuid.UUID)
                and self.config is None
            )
        else:
            ok = self.config is None and self.service_name is None and self.pinit_id is None
        if not ok:
            raise ValueError(f"invalid fields for {kind.name}")

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.kind.value)
        if self.kind is WorkerCommandKind.CREATE:
            self.config.encode(writer)
        elif self.kind in _NAMED:
            writer.string(self.service_name)
        elif self.kind in _LAUNCH:
            writer.string(self.service_name)
            writer.raw_bytes(self.pinit_id.bytes)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> WorkerCommand:
        reader = Reader(data)
        kind = _read_tag(reader, WorkerCommandKind, "worker command")
        if kind is WorkerCommandKind.CREATE:
            return cls(kind, config=ServiceConfig.decode(reader))
        if kind in _NAMED:
            return cls(kind, service_name=reader.string())
        if kind in _LAUNCH:
            name = reader.string()
            return cls(kind, service_name=name, pinit_id=_read_uuid(reader))
        return cls(kind)


class WorkerResponseKind(Enum):
    SUCCESS = 0
    ERROR = 1
    STATUS = 2
    SERVICE_UPDATE = 3
    SHUTTING_DOWN = 4


@dataclass(frozen=True)
class WorkerResponse:
    """The worker's reply to a command, or an unsolicited service update."""

    kind: WorkerResponseKind
    payload: Any = None

    def __post_init__(self) -> None:
        kind, payload = self.kind, self.payload
        if kind is WorkerResponseKind.ERROR:
            ok = isinstance(payload, str)
        elif kind is WorkerResponseKind.STATUS:
            ok = isinstance(payload, dict) and all(
                isinstance(k, str) and isinstance(v, ServiceRunState)
                for k, v in payload.items()
            )
            if ok:
                object.__setattr__(self, "payload", dict(payload))
        elif kind is WorkerResponseKind.SERVICE_UPDATE:
            ok = isinstance(payload, BaseService)
        else:
            ok = payload is None
        if not ok:
            raise ValueError(f"invalid payload for {kind.name}: {payload!r}")

    def to_bytes(self) -> bytes:
        writer = Writer()
        writer.varint(self.kind.value)
        if self.kind is WorkerResponseKind.ERROR:
            writer.string(self.payload)
        elif self.kind is WorkerResponseKind.STATUS:
            writer.varint(len(self.payload))
            for name, state in self.payload.items():
                writer.string(name)
                state.encode(writer)
        elif self.kind is WorkerResponseKind.SERVICE_UPDATE:
            self.payload.encode(writer)
        return writer.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> WorkerResponse:
        reader = Reader(data)
        kind = _read_tag(reader, WorkerResponseKind, "worker response")
        if kind is WorkerResponseKind.ERROR:
            return cls(kind, reader.string())
        if kind is WorkerResponseKind.STATUS:
            count = reader.varint()
            states = {}
            for _ in range(count):
                name = reader.string()
                states[name] = ServiceRunState.decode(reader)
            return cls(kind, states)
        if kind is WorkerResponseKind.SERVICE_UPDATE:
            return cls(kind, BaseService.decode(reader))
        return cls(kind)