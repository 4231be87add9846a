"""Service descriptions, run states and shared paths and addresses."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import ClassVar, Optional, Union

from .codec import Reader, Writer
from .errors import DecodeError, EncodeError

CONTROL_HOST = "127.0.0.1"
CONTROL_PORT = 1717
WORKER_PORT = 1718
PMS_PORT = 1719
CONTROL_SOCKET_ADDRESS = (CONTROL_HOST, CONTROL_PORT)
WORKER_SOCKET_ADDRESS = (CONTROL_HOST, WORKER_PORT)
PMS_SOCKET_ADDRESS = (CONTROL_HOST, PMS_PORT)

ON_ANDROID = hasattr(sys, "getandroidapilevel")

if ON_ANDROID:
    CONFIG_DIR = "/sdcard/penumbra/etc/pinitd/system/"
    STATE_FILE = "/sdcard/penumbra/etc/pinitd/pinitd.state"
    CONTROLLER_LOCK_FILE = "/sdcard/penumbra/etc/pinitd/pinitd.lock"
else:
    CONFIG_DIR = "test_data/jailbreak_units/"
    STATE_FILE = "test_data/pinitd/pinitd.state"
    CONTROLLER_LOCK_FILE = "test_data/pinitd/pinitd.lock"

PACKAGE_NAME = "im.agg.pinitd"

_U32_MAX = 0xFFFF_FFFF
_U64_MAX = 0xFFFF_FFFF_FFFF_FFFF
_UNSIGNED = re.compile(r"\+?[0-9]+", re.ASCII)


def _write_u32(writer: Writer, value: int) -> None:
    if not 0 <= value <= _U32_MAX:
        raise EncodeError(f"{value} does not fit in 32 bits")
    writer.varint(value)


def _read_u32(reader: Reader) -> int:
    value = reader.varint()
    if value > _U32_MAX:
        raise DecodeError(f"{value} does not fit in 32 bits")
    return value


class RunStateKind(Enum):
    STOPPED = 0
    STOPPING = 1
    RUNNING = 2
    FAILED = 3


@dataclass(frozen=True)
class ServiceRunState:
    """Current lifecycle state of a service."""

    kind: RunStateKind
    pid: Optional[int] = None
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is RunStateKind.RUNNING and self.pid is None:
            raise ValueError("a running state needs a pid")
        if self.kind is RunStateKind.FAILED and self.reason is None:
            raise ValueError("a failed state needs a reason")

    @classmethod
    def stopped(cls) -> ServiceRunState:
        return cls(RunStateKind.STOPPED)

    @classmethod
    def stopping(cls) -> ServiceRunState:
        return cls(RunStateKind.STOPPING)

    @classmethod
    def running(cls, pid: int) -> ServiceRunState:
        return cls(RunStateKind.RUNNING, pid=pid)

    @classmethod
    def failed(cls, reason: str) -> ServiceRunState:
        return cls(RunStateKind.FAILED, reason=reason)

    def __str__(self) -> str:
        if self.kind is RunStateKind.RUNNING:
            return f"Running (PID: {self.pid})"
        if self.kind is RunStateKind.FAILED:
            return f"Failed: {self.reason}"
        return self.kind.name.capitalize()

    def encode(self, writer: Writer) -> None:
        writer.varint(self.kind.value)
        if self.kind is RunStateKind.RUNNING:
            _write_u32(writer, self.pid)
        elif self.kind is RunStateKind.FAILED:
            writer.string(self.reason)

    @classmethod
    def decode(cls, reader: Reader) -> ServiceRunState:
        tag = reader.varint()
        try:
            kind = RunStateKind(tag)
        except ValueError:
            raise DecodeError(f"unknown run state variant {tag}") from None
        if kind is RunStateKind.RUNNING:
            return cls.running(_read_u32(reader))
        if kind is RunStateKind.FAILED:
            return cls.failed(reader.string())
        return cls(kind)


@dataclass(frozen=True)
class Uid:
    """User id a service runs as; the system and shell ids are distinguished."""

    SYSTEM: ClassVar[Uid]
    SHELL: ClassVar[Uid]

    value: int
    custom: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _U64_MAX:
            raise ValueError(f"uid {self.value} is out of range")

    @classmethod
    def parse(cls, text: str) -> Uid:
        if text == "1000":
            return cls.SYSTEM
        if text == "2000":
            return cls.SHELL
        if _UNSIGNED.fullmatch(text):
            value = int(text)
            if value <= _U64_MAX:
                return cls(value)
        raise ValueError(f'Unsupported Uid "{text}"')

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        if self == Uid.SYSTEM:
            return "System"
        if self == Uid.SHELL:
            return "Shell"
        return f"Custom({self.value})"

    def encode(self, writer: Writer) -> None:
        if self == Uid.SYSTEM:
            writer.varint(0)
        elif self == Uid.SHELL:
            writer.varint(1)
        else:
            writer.varint(2)
            writer.varint(self.value)

    @classmethod
    def decode(cls, reader: Reader) -> Uid:
        tag = reader.varint()
        if tag == 0:
            return cls.SYSTEM
        if tag == 1:
            return cls.SHELL
        if tag == 2:
            value = reader.varint()
            if value > _U64_MAX:
                raise DecodeError(f"uid {value} is out of range")
            return cls(value)
        raise DecodeError(f"unknown uid variant {tag}")


Uid.SYSTEM = Uid(1000, custom=False)
Uid.SHELL = Uid(2000, custom=False)


class RestartPolicy(Enum):
    ALWAYS = "Always"
    ON_FAILURE = "OnFailure"
    NONE = "None"

    @classmethod
    def parse(cls, text: str) -> RestartPolicy:
        lowered = text.lower()
        for policy, spelling in _RESTART_SPELLINGS.items():
            if lowered == spelling:
                return policy
        raise ValueError(f'Unsupported Restart "{text}"')


_RESTART_SPELLINGS = {
    RestartPolicy.ALWAYS: "always",
    RestartPolicy.ON_FAILURE: "on-failure",
    RestartPolicy.NONE: "none",
}
_RESTART_ORDER = tuple(RestartPolicy)


def _encode_restart(policy: RestartPolicy, writer: Writer) -> None:
    writer.varint(_RESTART_ORDER.index(policy))


def _decode_restart(reader: Reader) -> RestartPolicy:
    tag = reader.varint()
    if tag >= len(_RESTART_ORDER):
        raise DecodeError(f"unknown restart policy variant {tag}")
    return _RESTART_ORDER[tag]


@dataclass(frozen=True)
class TriggerActivity:
    """Activity launched to trigger a zygote spawn."""

    package: str
    activity: str


def _encode_trigger(trigger: TriggerActivity, writer: Writer) -> None:
    writer.string(trigger.package)
    writer.string(trigger.activity)


def _decode_trigger(reader: Reader) -> TriggerActivity:
    return TriggerActivity(reader.string(), reader.string())


@dataclass(frozen=True)
class ExecCommand:
    """Launches an arbitrary shell command."""

    command: str
    trigger_activity: Optional[TriggerActivity] = None

    def __str__(self) -> str:
        return f"Command: {self.command}"


@dataclass(frozen=True)
class PackageCommand:
    """Launches a binary located inside an installed package."""

    package: str
    content_path: str
    args: Optional[str] = None
    trigger_activity: Optional[TriggerActivity] = None

    def __str__(self) -> str:
        return f"Package command: {self.content_path} at {self.package}"


@dataclass(frozen=True)
class JvmClassCommand:
    """Launches a JVM class with the package as its classpath."""

    package: str
    class_name: str
    command_args: Optional[str] = None
    jvm_args: Optional[str] = None
    trigger_activity: Optional[TriggerActivity] = None

    def __str__(self) -> str:
        return f"JVM class command: {self.class_name} at {self.package}"


ServiceCommand = Union[ExecCommand, PackageCommand, JvmClassCommand]


def encode_service_command(command: ServiceCommand, writer: Writer) -> None:
    """Write a service command with its variant tag."""

    def trigger(value: TriggerActivity) -> None:
        _encode_trigger(value, writer)

    if isinstance(command, ExecCommand):
        writer.varint(0)
        writer.string(command.command)
    elif isinstance(command, PackageCommand):
        writer.varint(1)
        writer.string(command.package)
        writer.string(command.content_path)
        writer.option(command.args, writer.string)
    elif isinstance(command, JvmClassCommand):
        writer.varint(2)
        writer.string(command.package)
        writer.string(command.class_name)
        writer.option(command.command_args, writer.string)
        writer.option(command.jvm_args, writer.string)
    else:
        raise EncodeError(f"not a service command: {command!r}")
    writer.option(command.trigger_activity, trigger)


def decode_service_command(reader: Reader) -> ServiceCommand:
    """Read a service command written by encode_service_command."""

    def trigger() -> Optional[TriggerActivity]:
        return reader.option(lambda: _decode_trigger(reader))

    tag = reader.varint()
    if tag == 0:
        command = reader.string()
        return ExecCommand(command, trigger())
    if tag == 1:
        package = reader.string()
        content_path = reader.string()
        args = reader.option(reader.string)
        return PackageCommand(package, content_path, args, trigger())
    if tag == 2:
        package = reader.string()
        class_name = reader.string()
        command_args = reader.option(reader.string)
        jvm_args = reader.option(reader.string)
        return JvmClassCommand(package, class_name, command_args, jvm_args, trigger())
    raise DecodeError(f"unknown service command variant {tag}")


@dataclass(frozen=True)
class ServiceConfig:
    """A parsed unit file."""

    name: str
    command: ServiceCommand
    autostart: bool
    restart: RestartPolicy
    uid: Uid
    se_info: Optional[str]
    nice_name: Optional[str]
    unit_file_path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_file_path", Path(self.unit_file_path))

    def encode(self, writer: Writer) -> None:
        writer.string(self.name)
        encode_service_command(self.command, writer)
        writer.boolean(self.autostart)
        _encode_restart(self.restart, writer)
        self.uid.encode(writer)
        writer.option(self.se_info, writer.string)
        writer.option(self.nice_name, writer.string)
        writer.string(str(self.unit_file_path))

    @classmethod
    def decode(cls, reader: Reader) -> ServiceConfig:
        name = reader.string()
        command = decode_service_command(reader)
        autostart = reader.boolean()
        restart = _decode_restart(reader)
        uid = Uid.decode(reader)
        se_info = reader.option(reader.string)
        nice_name = reader.option(reader.string)
        path = Path(reader.string())
        return cls(name, command, autostart, restart, uid, se_info, nice_name, path)


@dataclass(frozen=True)
class ServiceStatus:
    """Summary of a service as reported to the control tool."""

    name: str
    uid: Uid
    enabled: bool
    state: ServiceRunState
    config_path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "config_path", Path(self.config_path))

    def encode(self, writer: Writer) -> None:
        writer.string(self.name)
        self.uid.encode(writer)
        writer.boolean(self.enabled)
        self.state.encode(writer)
        writer.string(str(self.config_path))

    @classmethod
    def decode(cls, reader: Reader) -> ServiceStatus:
        name = reader.string()
        uid = Uid.decode(reader)
        enabled = reader.boolean()
        state = ServiceRunState.decode(reader)
        path = Path(reader.string())
        return cls(name, uid, enabled, state, path)


def create_core_directories(config_dir: str = CONFIG_DIR, state_file: str = STATE_FILE) -> None:
    """Create the unit directory and the state file's directory, ignoring failures."""
    targets = [Path(config_dir)]
    parent = Path(state_file).parent
    if str(parent):
        targets.append(parent)
    for target in targets:
        try:
            os.makedirs(target, exist_ok=True)
        except OSError:
            pass