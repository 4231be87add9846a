"""Parsing of INI-style unit files into service configurations."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigError, PinitError
from .models import (
    ExecCommand,
    JvmClassCommand,
    PackageCommand,
    RestartPolicy,
    ServiceCommand,
    ServiceConfig,
    TriggerActivity,
    Uid,
)

_SECTION = "Service"
_QUOTES = "\"'"


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        return value[1:-1]
    return value


def _ini_sections(text: str) -> list[tuple[Optional[str], list[tuple[str, str]]]]:
    sections: list[tuple[Optional[str], list[tuple[str, str]]]] = [(None, [])]
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#;":
            continue
        if line.startswith("["):
            if not line.endswith("]"):
                raise ConfigError(f"INI parsing error: line {number}: unterminated section header")
            sections.append((line[1:-1].strip(), []))
            continue
        separators = [i for i in (line.find("="), line.find(":")) if i >= 0]
        if not separators:
            raise ConfigError(f"INI parsing error: line {number}: expected '=' or ':'")
        split = min(separators)
        key = line[:split].strip()
        if not key:
            raise ConfigError(f"INI parsing error: line {number}: missing key")
        sections[-1][1].append((key, _unquote(line[split + 1:].strip())))
    return sections


def _service_entries(text: str) -> list[tuple[str, str]]:
    for name, entries in _ini_sections(text):
        if name == _SECTION:
            return entries
    raise ConfigError("Missing [Service] section")


def _split_pair(value: str, prop: str, second: str) -> tuple[str, str]:
    parts = value.split("/", 1)
    if len(parts) < 2:
        raise ConfigError(f"Could not parse {prop}: No {second}")
    return parts[0], parts[1]


def parse_unit_text(text: str, path: Union[str, Path]) -> ServiceConfig:
    """Build a service configuration from unit file text."""
    name: Optional[str] = None
    command: Optional[ServiceCommand] = None
    extra_command_args: Optional[str] = None
    extra_jvm_args: Optional[str] = None
    trigger: Optional[TriggerActivity] = None
    uid = Uid.SHELL
    se_info: Optional[str] = None
    nice_name: Optional[str] = None
    autostart = False
    restart = RestartPolicy.NONE

    for prop, raw in _service_entries(text):
        value = raw.strip()
        if prop == "Name":
            name = value
        elif prop == "Exec":
            command = ExecCommand(value)
        elif prop == "ExecPackage":
            package, content_path = _split_pair(value, "ExecPackage", "content path")
            command = PackageCommand(package, content_path)
        elif prop == "ExecJvmClass":
            package, class_name = _split_pair(value, "ExecJvmClass", "class")
            command = JvmClassCommand(package, class_name)
        elif prop == "JvmArgs":
            extra_jvm_args = value
        elif prop == "ExecArgs":
            extra_command_args = value
        elif prop == "TriggerActivity":
            package, activity = _split_pair(value, "TriggerActivity", "activity")
            trigger = TriggerActivity(package, activity)
        elif prop == "Uid":
            try:
                uid = Uid.parse(value)
            except ValueError as exc:
                raise ConfigError(str(exc)) from None
        elif prop == "SeInfo":
            se_info = value
        elif prop == "NiceName":
            nice_name = value
        elif prop == "Autostart":
            autostart = value.lower() == "true"
        elif prop == "Restart":
            try:
                restart = RestartPolicy.parse(value)
            except ValueError as exc:
                raise ConfigError(str(exc)) from None
        else:
            raise ConfigError(f'Unsupported property "{prop}"')

    if name is None:
        raise ConfigError('"Name" must be provided')
    if not name:
        raise ConfigError('"Name" cannot be empty')

    if command is None:
        raise ConfigError('"Exec", "ExecPackage", or "ExecJvmClass" must be provided')

    updates: dict[str, object] = {}
    if isinstance(command, ExecCommand):
        if not command.command:
            raise ConfigError('"Exec" cannot be empty')
    elif isinstance(command, PackageCommand):
        if not command.package:
            raise ConfigError('"ExecPackage" must contain a package')
        if not command.content_path:
            raise ConfigError('"ExecPackage" must contain a content path')
        if extra_command_args is not None:
            updates["args"] = extra_command_args
    else:
        if not command.package:
            raise ConfigError('"ExecJVMClass" must contain a package')
        if not command.class_name:
            raise ConfigError('"ExecJVMClass" must contain a class')
        if extra_command_args is not None:
            updates["command_args"] = extra_command_args
        if extra_jvm_args is not None:
            updates["jvm_args"] = extra_jvm_args
    if trigger is not None:
        updates["trigger_activity"] = trigger
    if updates:
        command = dataclasses.replace(command, **updates)

    if nice_name is not None and uid != Uid.SYSTEM:
        raise ConfigError(
            '"NiceName" is set with a non-1000 UID. This is not currently supported'
        )

    return ServiceConfig(
        name=name,
        command=command,
        autostart=autostart,
        restart=restart,
        uid=uid,
        se_info=se_info,
        nice_name=nice_name,
        unit_file_path=Path(path),
    )


def parse_unit_file(path: Union[str, Path]) -> ServiceConfig:
    """Read and parse the unit file at ``path``."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        raise PinitError(f'Failed to read unit file "{path}"') from None
    return parse_unit_text(text, path)