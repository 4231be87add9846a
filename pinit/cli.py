"""Control utility for the pinitd daemon."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Iterable, Optional, Sequence

from .errors import PinitError
from .models import (
    CONTROL_HOST,
    ExecCommand,
    PackageCommand,
    RestartPolicy,
    RunStateKind,
    ServiceRunState,
    ServiceStatus,
    Uid,
)
from .protocol import (
    CliCommand,
    CliCommandKind,
    CliResponse,
    CliResponseKind,
    read_message,
    write_message,
)

CONTROL_PORT = 1717

_NOT_RUNNING = "Cannot find pinitd. Is it running?"

# (subcommand, kind, takes a service name, help)
_SUBCOMMANDS = (
    ("start", CliCommandKind.START, True, "Start a service"),
    ("stop", CliCommandKind.STOP, True, "Stop a service"),
    ("restart", CliCommandKind.RESTART, True, "Restart a service"),
    (
        "enable",
        CliCommandKind.ENABLE,
        True,
        "Enable a service (start on daemon boot if autostart=true)",
    ),
    ("disable", CliCommandKind.DISABLE, True, "Disable a service (prevent autostart)"),
    ("reload", CliCommandKind.RELOAD, True, "Reload a service config from disk"),
    ("reload-all", CliCommandKind.RELOAD_ALL, False, "Reload all service configs from disk"),
    ("status", CliCommandKind.STATUS, True, "Show status of a specific service"),
    ("config", CliCommandKind.CONFIG, True, "Show the current configuration of a service"),
    ("list", CliCommandKind.LIST, False, "List all known services and their status"),
    ("shutdown", CliCommandKind.SHUTDOWN, False, "Request the daemon to shut down gracefully"),
)

_RESTART_NAMES = {
    RestartPolicy.ALWAYS: "Always",
    RestartPolicy.ON_FAILURE: "OnFailure",
    RestartPolicy.NONE: "None",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pinitd-cli", description="Control utility for the pinitd daemon"
    )
    commands = parser.add_subparsers(dest="command", required=True)
    for name, kind, takes_name, help_text in _SUBCOMMANDS:
        sub = commands.add_parser(name, help=help_text)
        sub.set_defaults(kind=kind)
        if takes_name:
            sub.add_argument("name")
    return parser


def parse_command(argv: Optional[Sequence[str]] = None) -> CliCommand:
    """Turn command-line arguments into the command sent to the daemon."""
    args = _build_parser().parse_args(argv)
    name = getattr(args, "name", None)
    if name is None:
        return CliCommand(args.kind)
    return CliCommand(args.kind, name)


def _uid_text(uid: Uid) -> str:
    if uid == Uid.SYSTEM:
        return "System"
    if uid == Uid.SHELL:
        return "Shell"
    return f"Custom({int(uid)})"


def _state_text(state: ServiceRunState) -> str:
    if state.kind is RunStateKind.RUNNING:
        return f"Running (PID: {state.pid})"
    if state.kind is RunStateKind.STOPPING:
        return "Stopping"
    if state == ServiceRunState.stopped():
        return "Stopped"
    return f"Failed: {state.reason}"


def _command_text(command) -> str:
    if isinstance(command, ExecCommand):
        return f"Command: {command.command}"
    if isinstance(command, PackageCommand):
        return f"Package command: {command.content_path} at {command.package}"
    return f"JVM class command: {command.class_name} at {command.package}"


def format_status_table(statuses: Iterable[ServiceStatus]) -> str:
    """Render service statuses as a fixed-width table."""
    lines = [f"{'NAME':<20} {'ENABLED':<10} {'STATE':<25} UID", "-" * 80]
    for info in statuses:
        enabled = "true" if info.enabled else "false"
        lines.append(
            f"{info.name:<20} {enabled:<10} {_state_text(info.state):<25} "
            f"{int(info.uid)} ({_uid_text(info.uid)})"
        )
    return "\n".join(lines)


def format_response(response: CliResponse) -> str:
    """The text shown to the user for a daemon response."""
    kind = response.kind
    if kind is CliResponseKind.SUCCESS:
        return response.payload
    if kind is CliResponseKind.ERROR:
        return f"Error: {response.payload}"
    if kind is CliResponseKind.STATUS:
        return format_status_table([response.payload])
    if kind is CliResponseKind.LIST:
        if not response.payload:
            return "No services configured"
        return format_status_table(response.payload)
    if kind is CliResponseKind.CONFIG:
        config = response.payload
        lines = [
            f"Name: {config.name}",
            f"Command: {_command_text(config.command)}",
            f"UID: {_uid_text(config.uid)}",
            f"Autostart: {'true' if config.autostart else 'false'}",
            f"Restart: {_RESTART_NAMES[config.restart]}",
        ]
        if config.nice_name is not None:
            lines.append(f"NiceName: {config.nice_name}")
        return "\n".join(lines)
    return "Shutting down"


async def send_command(
    command: CliCommand, host: str = CONTROL_HOST, port: int = CONTROL_PORT
) -> CliResponse:
    """Send one command to the daemon and return its response."""
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError:
        raise PinitError(_NOT_RUNNING) from None
    try:
        await write_message(writer, command)
        # Nothing more will be written.
        if writer.can_write_eof():
            writer.write_eof()
        return await read_message(reader, CliResponse)
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the control tool; returns the process exit status."""
    command = parse_command(argv)
    try:
        response = asyncio.run(send_command(command))
    except (PinitError, OSError, asyncio.IncompleteReadError) as err:
        print(err, file=sys.stderr)
        return 1
    text = format_response(response)
    if response.kind is CliResponseKind.ERROR:
        print(text, file=sys.stderr)
        return 1
    print(text)
    return 0