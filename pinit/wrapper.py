"""Wrapper processes that launch services and report them to the controller."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import uuid
from typing import Optional, Sequence

from .errors import ProcessSpawnError, WorkerTimeoutError, ZygoteError
from .models import CONTROL_HOST, PMS_PORT
from .protocol import (
    PmsFromRemote,
    PmsFromRemoteKind,
    PmsToRemote,
    read_message,
    write_message,
)
from .zygote import init_zygote_with_fd

log = logging.getLogger(__name__)

_NEGOTIATION_TIMEOUT = 2.0
_EXPECTED_MACHINE = "aarch64"


async def _machine() -> Optional[str]:
    try:
        process = await asyncio.create_subprocess_exec(
            "uname",
            "-m",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await process.communicate()
    except OSError:
        return None
    try:
        return stdout.decode("utf-8").strip()
    except UnicodeDecodeError:
        return None


async def specialize_without_monitoring(
    command: str,
    using_zygote_spawn: bool,
    check_bitness: bool,
) -> asyncio.subprocess.Process:
    """Launch ``command`` through the shell and return the child process."""
    if check_bitness:
        machine = await _machine()
        if machine is not None and machine != _EXPECTED_MACHINE:
            raise ZygoteError(f"Process is not 64 bit ({machine}). Dying")

    if using_zygote_spawn:
        await init_zygote_with_fd()

    log.info('Spawning child "%s"', command)
    process = await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    log.info("Spawned process with pid %s", process.pid)
    return process


async def negotiate_launch(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    pinit_id: uuid.UUID,
) -> None:
    """Announce the launch to the process manager and obey its verdict."""

    async def exchange() -> None:
        await write_message(
            writer, PmsFromRemote(PmsFromRemoteKind.WRAPPER_LAUNCHED, pinit_id)
        )
        log.info("Waiting for controller response")
        response = await read_message(reader, PmsToRemote)
        log.info("Controller response %s", response)
        if response == PmsToRemote.KILL:
            raise ProcessSpawnError("PMS requested wrapper kill. Dying")

    try:
        await asyncio.wait_for(exchange(), _NEGOTIATION_TIMEOUT)
    except asyncio.TimeoutError:
        raise WorkerTimeoutError("deadline has elapsed") from None


async def _write_if_connected(
    writer: Optional[asyncio.StreamWriter], message: PmsFromRemote
) -> None:
    if writer is None:
        return
    with contextlib.suppress(Exception):
        await write_message(writer, message)


async def specialize_with_monitoring(
    command: str,
    pinit_id: uuid.UUID,
    using_zygote_spawn: bool,
    host: str = CONTROL_HOST,
    port: int = PMS_PORT,
) -> Optional[int]:
    """Launch ``command``, reporting its pid and exit to the process manager.

    Returns the exit code, or None when the process was ended by a signal.
    """
    log.info("Negotiating launch for id %s", pinit_id)
    writer: Optional[asyncio.StreamWriter] = None
    try:
        reader, writer = await asyncio.open_connection(host, port)
    except OSError:
        log.warning("Could not connect to PMS, continuing with spawn")

    try:
        if writer is not None:
            await negotiate_launch(reader, writer, pinit_id)

        process = await specialize_without_monitoring(command, using_zygote_spawn, False)
        await _write_if_connected(
            writer, PmsFromRemote(PmsFromRemoteKind.PROCESS_ATTACHED, process.pid)
        )

        _, stderr = await process.communicate()
        returncode = process.returncode
        code = returncode if returncode is not None and returncode >= 0 else None
        log.info("Process terminated with code %s", code)
        if returncode != 0:
            log.info("stderr: %s", stderr.decode("utf-8", "replace"))

        await _write_if_connected(
            writer, PmsFromRemote(PmsFromRemoteKind.PROCESS_EXITED, code)
        )
        return code
    finally:
        if writer is not None:
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()


def _init_logging(tag: str) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format=f"%(asctime)s %(levelname)s {tag}: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pinitd", description="Custom init system for Ai Pin")
    modes = parser.add_subparsers(dest="mode", required=True)

    monitored = modes.add_parser(
        "monitored-wrapper",
        help="Write the Zygote pid fd back on spawn and monitor the child process",
    )
    monitored.add_argument("--is-zygote", action="store_true")
    monitored.add_argument("id", type=uuid.UUID)
    monitored.add_argument("command")
    monitored.add_argument("remaining", nargs=argparse.REMAINDER)

    internal = modes.add_parser(
        "internal-wrapper",
        help="Write the wrapper Zygote pid fd back on spawn, without monitoring",
    )
    internal.add_argument("--is-zygote", action="store_true")
    internal.add_argument("command")
    internal.add_argument("remaining", nargs=argparse.REMAINDER)
    return parser


async def _run(args: argparse.Namespace) -> None:
    if args.mode == "monitored-wrapper":
        _init_logging("pinitd-wrapper")
        await specialize_with_monitoring(args.command, args.id, args.is_zygote)
    else:
        _init_logging("pinitd-wrapper-int")
        await specialize_without_monitoring(args.command, args.is_zygote, True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the wrapper modes; returns the process exit status."""
    args = _build_parser().parse_args(argv)
    try:
        asyncio.run(_run(args))
    except Exception as err:
        _init_logging("pinitd-unspecialized")
        log.error("%s", err)
        return 1
    return 0