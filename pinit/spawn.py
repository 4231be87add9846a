"""Launching service processes through the monitoring wrapper."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .errors import ProcessSpawnError, WorkerTimeoutError
from .models import (
    ExecCommand,
    JvmClassCommand,
    PackageCommand,
    ServiceCommand,
    ServiceConfig,
    ServiceRunState,
    TriggerActivity,
    Uid,
)

log = logging.getLogger(__name__)

_PACKAGE_LOOKUP_TIMEOUT = 0.5
_PACKAGE_PREFIX = "package:"
_DEFAULT_TRIGGER = TriggerActivity("com.android.settings", "com.android.settings.Settings")


@dataclass(frozen=True)
class SpawnResult:
    """How a monitored service process ended."""

    exit_code: int
    exit_message: str


def wrapper_command(
    command: str,
    pinit_id: uuid.UUID,
    is_zygote: bool,
    executable: Optional[str] = None,
) -> str:
    """Wrap ``command`` so it is launched through the monitored wrapper."""
    if executable is None:
        executable = os.path.realpath(sys.argv[0])
    zygote_arg = "--is-zygote " if is_zygote else ""
    return f'{executable} monitored-wrapper {zygote_arg}"{pinit_id}" "{command}"'


async def expanded_command(command: ServiceCommand) -> str:
    """Turn a service command into the shell command line that runs it."""
    if isinstance(command, ExecCommand):
        return command.command
    if isinstance(command, PackageCommand):
        package_path = await fetch_package_path(command.package)
        content_path = command.content_path
        if content_path.startswith("/"):
            content_path = content_path[1:]
        line = str(Path(package_path) / content_path)
        if command.args is not None:
            line = f"{line} {command.args}".strip()
        return line
    if isinstance(command, JvmClassCommand):
        package_path = await fetch_package_path(command.package)
        args = command.command_args or ""
        jvm_args = command.jvm_args or ""
        return (
            f"/system/bin/app_process -cp {package_path} {jvm_args} /system/bin "
            f"--application {command.class_name} {args}"
        ).strip()
    raise ProcessSpawnError(f"not a service command: {command!r}")


def zygote_trigger_activity(command: ServiceCommand) -> TriggerActivity:
    """The activity launched to trigger a zygote spawn for ``command``."""
    trigger = command.trigger_activity
    if trigger is None:
        return _DEFAULT_TRIGGER
    return TriggerActivity(trigger.package, trigger.package)


async def fetch_package_path(package: str) -> str:
    """Look up the installed APK path of ``package`` with the package manager."""
    process = await asyncio.create_subprocess_exec(
        "pm",
        "path",
        package,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), _PACKAGE_LOOKUP_TIMEOUT)
    except asyncio.TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        raise WorkerTimeoutError("deadline has elapsed") from None

    if process.returncode != 0:
        raise ProcessSpawnError(f"Could not find package {package}")

    try:
        text = stdout.decode("utf-8")
    except UnicodeDecodeError:
        raise ProcessSpawnError(f"Could not find package {package}") from None

    while text.startswith(_PACKAGE_PREFIX):
        text = text[len(_PACKAGE_PREFIX):]
    package_path = text.strip()
    if not package_path.startswith("/data/app"):
        raise ProcessSpawnError(
            f"Found invalid package path for package {package}. Found {package_path}"
        )
    return package_path


async def _spawn_standard(config: ServiceConfig, pinit_id: uuid.UUID) -> asyncio.subprocess.Process:
    command = await expanded_command(config.command)
    command = wrapper_command(command, pinit_id, False)
    return await asyncio.create_subprocess_exec(
        "sh",
        "-c",
        command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
    )


async def _spawn_zygote(config: ServiceConfig, pinit_id: uuid.UUID) -> asyncio.subprocess.Process:
    raise ProcessSpawnError(
        f"zygote spawning for uid {int(config.uid)} is not available on this system"
    )


async def _wait(process: asyncio.subprocess.Process, name: str) -> SpawnResult:
    try:
        code = await process.wait()
    except OSError as err:
        log.error('Error waiting on process for service "%s": %s', name, err)
        return SpawnResult(127, f"Wait error: {err}")
    log.info('Process for service "%s" exited with status: %s', name, code)
    if code < 0:
        return SpawnResult(127, "Exited via signal")
    return SpawnResult(code, f"Exited with code {code}")


async def spawn_service(registry: Any, name: str, pinit_id: uuid.UUID) -> SpawnResult:
    """Launch the named service and wait for its process to end.

    ``registry`` provides ``service(name)`` and ``edit_service(name)`` async
    context managers yielding the service and an editable view of it.
    """
    async with registry.service(name) as service:
        config = service.config

    log.info('Spawning process for "%s": "%s"', name, config.command)

    try:
        if config.uid != Uid.SHELL and config.uid != Uid.SYSTEM:
            process = await _spawn_zygote(config, pinit_id)
        else:
            process = await _spawn_standard(config, pinit_id)
    except Exception as err:
        message = f'Failed to spawn process for "{name}": {err}'
        log.error("%s", message)
        async with registry.edit_service(name) as editable:
            editable.state = ServiceRunState.failed(message)
        raise ProcessSpawnError(message) from err

    try:
        async with registry.edit_service(name) as editable:
            editable.state = ServiceRunState.running(process.pid)
        log.info('Monitoring task started for service "%s"', name)
        result = await _wait(process, name)
        log.info('Monitoring task finished for service "%s"', name)
    except BaseException:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        raise
    return result