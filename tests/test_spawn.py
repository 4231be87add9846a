import contextlib
import sys
import uuid
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pinit.errors import ProcessSpawnError, UnknownServiceError
from pinit.models import (
    ExecCommand,
    JvmClassCommand,
    PackageCommand,
    RestartPolicy,
    RunStateKind,
    ServiceConfig,
    ServiceRunState,
    TriggerActivity,
    Uid,
)
from pinit.service import Service, SyncedService
from pinit.spawn import (
    SpawnResult,
    expanded_command,
    fetch_package_path,
    spawn_service,
    wrapper_command,
    zygote_trigger_activity,
)

LAUNCH_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")


def _fake_pm(stdout, returncode=0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, b""))
    process.returncode = returncode
    return AsyncMock(return_value=process)


def _config(name="svc", uid=Uid.SHELL, command=None):
    return ServiceConfig(
        name=name,
        command=command or ExecCommand("run"),
        autostart=False,
        restart=RestartPolicy.NONE,
        uid=uid,
        se_info=None,
        nice_name=None,
        unit_file_path=Path("/units/svc.unit"),
    )


class _FakeRegistry:
    def __init__(self, service):
        self.services = {service.config.name: service}
        self.states = []

    @contextlib.asynccontextmanager
    async def service(self, name):
        if name not in self.services:
            raise UnknownServiceError(name)
        yield self.services[name]

    @contextlib.asynccontextmanager
    async def edit_service(self, name):
        if name not in self.services:
            raise UnknownServiceError(name)
        synced = SyncedService(self.services[name])
        yield synced
        self.states.append(synced.state)


def test_wrapper_command_plain():
    result = wrapper_command("echo hi", LAUNCH_ID, False, "/bin/pinitd")
    assert result == f'/bin/pinitd monitored-wrapper "{LAUNCH_ID}" "echo hi"'


def test_wrapper_command_zygote():
    result = wrapper_command("echo hi", LAUNCH_ID, True, "/bin/pinitd")
    assert result == f'/bin/pinitd monitored-wrapper --is-zygote "{LAUNCH_ID}" "echo hi"'


def test_wrapper_command_defaults_to_running_program(tmp_path):
    program = tmp_path / "pinitd"
    program.write_text("")
    with patch.object(sys, "argv", [str(program)]):
        result = wrapper_command("x", LAUNCH_ID, False)
    assert result.startswith(f"{program.resolve()} monitored-wrapper ")


def test_default_trigger_activity():
    assert zygote_trigger_activity(ExecCommand("x")) == TriggerActivity(
        "com.android.settings", "com.android.settings.Settings"
    )


def test_trigger_activity_uses_package_for_both():
    command = PackageCommand("pkg", "bin", trigger_activity=TriggerActivity("pkg", "Main"))
    assert zygote_trigger_activity(command) == TriggerActivity("pkg", "pkg")


@pytest.mark.asyncio
async def test_expanded_exec_command_is_verbatim():
    assert await expanded_command(ExecCommand("sleep 5 && echo")) == "sleep 5 && echo"


@pytest.mark.asyncio
async def test_fetch_package_path_strips_prefix():
    fake = _fake_pm(b"package:/data/app/foo/base.apk\n")
    with patch("asyncio.create_subprocess_exec", new=fake):
        result = await fetch_package_path("foo")
    assert result == "/data/app/foo/base.apk"
    assert fake.call_args.args == ("pm", "path", "foo")


@pytest.mark.asyncio
async def test_fetch_package_path_failure_status():
    with patch("asyncio.create_subprocess_exec", new=_fake_pm(b"", returncode=1)):
        with pytest.raises(ProcessSpawnError, match="Could not find package foo"):
            await fetch_package_path("foo")


@pytest.mark.asyncio
async def test_fetch_package_path_rejects_other_locations():
    with patch("asyncio.create_subprocess_exec", new=_fake_pm(b"package:/system/app/x.apk")):
        with pytest.raises(ProcessSpawnError, match="invalid package path"):
            await fetch_package_path("foo")


@pytest.mark.asyncio
async def test_fetch_package_path_rejects_bad_utf8():
    with patch("asyncio.create_subprocess_exec", new=_fake_pm(b"\xff\xfe")):
        with pytest.raises(ProcessSpawnError):
            await fetch_package_path("foo")


@pytest.mark.asyncio
async def test_expanded_package_command_joins_content_path():
    command = PackageCommand("foo", "/lib/tool", args="--flag")
    with patch("asyncio.create_subprocess_exec", new=_fake_pm(b"package:/data/app/foo/base.apk")):
        result = await expanded_command(command)
    assert result == "/data/app/foo/base.apk/lib/tool --flag"


@pytest.mark.asyncio
async def test_expanded_jvm_command():
    command = JvmClassCommand("foo", "com.Main", command_args="a b", jvm_args="-Xmx1m")
    with patch("asyncio.create_subprocess_exec", new=_fake_pm(b"package:/data/app/foo/base.apk")):
        result = await expanded_command(command)
    assert result == (
        "/system/bin/app_process -cp /data/app/foo/base.apk -Xmx1m /system/bin "
        "--application com.Main a b"
    )


@pytest.mark.asyncio
async def test_spawn_service_reports_exit_code(tmp_path):
    script = tmp_path / "pinitd"
    script.write_text("#!/bin/sh\nexit 3\n")
    script.chmod(0o755)
    registry = _FakeRegistry(Service(_config(), ServiceRunState.stopped(), True))
    with patch.object(sys, "argv", [str(script)]):
        result = await spawn_service(registry, "svc", LAUNCH_ID)
    assert result == SpawnResult(3, "Exited with code 3")
    assert registry.states[0].kind is RunStateKind.RUNNING
    assert registry.states[0].pid > 0


@pytest.mark.asyncio
async def test_spawn_service_custom_uid_fails():
    registry = _FakeRegistry(Service(_config(uid=Uid(5000)), ServiceRunState.stopped(), True))
    with pytest.raises(ProcessSpawnError, match='Failed to spawn process for "svc"'):
        await spawn_service(registry, "svc", LAUNCH_ID)
    assert registry.states[-1].kind is RunStateKind.FAILED
    assert registry.services["svc"].state.reason.startswith('Failed to spawn process for "svc"')


@pytest.mark.asyncio
async def test_spawn_service_unknown_name():
    registry = _FakeRegistry(Service(_config(), ServiceRunState.stopped(), True))
    with pytest.raises(UnknownServiceError):
        await spawn_service(registry, "missing", LAUNCH_ID)