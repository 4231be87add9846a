from pathlib import Path

import pytest

from pinit.codec import Reader, Writer
from pinit.errors import DecodeError, EncodeError
from pinit.models import (
    ExecCommand,
    JvmClassCommand,
    PackageCommand,
    RestartPolicy,
    RunStateKind,
    ServiceConfig,
    ServiceRunState,
    ServiceStatus,
    TriggerActivity,
    Uid,
    create_core_directories,
    decode_service_command,
    encode_service_command,
)


def _round_trip(value, decode):
    writer = Writer()
    value.encode(writer)
    reader = Reader(writer.getvalue())
    result = decode(reader)
    assert reader.remaining() == 0
    return result


@pytest.mark.parametrize(
    "state",
    [
        ServiceRunState.stopped(),
        ServiceRunState.stopping(),
        ServiceRunState.running(4242),
        ServiceRunState.failed("exit 1"),
    ],
)
def test_run_state_round_trip(state):
    assert _round_trip(state, ServiceRunState.decode) == state


def test_run_state_display():
    assert str(ServiceRunState.stopped()) == "Stopped"
    assert str(ServiceRunState.stopping()) == "Stopping"
    assert str(ServiceRunState.running(7)) == "Running (PID: 7)"
    assert str(ServiceRunState.failed("boom")) == "Failed: boom"


def test_running_state_requires_pid():
    with pytest.raises(ValueError):
        ServiceRunState(RunStateKind.RUNNING)


def test_run_state_pid_must_fit_u32():
    with pytest.raises(EncodeError):
        ServiceRunState.running(2**33).encode(Writer())


def test_run_state_unknown_variant():
    with pytest.raises(DecodeError):
        ServiceRunState.decode(Reader(bytes([9])))


def test_uid_parse_known_values():
    assert Uid.parse("1000") == Uid.SYSTEM
    assert Uid.parse("2000") == Uid.SHELL
    assert Uid.parse("42") == Uid(42)
    assert int(Uid.SYSTEM) == 1000
    assert int(Uid.SHELL) == 2000


@pytest.mark.parametrize("text", ["abc", "-1", "", "1 0", "99999999999999999999999"])
def test_uid_parse_rejects(text):
    with pytest.raises(ValueError, match="Unsupported Uid"):
        Uid.parse(text)


@pytest.mark.parametrize("uid", [Uid.SYSTEM, Uid.SHELL, Uid(10057), Uid(1000)])
def test_uid_round_trip(uid):
    assert _round_trip(uid, Uid.decode) == uid


def test_custom_uid_differs_from_system():
    assert Uid(1000) != Uid.SYSTEM
    assert str(Uid.SYSTEM) == "System"
    assert str(Uid(5)) == "Custom(5)"


def test_restart_policy_parse():
    assert RestartPolicy.parse("Always") is RestartPolicy.ALWAYS
    assert RestartPolicy.parse("ON-FAILURE") is RestartPolicy.ON_FAILURE
    assert RestartPolicy.parse("none") is RestartPolicy.NONE
    with pytest.raises(ValueError, match="Unsupported Restart"):
        RestartPolicy.parse("sometimes")


def test_command_display():
    assert str(ExecCommand("ls")) == "Command: ls"
    assert str(PackageCommand("com.example.app", "lib/bin")) == (
        "Package command: lib/bin at com.example.app"
    )
    assert str(JvmClassCommand("com.example.app", "Main")) == (
        "JVM class command: Main at com.example.app"
    )


@pytest.mark.parametrize(
    "command",
    [
        ExecCommand("echo hi"),
        ExecCommand("echo hi", TriggerActivity("com.example.app", "Main")),
        PackageCommand("com.example.app", "lib/arm64/run", "--fast", None),
        JvmClassCommand("com.example.app", "Main", "a b", "-Xmx1g", TriggerActivity("p", "a")),
        JvmClassCommand("com.example.app", "Main"),
    ],
)
def test_service_command_round_trip(command):
    writer = Writer()
    encode_service_command(command, writer)
    assert decode_service_command(Reader(writer.getvalue())) == command


def test_service_command_unknown_variant():
    with pytest.raises(DecodeError):
        decode_service_command(Reader(bytes([3])))


def _config(**overrides):
    values = dict(
        name="audio",
        command=PackageCommand("com.example.audio", "bin/audio", "-v"),
        autostart=True,
        restart=RestartPolicy.ON_FAILURE,
        uid=Uid.SYSTEM,
        se_info="platform:system_app",
        nice_name="audio-daemon",
        unit_file_path="units/audio.unit",
    )
    values.update(overrides)
    return ServiceConfig(**values)


def test_service_config_round_trip():
    config = _config()
    assert _round_trip(config, ServiceConfig.decode) == config
    assert config.unit_file_path == Path("units/audio.unit")


def test_service_config_round_trip_without_options():
    config = _config(se_info=None, nice_name=None, uid=Uid(10001), restart=RestartPolicy.NONE)
    assert _round_trip(config, ServiceConfig.decode) == config


def test_service_status_round_trip():
    status = ServiceStatus("audio", Uid.SHELL, False, ServiceRunState.running(12), "u/a.unit")
    assert _round_trip(status, ServiceStatus.decode) == status


def test_truncated_config_fails():
    writer = Writer()
    _config().encode(writer)
    with pytest.raises(DecodeError):
        ServiceConfig.decode(Reader(writer.getvalue()[:-3]))


def test_create_core_directories(tmp_path):
    config_dir = tmp_path / "etc" / "units"
    state_file = tmp_path / "state" / "pinitd.state"
    create_core_directories(str(config_dir), str(state_file))
    assert config_dir.is_dir()
    assert state_file.parent.is_dir()
    assert not state_file.exists()