import asyncio
import uuid

import pytest

from pinit.errors import DecodeError
from pinit.models import (
    ExecCommand,
    RestartPolicy,
    ServiceConfig,
    ServiceRunState,
    ServiceStatus,
    Uid,
)
from pinit.protocol import (
    CliCommand,
    CliCommandKind,
    CliResponse,
    CliResponseKind,
    PmsFromRemote,
    PmsFromRemoteKind,
    PmsToRemote,
    PmsToRemoteResponse,
    frame,
    read_message,
    write_message,
)


class _Sink:
    def __init__(self):
        self.data = bytearray()
        self.drains = 0

    def write(self, data):
        self.data += data

    async def drain(self):
        self.drains += 1


def _status(name):
    return ServiceStatus(name, Uid.SHELL, True, ServiceRunState.running(31), f"u/{name}.unit")


def _config():
    return ServiceConfig(
        "audio", ExecCommand("audiod"), False, RestartPolicy.ALWAYS, Uid.SHELL, None, None, "u/a"
    )


@pytest.mark.parametrize(
    "command",
    [
        CliCommand(CliCommandKind.START, "audio"),
        CliCommand(CliCommandKind.STOP, "audio"),
        CliCommand(CliCommandKind.RESTART, "audio"),
        CliCommand(CliCommandKind.ENABLE, "audio"),
        CliCommand(CliCommandKind.DISABLE, "audio"),
        CliCommand(CliCommandKind.RELOAD, "audio"),
        CliCommand(CliCommandKind.RELOAD_ALL),
        CliCommand(CliCommandKind.STATUS, "audio"),
        CliCommand(CliCommandKind.CONFIG, "audio"),
        CliCommand(CliCommandKind.LIST),
        CliCommand(CliCommandKind.SHUTDOWN),
    ],
)
def test_cli_command_round_trip(command):
    assert CliCommand.from_bytes(command.to_bytes()) == command


def test_list_command_is_single_tag_byte():
    assert CliCommand(CliCommandKind.LIST).to_bytes() == bytes([9])


def test_cli_command_name_validation():
    with pytest.raises(ValueError):
        CliCommand(CliCommandKind.START)
    with pytest.raises(ValueError):
        CliCommand(CliCommandKind.LIST, "audio")


def test_cli_command_unknown_tag():
    with pytest.raises(DecodeError):
        CliCommand.from_bytes(bytes([11]))


@pytest.mark.parametrize(
    "response",
    [
        CliResponse(CliResponseKind.SUCCESS, "Started"),
        CliResponse(CliResponseKind.ERROR, "nope"),
        CliResponse(CliResponseKind.STATUS, _status("audio")),
        CliResponse(CliResponseKind.LIST, [_status("a"), _status("b")]),
        CliResponse(CliResponseKind.LIST, []),
        CliResponse(CliResponseKind.CONFIG, _config()),
        CliResponse(CliResponseKind.SHUTTING_DOWN),
    ],
)
def test_cli_response_round_trip(response):
    assert CliResponse.from_bytes(response.to_bytes()) == response


def test_cli_response_list_preserves_order():
    response = CliResponse(CliResponseKind.LIST, [_status("z"), _status("a")])
    decoded = CliResponse.from_bytes(response.to_bytes())
    assert [s.name for s in decoded.payload] == ["z", "a"]


def test_cli_response_payload_validation():
    with pytest.raises(ValueError):
        CliResponse(CliResponseKind.SUCCESS, 3)
    with pytest.raises(ValueError):
        CliResponse(CliResponseKind.SHUTTING_DOWN, "x")


@pytest.mark.parametrize(
    "message",
    [
        PmsFromRemote(PmsFromRemoteKind.WRAPPER_LAUNCHED, uuid.uuid4()),
        PmsFromRemote(PmsFromRemoteKind.PROCESS_ATTACHED, 1234),
        PmsFromRemote(PmsFromRemoteKind.PROCESS_EXITED, None),
        PmsFromRemote(PmsFromRemoteKind.PROCESS_EXITED, -9),
        PmsFromRemote(PmsFromRemoteKind.PROCESS_EXITED, 0),
    ],
)
def test_pms_from_remote_round_trip(message):
    assert PmsFromRemote.from_bytes(message.to_bytes()) == message


def test_pms_from_remote_bad_uuid_length():
    data = bytes([0, 3, 1, 2, 3])
    with pytest.raises(DecodeError):
        PmsFromRemote.from_bytes(data)


@pytest.mark.parametrize("message", list(PmsToRemote))
def test_pms_to_remote_round_trip(message):
    assert PmsToRemote.from_bytes(message.to_bytes()) is message


def test_pms_kill_wire_form():
    assert PmsToRemote.KILL.to_bytes() == b"\x01"


def test_pms_to_remote_unknown_tag():
    with pytest.raises(DecodeError):
        PmsToRemote.from_bytes(bytes([3]))


def test_pms_response_round_trip():
    assert PmsToRemoteResponse.from_bytes(PmsToRemoteResponse.ACK.to_bytes()) is (
        PmsToRemoteResponse.ACK
    )


def test_frame_prefixes_little_endian_length():
    assert frame(b"abc") == b"\x03\x00\x00\x00\x00\x00\x00\x00abc"


def test_frame_length_matches_payload():
    payload = bytes(300)
    framed = frame(payload)
    assert int.from_bytes(framed[:8], "little") == len(payload)
    assert framed[8:] == payload


@pytest.mark.asyncio
async def test_write_then_read_message():
    sink = _Sink()
    command = CliCommand(CliCommandKind.STATUS, "audio")
    await write_message(sink, command)
    assert sink.drains == 1
    reader = asyncio.StreamReader()
    reader.feed_data(bytes(sink.data))
    reader.feed_eof()
    assert await read_message(reader, CliCommand) == command


@pytest.mark.asyncio
async def test_read_several_messages_in_sequence():
    reader = asyncio.StreamReader()
    reader.feed_data(frame(PmsToRemote.ALLOW_START.to_bytes()) + frame(PmsToRemote.ACK.to_bytes()))
    reader.feed_eof()
    assert await read_message(reader, PmsToRemote) is PmsToRemote.ALLOW_START
    assert await read_message(reader, PmsToRemote) is PmsToRemote.ACK


@pytest.mark.asyncio
async def test_read_truncated_stream_raises():
    reader = asyncio.StreamReader()
    reader.feed_data(frame(b"abcde")[:-2])
    reader.feed_eof()
    with pytest.raises(asyncio.IncompleteReadError):
        await read_message(reader, CliCommand)