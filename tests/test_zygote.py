import logging
import os
import struct

import pytest

from pinit import zygote
from pinit.errors import PinitError
from pinit.zygote import extract_and_write_fd, extract_fd, init_zygote_with_fd

MARKER = "com.android.internal.os.WrapperInit"


def _read_pid(read_fd):
    data = os.read(read_fd, 16)
    assert len(data) == 4
    return struct.unpack(">I", data)[0]


def test_extract_fd_returns_following_argument():
    assert extract_fd(["prog", "--x", MARKER, "17", "more"]) == "17"


def test_extract_fd_marker_at_end():
    assert extract_fd(["prog", MARKER]) is None


def test_extract_fd_without_marker():
    assert extract_fd(["prog", "controller"]) is None


def test_missing_fd_raises():
    with pytest.raises(PinitError, match="Could not find fd"):
        extract_and_write_fd(["prog"])


@pytest.mark.parametrize("text", ["abc", " 5", "1.5", ""])
def test_unparsable_fd_raises(text):
    with pytest.raises(PinitError, match="Fd parse error"):
        extract_and_write_fd(["prog", MARKER, text])


def test_pid_is_written_big_endian_and_fd_closed():
    read_fd, write_fd = os.pipe()
    try:
        result = extract_and_write_fd(["prog", MARKER, str(write_fd)])
        assert result is None
        assert _read_pid(read_fd) == os.getpid()
        assert os.read(read_fd, 16) == b""
    finally:
        os.close(read_fd)


def test_bad_descriptor_is_ignored():
    read_fd, write_fd = os.pipe()
    os.close(read_fd)
    os.close(write_fd)
    extract_and_write_fd(["prog", MARKER, str(write_fd)])
    with pytest.raises(OSError):
        os.fstat(write_fd)


@pytest.mark.asyncio
async def test_init_does_nothing_off_android(monkeypatch):
    monkeypatch.setattr(zygote, "ON_ANDROID", False)
    read_fd, write_fd = os.pipe()
    try:
        await init_zygote_with_fd(["prog", MARKER, str(write_fd)])
        os.close(write_fd)
        assert os.read(read_fd, 16) == b""
    finally:
        os.close(read_fd)


@pytest.mark.asyncio
async def test_init_writes_pid_on_android(monkeypatch):
    monkeypatch.setattr(zygote, "ON_ANDROID", True)
    read_fd, write_fd = os.pipe()
    try:
        result = await init_zygote_with_fd(["prog", MARKER, str(write_fd)])
        assert result is None
        assert _read_pid(read_fd) == os.getpid()
    finally:
        os.close(read_fd)


@pytest.mark.asyncio
async def test_init_logs_missing_fd_on_android(monkeypatch, caplog):
    monkeypatch.setattr(zygote, "ON_ANDROID", True)
    caplog.set_level(logging.ERROR, logger="pinit.zygote")
    await init_zygote_with_fd(["prog"])
    assert "fd error: Could not find fd" in caplog.text