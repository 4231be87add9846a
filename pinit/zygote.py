"""Reporting the helper pid back to a zygote wrapper over an inherited fd."""

from __future__ import annotations

import logging
import os
import re
import sys
from typing import Optional, Sequence

from .errors import PinitError
from .models import ON_ANDROID

log = logging.getLogger(__name__)

_WRAPPER_INIT = "com.android.internal.os.WrapperInit"
_FD_PATTERN = re.compile(r"[+-]?[0-9]+", re.ASCII)
_I32_MIN, _I32_MAX = -(2**31), 2**31 - 1


def extract_fd(args: Optional[Sequence[str]] = None) -> Optional[str]:
    """Return the argument that follows the wrapper-init marker, if any."""
    args = list(sys.argv if args is None else args)
    try:
        index = args.index(_WRAPPER_INIT)
    except ValueError:
        return None
    return args[index + 1] if index + 1 < len(args) else None


def extract_and_write_fd(args: Optional[Sequence[str]] = None) -> None:
    """Write this process's pid, big-endian, to the fd named on the command line."""
    fd_text = extract_fd(args)
    if fd_text is None:
        raise PinitError("Could not find fd")
    if not _FD_PATTERN.fullmatch(fd_text):
        raise PinitError(f"Fd parse error invalid digit found in string: {fd_text!r}")
    fd = int(fd_text)
    if not _I32_MIN <= fd <= _I32_MAX:
        raise PinitError(f"Fd parse error number too large to fit in target type: {fd_text}")

    pid = os.getpid() & 0xFFFF_FFFF
    log.info("Writing pid %d to fd %d", pid, fd)
    try:
        with os.fdopen(fd, "wb", buffering=0) as pipe:
            pipe.write(pid.to_bytes(4, "big"))
    except (OSError, ValueError):
        pass


async def init_zygote_with_fd(args: Optional[Sequence[str]] = None) -> None:
    """On Android, hand the pid back to the zygote wrapper; elsewhere do nothing."""
    if not ON_ANDROID:
        return
    try:
        extract_and_write_fd(args)
    except PinitError as error:
        log.error("fd error: %s", error)