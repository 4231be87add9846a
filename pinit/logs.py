"""Logging set-up that prefixes every message with the process role."""

from __future__ import annotations

import copy
import logging
from typing import Optional

_DEFAULT_FORMAT = "%(asctime)s %(levelname)-5s [%(name)s] %(message)s"


class TaggedFormatter(logging.Formatter):
    """Formats records as usual, with ``"<tag>: "`` put before the message."""

    def __init__(
        self,
        tag: str,
        fmt: Optional[str] = _DEFAULT_FORMAT,
        datefmt: Optional[str] = None,
    ) -> None:
        super().__init__(fmt, datefmt)
        self.tag = tag

    def format(self, record: logging.LogRecord) -> str:
        tagged = copy.copy(record)
        tagged.msg = f"{self.tag}: {record.getMessage()}"
        tagged.args = None
        return super().format(tagged)


def init_logging(tag: str) -> logging.Handler:
    """Install a tagged handler on the root logger.

    Only the first call installs a handler; later calls leave it in place
    and return it unchanged.
    """
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler.formatter, TaggedFormatter):
            return handler
    handler = logging.StreamHandler()
    handler.setFormatter(TaggedFormatter(tag))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)
    return handler