"""Framed socket connections between the controller and the worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import WorkerProtocolError, WorkerTimeoutError
from .models import CONTROL_HOST, WORKER_PORT
from .protocol import read_message, write_message
from .worker_protocol import (
    BaseService,
    WorkerCommand,
    WorkerResponse,
    WorkerResponseKind,
)

log = logging.getLogger(__name__)

_COMMAND_TIMEOUT = 0.2
_READ_RETRY_DELAY = 1.0
_CLOSED = object()


class Connection:
    """A socket's two halves with their locks and a health flag."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        is_controller: bool,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.is_controller = is_controller
        self.read_lock = asyncio.Lock()
        self.write_lock = asyncio.Lock()
        self._disconnected = asyncio.Event()

    def is_connected(self) -> bool:
        return not self._disconnected.is_set()

    async def wait_for_disconnect(self) -> None:
        await self._disconnected.wait()

    def mark_disconnected(self, message: str) -> None:
        log.error(
            "Controller/worker (%s) connection lost. Error: %s",
            str(self.is_controller).lower(),
            message,
        )
        self._disconnected.set()


class WorkerConnection:
    """Held by the controller to send commands to the worker."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        service_updates: Optional[asyncio.Queue] = None,
    ) -> None:
        self.connection = Connection(reader, writer, True)
        self.service_updates: asyncio.Queue = (
            service_updates if service_updates is not None else asyncio.Queue(maxsize=10)
        )
        self._responses: asyncio.Queue = asyncio.Queue()
        self._read_task: Optional[asyncio.Task] = None
        self._in_shutdown = False

    def start(self) -> None:
        """Begin reading responses and service updates from the worker."""
        if self._read_task is None:
            self._read_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def _read_loop(self) -> None:
        connection = self.connection
        try:
            async with connection.read_lock:
                while True:
                    try:
                        response = await read_message(connection.reader, WorkerResponse)
                    except asyncio.IncompleteReadError:
                        return
                    except Exception as exc:
                        if not connection.is_connected():
                            return
                        log.error("Failed to read from worker: %s", exc)
                        await asyncio.sleep(_READ_RETRY_DELAY)
                        continue
                    if response.kind is WorkerResponseKind.SERVICE_UPDATE:
                        await self.service_updates.put(response.payload)
                    else:
                        self._responses.put_nowait(response)
        finally:
            self._responses.put_nowait(_CLOSED)

    async def _exchange(self, command: WorkerCommand) -> WorkerResponse:
        log.info("Sending worker command")
        async with self.connection.write_lock:
            await write_message(self.connection.writer, command)
            if self._in_shutdown:
                return WorkerResponse(WorkerResponseKind.SHUTTING_DOWN)
            response = await self._responses.get()
            if response is _CLOSED:
                self._responses.put_nowait(_CLOSED)
                raise WorkerProtocolError("Connection closed")
            return response

    async def write_command(self, command: WorkerCommand) -> WorkerResponse:
        """Send a command and wait briefly for the worker's reply."""
        try:
            response = await asyncio.wait_for(self._exchange(command), _COMMAND_TIMEOUT)
        except asyncio.TimeoutError:
            self.connection.mark_disconnected("deadline has elapsed")
            raise WorkerTimeoutError("deadline has elapsed") from None
        except Exception as exc:
            self.connection.mark_disconnected(str(exc))
            raise
        if response.kind is WorkerResponseKind.ERROR:
            raise WorkerProtocolError(response.payload)
        return response

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    async def wait_for_disconnect(self) -> None:
        await self.connection.wait_for_disconnect()

    async def shutdown(self) -> None:
        """Stop reading; later commands are sent without waiting for a reply."""
        self._in_shutdown = True
        if self._read_task is not None:
            self._read_task.cancel()


class ControllerConnection:
    """Held by the worker to receive commands from the controller."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connection = Connection(reader, writer, False)

    @classmethod
    async def open(cls, host: str = CONTROL_HOST, port: int = WORKER_PORT) -> ControllerConnection:
        reader, writer = await asyncio.open_connection(host, port)
        log.info("Connected to controller")
        return cls(reader, writer)

    async def read_command(self) -> WorkerCommand:
        async with self.connection.read_lock:
            log.info("Awaiting command")
            try:
                return await read_message(self.connection.reader, WorkerCommand)
            except Exception as exc:
                self.connection.mark_disconnected(str(exc))
                raise

    async def write_response(self, response: WorkerResponse) -> None:
        async with self.connection.write_lock:
            try:
                await write_message(self.connection.writer, response)
            except Exception as exc:
                self.connection.mark_disconnected(str(exc))
                raise