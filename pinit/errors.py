"""Exception hierarchy shared by the daemon, its worker and the control tool."""

from __future__ import annotations


class PinitError(Exception):
    """Base class for every error raised by the package."""

    template = "{}"

    def __init__(self, detail: object = "") -> None:
        self.detail = detail
        super().__init__(self.template.format(detail))


class EncodeError(PinitError):
    """A value could not be encoded for the wire."""

    template = "Bincode encode error {}"


class DecodeError(PinitError):
    """Bytes received from the wire could not be decoded."""

    template = "Bincode decode error {}"


class WorkerProtocolError(PinitError):
    """The worker bridge returned an error or closed unexpectedly."""

    template = "Error reading from worker bridge: {}"


class WorkerTimeoutError(PinitError, TimeoutError):
    """The worker did not answer in time."""

    template = "Worker timeout error: {}"


class UnknownServiceError(PinitError, LookupError):
    """No service is registered under the requested name."""

    template = 'Unknown service: "{}"'

    @property
    def name(self) -> str:
        return str(self.detail)


class ConfigError(PinitError, ValueError):
    """A unit file or configuration value is invalid."""

    template = "Failed to parse config: {}"


class StateError(PinitError):
    """The persistent state file could not be parsed."""

    template = "Failed to parse persistent state: {}"


class ProcessSpawnError(PinitError):
    """A service process could not be launched."""

    template = "Error spawning process: {}"


class ZygoteError(PinitError):
    """The zygote-spawned environment is unsuitable."""

    template = "Zygote error: {}"