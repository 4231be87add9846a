"""Registered services and change tracking for worker synchronisation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import ServiceConfig, ServiceRunState, ServiceStatus
from .worker_protocol import BaseService, WorkerResponse, WorkerResponseKind

log = logging.getLogger(__name__)


@dataclass
class Service:
    """A service known to a registry, with its optional monitoring task."""

    config: ServiceConfig
    state: ServiceRunState
    enabled: bool
    monitor_task: Optional[Any] = field(default=None, compare=False, repr=False)

    @property
    def base(self) -> BaseService:
        return BaseService(self.config, self.state, self.enabled)

    def status(self) -> ServiceStatus:
        return ServiceStatus(
            name=self.config.name,
            uid=self.config.uid,
            enabled=self.enabled,
            state=self.state,
            config_path=self.config.unit_file_path,
        )

    def copy(self) -> Service:
        """A copy of the service without its monitoring task."""
        return Service(self.config, self.state, self.enabled)


class SyncedService:
    """Edits a service in place and records whether anything changed."""

    def __init__(self, service: Service, connection: Optional[Any] = None) -> None:
        self._service = service
        self._connection = connection
        self.did_change = False

    @property
    def config(self) -> ServiceConfig:
        return self._service.config

    @config.setter
    def config(self, value: ServiceConfig) -> None:
        if value != self._service.config:
            self._service.config = value
            self.did_change = True

    @property
    def enabled(self) -> bool:
        return self._service.enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        if value != self._service.enabled:
            self._service.enabled = value
            self.did_change = True

    @property
    def state(self) -> ServiceRunState:
        return self._service.state

    @state.setter
    def state(self, value: ServiceRunState) -> None:
        if value != self._service.state:
            self._service.state = value
            self.did_change = True

    @property
    def monitor_task(self) -> Optional[Any]:
        return self._service.monitor_task

    @monitor_task.setter
    def monitor_task(self, task: Optional[Any]) -> None:
        self._service.monitor_task = task

    def sendable(self) -> SendableService:
        """Snapshot the edited service for sending outside the registry lock."""
        return SendableService(self._service.copy(), self.did_change, self._connection)


@dataclass
class SendableService:
    """A service snapshot that can report itself to the controller."""

    service: Service
    did_change: bool
    connection: Optional[Any] = None

    async def send_update_if_necessary(self) -> None:
        if not self.did_change:
            return
        if self.connection is None:
            log.info("Cannot send update; no controller connection")
            return
        await self.connection.write_response(
            WorkerResponse(WorkerResponseKind.SERVICE_UPDATE, self.service.base)
        )