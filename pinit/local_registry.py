"""In-process service registry used by both the controller and the worker."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import os
import signal
import uuid
from typing import Any, AsyncIterator, Optional

from .errors import PinitError, UnknownServiceError
from .models import (
    RestartPolicy,
    RunStateKind,
    ServiceConfig,
    ServiceRunState,
    ServiceStatus,
    Uid,
)
from .registry import Registry
from .service import SendableService, Service, SyncedService
from .spawn import spawn_service
from .state import StoredState

log = logging.getLogger(__name__)

_RESTART_DELAY = 1.0


def _stop_service(name: str, service: SyncedService) -> None:
    """Send SIGTERM to a running service and cancel its monitoring task."""
    state = service.state
    if state.kind is not RunStateKind.RUNNING:
        log.warning('Service "%s" is not running', name)
        return

    pid = state.pid
    # Stopping marks this as an intentional stop rather than a failure.
    service.state = ServiceRunState.stopping()

    log.info('Attempting to stop service "%s" (pid: %d). Sending SIGTERM', name, pid)
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as err:
        log.warning("Failed to send SIGTERM to pid %d: %s", pid, err)
    else:
        log.info("SIGTERM succeeded on pid %d", pid)

    task = service.monitor_task
    if task is not None:
        task.cancel()
    service.monitor_task = None


def _swap_remove(items: list[str], value: str) -> None:
    try:
        index = items.index(value)
    except ValueError:
        return
    last = items.pop()
    if index < len(items):
        items[index] = last


class LocalRegistry(Registry):
    """Services held in this process, guarded by a single lock."""

    def __init__(
        self,
        stored_state: StoredState,
        controller_connection: Optional[Any] = None,
    ) -> None:
        self._lock = asyncio.Lock()
        self._stored_state = stored_state
        self._services: dict[str, Service] = {}
        self._connection = controller_connection
        self._background: set[asyncio.Task] = set()

    @classmethod
    def new_controller(cls, stored_state: StoredState) -> LocalRegistry:
        """Registry for the controller, persisting enablement to ``stored_state``."""
        return cls(stored_state)

    @classmethod
    def new_worker(cls, connection: Any) -> LocalRegistry:
        """Registry for the worker, reporting every change over ``connection``."""
        return cls(StoredState.dummy(), connection)

    def _lookup(self, name: str) -> Service:
        try:
            return self._services[name]
        except KeyError:
            raise UnknownServiceError(name) from None

    @contextlib.asynccontextmanager
    async def service(self, name: str) -> AsyncIterator[Service]:
        """Hold the registry lock and yield the named service."""
        async with self._lock:
            yield self._lookup(name)

    @contextlib.asynccontextmanager
    async def edit_service(self, name: str) -> AsyncIterator[SyncedService]:
        """Hold the lock and yield an editable view; changes are reported afterwards."""
        async with self._lock:
            synced = SyncedService(self._lookup(name), self._connection)
            yield synced
            sendable = synced.sendable()
        if sendable.did_change:
            self._send_in_background(sendable)

    def _send_in_background(self, sendable: SendableService) -> None:
        # The update must not hold up the command that caused it.
        task = asyncio.get_running_loop().create_task(self._send(sendable))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _send(sendable: SendableService) -> None:
        try:
            await sendable.send_update_if_necessary()
        except Exception as err:
            log.debug("Could not send service update: %s", err)

    def _snapshot_state(self) -> StoredState:
        return dataclasses.replace(
            self._stored_state,
            enabled_services=list(self._stored_state.enabled_services),
        )

    async def is_enabled(self, name: str) -> bool:
        async with self._lock:
            return self._stored_state.enabled(name)

    async def is_worker_service(self, name: str) -> bool:
        async with self.service(name) as service:
            log.info("Config %r", service.config)
            return service.config.uid == Uid.SYSTEM

    async def insert_service(self, service: Service) -> None:
        async with self._lock:
            self._services[service.config.name] = service

    async def service_stop(self, name: str) -> None:
        async with self.edit_service(name) as service:
            _stop_service(name, service)

    async def service_restart_with_id(self, name: str, pinit_id: uuid.UUID) -> None:
        log.info('Restarting service "%s"', name)
        await self.service_stop(name)
        await self.service_start_with_id(name, pinit_id)

    def _spawn(self, name: str, pinit_id: uuid.UUID) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(self._monitor(name, pinit_id))

    async def _monitor(self, name: str, pinit_id: uuid.UUID) -> None:
        while True:
            log.info('Starting process "%s"', name)
            try:
                result = await spawn_service(self, name, pinit_id)
            except Exception:
                # Already logged by the spawner.
                return

            expected_stop = False
            try:
                async with self.service(name) as service:
                    expected_stop = service.state.kind is RunStateKind.STOPPING
            except UnknownServiceError:
                pass

            should_restart = await self._stop_and_should_restart(
                name, result.exit_code != 0, expected_stop, result.exit_message
            )
            if not should_restart:
                return
            await asyncio.sleep(_RESTART_DELAY)

    async def _stop_and_should_restart(
        self,
        name: str,
        did_fail: bool,
        expected_stop: bool,
        exit_message: str,
    ) -> bool:
        try:
            async with self.edit_service(name) as service:
                if did_fail and not expected_stop:
                    log.warning(
                        'Service "%s" transitioned to Failed state with message %s',
                        name,
                        exit_message,
                    )
                    service.state = ServiceRunState.failed(exit_message)
                else:
                    log.info('Service "%s" transitioned to Stopped state', name)
                    service.state = ServiceRunState.stopped()

                if expected_stop:
                    return False

                policy = service.config.restart
                should_restart = policy is RestartPolicy.ALWAYS or (
                    did_fail and policy is RestartPolicy.ON_FAILURE
                )
                if service.enabled and should_restart:
                    log.warning('Restarting service "%s" due to exit: %s', name, exit_message)
                    return True
                if not service.enabled:
                    log.info('Service "%s" exited but is disabled, not restarting', name)
                else:
                    log.info('Service "%s" exited and restart is not configured', name)
                return False
        except PinitError:
            return False

    async def service_names(self) -> list[str]:
        async with self._lock:
            return list(self._services)

    async def service_can_autostart(self, name: str) -> bool:
        async with self.service(name) as service:
            return (
                service.enabled
                and service.config.autostart
                and service.state == ServiceRunState.stopped()
            )

    async def insert_unit(self, config: ServiceConfig, enabled: bool) -> None:
        await self.insert_service(Service(config, ServiceRunState.stopped(), enabled))

    async def remove_unit(self, name: str) -> bool:
        await self.service_stop(name)
        async with self._lock:
            return self._services.pop(name, None) is not None

    async def service_start_with_id(self, name: str, pinit_id: uuid.UUID) -> bool:
        task = self._spawn(name, pinit_id)
        try:
            async with self.edit_service(name) as service:
                service.monitor_task = task
        except BaseException:
            task.cancel()
            raise
        return True

    async def service_enable(self, name: str) -> None:
        async with self.edit_service(name) as service:
            if service.enabled:
                log.warning('Attempted to enable already enabled service "%s"', name)
                should_save = False
            else:
                service.enabled = True
                should_save = True

        if should_save:
            async with self._lock:
                if name not in self._stored_state.enabled_services:
                    self._stored_state.enabled_services.append(name)
                snapshot = self._snapshot_state()
            snapshot.save()

    async def service_disable(self, name: str) -> None:
        async with self.edit_service(name) as service:
            if not service.enabled:
                log.warning('Attempted to disable already disabled service "%s"', name)
                should_save = False
            else:
                service.enabled = False
                should_save = True

        if should_save:
            async with self._lock:
                _swap_remove(self._stored_state.enabled_services, name)
                self._snapshot_state().save()

    async def service_status(self, name: str) -> ServiceStatus:
        async with self.service(name) as service:
            return service.status()

    async def service_list_all(self) -> list[ServiceStatus]:
        async with self._lock:
            return [service.status() for service in self._services.values()]

    async def shutdown(self) -> None:
        async with self._lock:
            for name, service in self._services.items():
                # Nothing needs reporting at shutdown.
                _stop_service(name, SyncedService(service, None))
            self._snapshot_state().save()