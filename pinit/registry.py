"""Interface shared by the controller and worker service registries."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod

from .models import ServiceConfig, ServiceStatus


class Registry(ABC):
    """Operations every service registry provides."""

    @abstractmethod
    async def service_names(self) -> list[str]:
        """Names of all registered services."""

    @abstractmethod
    async def service_can_autostart(self, name: str) -> bool:
        """Whether the service is enabled, set to autostart and currently stopped."""

    @abstractmethod
    async def insert_unit(self, config: ServiceConfig, enabled: bool) -> None:
        """Register a service, replacing any service of the same name."""

    @abstractmethod
    async def remove_unit(self, name: str) -> bool:
        """Stop and unregister a service; returns whether it was registered."""

    @abstractmethod
    async def service_start_with_id(self, name: str, pinit_id: uuid.UUID) -> bool:
        """Start the service.

        Returns True if the service was started and False if it was already running.
        """

    @abstractmethod
    async def service_enable(self, name: str) -> None:
        """Mark the service as enabled."""

    @abstractmethod
    async def service_disable(self, name: str) -> None:
        """Mark the service as disabled."""

    @abstractmethod
    async def service_status(self, name: str) -> ServiceStatus:
        """Status summary of one service."""

    @abstractmethod
    async def service_list_all(self) -> list[ServiceStatus]:
        """Status summaries of every registered service."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Stop all services and persist the last known state."""