"""Persistent record of which services are enabled."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .errors import ConfigError, StateError
from .models import STATE_FILE

log = logging.getLogger(__name__)


@dataclass
class StoredState:
    """The enabled-service list kept on disk between daemon runs."""

    enabled_services: list[str] = field(default_factory=list)
    is_dummy: bool = False
    path: Path = field(default=Path(STATE_FILE), compare=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    @classmethod
    def dummy(cls) -> StoredState:
        """A state that treats every service as enabled and never saves."""
        return cls(is_dummy=True)

    @classmethod
    def load(cls, path: Union[str, Path] = STATE_FILE) -> StoredState:
        """Read the state file; a missing file means nothing is enabled."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            log.info("State file %s not found, assuming no services are enabled.", path)
            return cls(path=path)
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(str(exc)) from exc
        return cls._from_json(content, path)

    @classmethod
    def _from_json(cls, content: str, path: Path) -> StoredState:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise StateError(str(exc)) from exc
        if not isinstance(data, dict):
            raise StateError("expected a JSON object")
        try:
            services = data["enabled_services"]
            is_dummy = data["is_dummy"]
        except KeyError as exc:
            raise StateError(f"missing field {exc.args[0]}") from None
        if not isinstance(services, list) or not all(isinstance(s, str) for s in services):
            raise StateError("enabled_services must be a list of strings")
        if not isinstance(is_dummy, bool):
            raise StateError("is_dummy must be a boolean")
        return cls(list(services), is_dummy, path)

    def save(self) -> None:
        """Write the state to its file; a dummy state is never written."""
        if self.is_dummy:
            return
        content = json.dumps(
            {"enabled_services": self.enabled_services, "is_dummy": self.is_dummy},
            indent=2,
        )
        self.path.write_text(content, encoding="utf-8")
        log.info("Wrote updated state")

    def enable_service(self, name: str) -> None:
        if self.is_dummy:
            return
        if name not in self.enabled_services:
            self.enabled_services.append(name)
            self._save_quietly()

    def disable_service(self, name: str) -> None:
        if self.is_dummy:
            return
        try:
            index = self.enabled_services.index(name)
        except ValueError:
            return
        # Swap the last entry into the freed slot, as the saved order has always done.
        last = self.enabled_services.pop()
        if index < len(self.enabled_services):
            self.enabled_services[index] = last
        self._save_quietly()

    def enabled(self, name: str) -> bool:
        return self.is_dummy or name in self.enabled_services

    def _save_quietly(self) -> None:
        try:
            self.save()
        except OSError:
            pass