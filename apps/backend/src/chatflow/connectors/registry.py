"""Connector registry: maps collaborator names to connector classes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Type

import httpx

from ..simulator.state import SimulatorState
from .base import BaseConnector

if TYPE_CHECKING:
    from ..config import Settings


# Connector classes by service name, filled by @register
_REGISTRY: dict[str, Type[BaseConnector]] = {}


def register(cls: Type[BaseConnector]) -> Type[BaseConnector]:
    """Class decorator that registers a connector under its service name."""
    _REGISTRY[cls.service_name] = cls
    return cls


class ConnectorRegistry:
    """Instantiates live connectors for one service layer."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        state: SimulatorState | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._state = state
        # Cache instances keyed by service name for the lifetime of this registry
        self._cache: dict[str, BaseConnector] = {}

    def get(self, service_name: str) -> BaseConnector | None:
        """Return a configured connector instance, or None if unavailable."""
        if service_name in self._cache:
            return self._cache[service_name]

        cls = _REGISTRY.get(service_name)
        if cls is None or not cls.is_configured(self._settings):
            return None

        instance = cls.from_settings(self._settings, self._http, self._state)
        self._cache[service_name] = instance
        return instance
