"""Base interface for all live collaborator connectors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx

from ..errors import ServiceError
from ..simulator.state import CallRecord, SimulatorState

if TYPE_CHECKING:
    from ..config import Settings


class BaseConnector(ABC):
    """Abstract base for live connectors.

    A connector fulfils the same call/response contract as its simulated
    counterpart, so the executor never knows which one it was given. Calls are
    recorded in the shared ``SimulatorState`` log when one is attached.
    """

    service_name: str = ""

    def __init__(self, http_client: httpx.AsyncClient, state: SimulatorState | None = None) -> None:
        self.http = http_client
        self.state = state

    def _log(self, action: str, params: dict, result: dict | None, status: str = "success",
             error: str | None = None) -> None:
        """Append a call record; same shape as the simulated collaborators write."""
        if self.state is None:
            return
        self.state.calls.append(
            CallRecord(
                service=self.service_name,
                action=action,
                parameters=params,
                result=result,
                status=status,
                error=error,
            )
        )

    def _fail(self, message: str, error_type: str = "connector_error") -> None:
        """Raise a ServiceError for this connector."""
        raise ServiceError(message, error_type)

    @classmethod
    @abstractmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        state: SimulatorState | None = None,
    ) -> BaseConnector:
        """Construct this connector from application Settings."""
        ...

    @classmethod
    @abstractmethod
    def is_configured(cls, settings: Settings) -> bool:
        """Return True if everything the connector needs is present in settings."""
        ...
