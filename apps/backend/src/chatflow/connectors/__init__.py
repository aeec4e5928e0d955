"""Connector package: live collaborators with transparent simulator fallback.

Usage:
    from chatflow.connectors import create_service_layer, close_service_layer

    layer = create_service_layer(settings)
    try:
        executor = StepExecutor(ai_service=layer.ai, http_client=layer.http)
        ...
    finally:
        await close_service_layer(layer)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import httpx

from ..services import AIResponseService, HttpCallClient
from ..simulator import create_simulator
from ..simulator.failures import FailureConfig
from ..simulator.services import RecordingTransport
from ..simulator.state import SimulatorState
from .registry import ConnectorRegistry

if TYPE_CHECKING:
    from ..config import Settings

# Import all built-in connectors to trigger @register decoration
from . import ai, http  # noqa: E402, F401

logger = logging.getLogger(__name__)


@dataclass
class ServiceLayer:
    state: SimulatorState
    ai: AIResponseService
    # None means api_call/webhook steps are acknowledged without a network call
    http: Optional[HttpCallClient]
    transport: RecordingTransport
    http_client: Optional[httpx.AsyncClient] = None


def create_service_layer(
    settings: Settings,
    failure_config: FailureConfig | None = None,
) -> ServiceLayer:
    """Create the collaborator set with hybrid live+simulator routing.

    Modes (controlled by settings.connector_mode):
      "simulator": simulated AI, no outbound HTTP calls (default)
      "hybrid":    live connector per collaborator when configured,
                   simulator otherwise
      "real":      same as hybrid; a warning is logged for every
                   collaborator that is still simulated
    """
    state, sim_services = create_simulator(failure_config)
    layer = ServiceLayer(state=state, ai=sim_services["ai"], http=None, transport=sim_services["transport"])

    if settings.connector_mode == "simulator":
        return layer

    http_client = httpx.AsyncClient(timeout=settings.http_timeout)
    registry = ConnectorRegistry(settings, http_client, state)
    layer.http_client = http_client

    ai_connector = registry.get("ai")
    if ai_connector is not None:
        layer.ai = ai_connector
    elif settings.connector_mode == "real":
        logger.warning("connector_mode=real but AI service is not configured; using simulator")

    http_connector = registry.get("http")
    if http_connector is not None:
        layer.http = http_connector
    elif settings.connector_mode == "real":
        logger.warning("connector_mode=real but outbound HTTP calls are disabled")

    return layer


async def close_service_layer(layer: ServiceLayer) -> None:
    """Close the shared AsyncClient created by create_service_layer."""
    if layer.http_client is not None:
        await layer.http_client.aclose()
        layer.http_client = None
