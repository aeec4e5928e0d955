"""ChatFlow simulated collaborators for previews and tests."""

from .failures import FailureConfig
from .services import RecordingTransport, SimulatedAIService, SimulatedHttpClient
from .state import SimulatorState


def create_simulator(
    failure_config: FailureConfig | None = None,
) -> tuple[SimulatorState, dict]:
    """Create a fresh simulator with all collaborators sharing one state."""
    state = SimulatorState()

    services = {
        "ai": SimulatedAIService(state, failure_config),
        "http": SimulatedHttpClient(state, failure_config),
        "transport": RecordingTransport(state, failure_config),
    }

    return state, services
