import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .automation.executor import StepExecutor
from .automation.graph import AutomationGraph
from .automation.integrations import INTEGRATIONS
from .automation.runtime import AutomationRuntime
from .automation.schema import AutomationRecord
from .automation.store import AutomationStore
from .automation.trigger import TriggerMatcher
from .automation.variables import VariableContext
from .config import get_settings
from .connectors import close_service_layer, create_service_layer
from .errors import GraphIntegrityError, PreviewError
from .models import (
    AutomationWriteRequest,
    ButtonClickRequest,
    EventRequest,
    HealthResponse,
    InboundMessageRequest,
    PreviewMessageRequest,
    PreviewStartRequest,
)
from .preview.session import PreviewSession, jittered_latency, no_latency

load_dotenv()

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[3]
AUTOMATIONS_DIR = settings.data_dir if settings.data_dir.is_absolute() else ROOT_DIR / settings.data_dir

automation_store = AutomationStore(AUTOMATIONS_DIR)
service_layer = create_service_layer(settings)
matcher = TriggerMatcher(legacy_entry_fallback=settings.execution.legacy_entry_fallback)
executor = StepExecutor(
    ai_service=service_layer.ai,
    http_client=service_layer.http,
    max_steps=settings.execution.max_steps,
)
runtime = AutomationRuntime(executor, matcher, service_layer.transport)
preview_sessions: dict[str, PreviewSession] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    for key in runtime.scheduler.pending():
        runtime.scheduler.cancel(key)
    await close_service_layer(service_layer)


app = FastAPI(
    title="ChatFlow API",
    description="Build chat automations as step graphs and preview how conversations flow through them",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _build_graph(request: AutomationWriteRequest) -> AutomationGraph:
    try:
        return AutomationGraph(steps=request.workflow, edges=request.connections)
    except (GraphIntegrityError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))


def _load(automation_id: str) -> tuple[AutomationRecord, AutomationGraph]:
    try:
        loaded = automation_store.load_graph(automation_id)
    except ValueError:
        loaded = None
    if loaded is None:
        raise HTTPException(status_code=404, detail="Automation not found")
    return loaded


def _get_session(session_id: str) -> PreviewSession:
    session = preview_sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Preview session not found")
    return session


def _entries_response(session: PreviewSession, entries) -> dict:
    return {
        "session_id": session.id,
        "entries": [e.model_dump(mode="json") for e in entries],
        "awaiting_field": session.awaiting_field,
    }


@app.get("/api/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok")


# --- Automations ---

@app.get("/api/automations")
def list_automations():
    return [r.model_dump(mode="json", by_alias=True) for r in automation_store.list_all()]


@app.post("/api/automations", status_code=201)
def create_automation(request: AutomationWriteRequest):
    graph = _build_graph(request)
    record = AutomationRecord(name=request.name, description=request.description, status=request.status)
    stored = automation_store.save_graph(record, graph)
    return stored.model_dump(mode="json", by_alias=True)


@app.get("/api/automations/{automation_id}")
def get_automation(automation_id: str):
    record, _ = _load(automation_id)
    return record.model_dump(mode="json", by_alias=True)


@app.put("/api/automations/{automation_id}")
def update_automation(automation_id: str, request: AutomationWriteRequest):
    existing, _ = _load(automation_id)
    graph = _build_graph(request)
    record = existing.model_copy(
        update={"name": request.name, "description": request.description, "status": request.status}
    )
    stored = automation_store.save_graph(record, graph)

    # Open previews pick up the edit on their next message
    for session in preview_sessions.values():
        if session.automation_id == automation_id:
            session.graph = graph
    return stored.model_dump(mode="json", by_alias=True)


@app.delete("/api/automations/{automation_id}")
def delete_automation(automation_id: str):
    try:
        deleted = automation_store.delete(automation_id)
    except ValueError:
        deleted = False
    if not deleted:
        raise HTTPException(status_code=404, detail="Automation not found")

    cancelled = runtime.cancel_automation(automation_id)
    for session_id in [sid for sid, s in preview_sessions.items() if s.automation_id == automation_id]:
        del preview_sessions[session_id]
    logger.info("Deleted automation %s (%d pending delays cancelled)", automation_id, cancelled)
    return {"status": "deleted", "automation_id": automation_id, "cancelled_delays": cancelled}


@app.post("/api/automations/{automation_id}/validate")
def validate_automation(automation_id: str):
    _, graph = _load(automation_id)
    issues = graph.validate()
    return {
        "valid": not any(i.severity == "error" for i in issues),
        "issues": [i.model_dump() for i in issues],
    }


# --- Live conversations ---

@app.post("/api/automations/{automation_id}/inbound")
async def receive_inbound(automation_id: str, request: InboundMessageRequest):
    _, graph = _load(automation_id)
    context = VariableContext(recipient=request.recipient, contact=request.contact)
    result = await runtime.handle_inbound(automation_id, graph, request.text, context)
    if result is None:
        return {"triggered": False, "automation_id": automation_id}
    return {
        "triggered": True,
        "automation_id": automation_id,
        "run_id": result.run_id,
        "status": result.status,
        "effects": [e.model_dump(mode="json") for e in result.effects],
    }


# --- Preview ---

@app.post("/api/automations/{automation_id}/preview", status_code=201)
def start_preview(automation_id: str, request: PreviewStartRequest | None = None):
    request = request or PreviewStartRequest()
    _, graph = _load(automation_id)
    session = PreviewSession(
        graph,
        executor,
        matcher=matcher,
        context=VariableContext(recipient=request.recipient, contact=request.contact),
        automation_id=automation_id,
        latency=(
            jittered_latency(settings.preview.typing_delay_min, settings.preview.typing_delay_max)
            if request.typing_delay
            else no_latency
        ),
        max_delay_seconds=settings.preview.max_delay_seconds,
    )
    preview_sessions[session.id] = session
    return session.to_dict()


@app.get("/api/preview/{session_id}")
def get_preview(session_id: str):
    return _get_session(session_id).to_dict()


@app.post("/api/preview/{session_id}/messages")
async def send_preview_message(session_id: str, request: PreviewMessageRequest):
    session = _get_session(session_id)
    try:
        entries = await session.send(request.text)
    except PreviewError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _entries_response(session, entries)


@app.post("/api/preview/{session_id}/buttons")
async def click_preview_button(session_id: str, request: ButtonClickRequest):
    session = _get_session(session_id)
    try:
        entries = await session.click_button(request.entry_id, request.index)
    except PreviewError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _entries_response(session, entries)


@app.post("/api/preview/{session_id}/events")
async def fire_preview_event(session_id: str, request: EventRequest):
    session = _get_session(session_id)
    try:
        entries = await session.fire_event(request.integration, request.event, request.payload)
    except PreviewError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _entries_response(session, entries)


# --- Integration catalog ---

@app.get("/api/integrations")
def list_integrations(category: str | None = None):
    return [i.to_dict() for i in INTEGRATIONS if category is None or i.category == category]
