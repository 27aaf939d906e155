"""Bridge server. HTTP: health, topics, stats, diagnostics, publish. WebSocket: op frames (advertise, publish, subscribe, ...)."""

import asyncio
import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from topicbus.client_session import ClientSession
from topicbus.config import BridgeSettings, load_settings
from topicbus.diagnostics import DiagnosticsMonitor
from topicbus.errors import (
    ERROR_BAD_REQUEST,
    ERROR_INTERNAL,
    ERROR_UNAUTHORIZED,
    TopicTypeMismatchError,
)
from topicbus.memory import InMemoryConnection
from topicbus.observability import get_logger, set_level
from topicbus.protocol import HealthResponse, op_error, op_status
from topicbus.registry import TopicRegistry

logger = get_logger("topicbus.server")


class BridgeState:
    """Everything one app instance owns: the bus, HTTP-side topics, sessions and the monitor."""

    def __init__(self, settings: BridgeSettings) -> None:
        self.settings = settings
        self.bus = InMemoryConnection(latency=settings.bus_latency_sec)
        self.topics = TopicRegistry(self.bus)
        self.sessions: Dict[str, ClientSession] = {}
        self.monitor: Optional[DiagnosticsMonitor] = None
        self.start_time = 0.0


class XAPIKeyMiddleware(BaseHTTPMiddleware):
    """Require X-API-Key on HTTP requests when API_KEY is configured."""

    async def dispatch(self, request: Request, call_next):
        expected = request.app.state.bridge.settings.api_key
        if expected is None:
            return await call_next(request)
        key = (request.headers.get("X-API-Key") or "").strip()
        if key != expected:
            return JSONResponse(
                status_code=401,
                content={"error": ERROR_UNAUTHORIZED, "message": "invalid or missing X-API-Key"},
            )
        return await call_next(request)


async def _heartbeat_loop(state: BridgeState) -> None:
    """Periodically queue an info status (msg: heartbeat) to every connected client."""
    interval = state.settings.heartbeat_interval_sec
    if interval <= 0:
        return
    while True:
        await asyncio.sleep(interval)
        for session in list(state.sessions.values()):
            session.send(op_status("info", "heartbeat"))


def _ws_api_key_ok(websocket: WebSocket, expected: Optional[str]) -> bool:
    if expected is None:
        return True
    return (websocket.headers.get("x-api-key") or "").strip() == expected


class PublishBody(BaseModel):
    topic: str
    type: str
    msg: Dict[str, Any]


def create_app(settings: Optional[BridgeSettings] = None) -> FastAPI:
    settings = settings or load_settings()
    set_level(settings.log_level)
    state = BridgeState(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state.start_time = time.time()
        await state.bus.connect()
        namespace = settings.resolved_namespace
        if namespace:
            state.monitor = DiagnosticsMonitor(state.bus, namespace)
            await state.monitor.start()
            logger.info("diagnostics_monitor_started", extra={"topic": state.monitor.topic.name})
        heartbeat = asyncio.create_task(_heartbeat_loop(state))
        yield
        heartbeat.cancel()
        try:
            await heartbeat
        except asyncio.CancelledError:
            pass
        for session in list(state.sessions.values()):
            await session.close()
        state.sessions.clear()
        if state.monitor is not None:
            await state.monitor.stop()
        await state.topics.close_all()
        await state.bus.close()

    app = FastAPI(title="Topic Bridge API", lifespan=lifespan)
    app.state.bridge = state
    app.add_middleware(XAPIKeyMiddleware)
    router = APIRouter(prefix="/api/v1")

    # ---- Health / stats ----

    @router.get("/health")
    def health() -> JSONResponse:
        """GET /health → { uptime_sec, connected, channels, subscriptions, sessions }."""
        body = HealthResponse(
            uptime_sec=time.time() - state.start_time,
            connected=state.bus.is_connected,
            channels=len(state.bus.list_channels()),
            subscriptions=state.bus.subscription_count(),
            sessions=len(state.sessions),
        ).to_dict()
        return JSONResponse(content=body, status_code=200)

    @router.get("/topics")
    def list_topics() -> JSONResponse:
        """GET /topics → { channels: [ {name, type, publishers, subscriptions} ] }."""
        return JSONResponse(content={"channels": state.bus.list_channels()}, status_code=200)

    @router.get("/stats")
    def stats() -> JSONResponse:
        return JSONResponse(content=state.bus.metrics.snapshot(), status_code=200)

    # ---- Diagnostics ----

    @router.get("/diagnostics")
    def diagnostics() -> JSONResponse:
        """GET /diagnostics → latest statuses split by level, plus the name tree."""
        monitor = state.monitor
        if monitor is None:
            return JSONResponse(
                content={"error": "diagnostics monitor not configured (set ROBOT_NAMESPACE)"},
                status_code=404,
            )
        body = {
            "namespace": monitor.namespace,
            "topic": monitor.topic.name,
            "received": monitor.received,
            "summary": monitor.summary(),
            "tree": monitor.tree(),
        }
        return JSONResponse(content=body, status_code=200)

    # ---- Publish ----

    @router.post("/publish")
    async def publish(body: PublishBody) -> JSONResponse:
        """POST /publish { topic, type, msg } → 200, 409 on type conflict, 503 if not published."""
        name = body.topic.strip()
        if not name or not body.type.strip():
            return JSONResponse(content={"error": ERROR_BAD_REQUEST, "message": "topic and type are required"}, status_code=400)
        try:
            topic = state.topics.get_or_create(name, body.type.strip())
        except TopicTypeMismatchError as e:
            return JSONResponse(content={"error": e.code, "message": str(e)}, status_code=409)
        if not await topic.publish(body.msg):
            return JSONResponse(
                content={"error": ERROR_INTERNAL, "message": "message was not published", "topic": name},
                status_code=503,
            )
        return JSONResponse(content={"status": "published", "topic": name}, status_code=200)

    @router.delete("/topics/{name:path}")
    async def delete_topic(name: str) -> JSONResponse:
        """DELETE /topics/{name} → 200 { status: deleted, topic } or 404. Releases the HTTP-side publisher."""
        # Topic names carry a leading slash that the URL path cannot
        for candidate in (name, "/" + name.lstrip("/")):
            if candidate in state.topics:
                await state.topics.remove(candidate)
                return JSONResponse(content={"status": "deleted", "topic": candidate}, status_code=200)
        return JSONResponse(content={"error": "topic not found", "topic": name}, status_code=404)

    # ---- WebSocket ----

    @router.websocket("/ws")
    async def websocket_handler(websocket: WebSocket) -> None:
        """
        WebSocket endpoint. Client ops: advertise, unadvertise, publish, subscribe,
        unsubscribe, ping. Server frames: publish, ack, status, pong.
        """
        await websocket.accept()
        if not _ws_api_key_ok(websocket, settings.api_key):
            await websocket.send_json(op_error(None, ERROR_UNAUTHORIZED, "invalid or missing X-API-Key"))
            await websocket.close()
            return
        client_id = f"ws_{uuid.uuid4().hex[:8]}"
        session = ClientSession(
            client_id, state.bus, websocket.send_json, queue_max_size=settings.client_queue_max_size
        )
        session.start()
        state.sessions[client_id] = session
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    frame = json.loads(data)
                except json.JSONDecodeError:
                    session.send(op_error(None, ERROR_BAD_REQUEST, "invalid JSON"))
                    continue
                await session.handle(frame)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.exception("session_failed", extra={"client_id": client_id, "error": str(e)})
        finally:
            state.sessions.pop(client_id, None)
            await session.close()

    app.include_router(router)
    return app


app = create_app()
