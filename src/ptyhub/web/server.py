"""Web transport — REST endpoints and the viewer WebSocket over one SessionService."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ptyhub import __version__
from ptyhub.config import PtyHubConfig
from ptyhub.errors import describe_validation_error
from ptyhub.pty.manager import SessionService
from ptyhub.pty.session import SessionStatus, SpawnOptions
from ptyhub.web.hub import SubscriptionHub, Viewer

logger = logging.getLogger(__name__)

WEB_API_PARENT_ID = "web-api"

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _success() -> JSONResponse:
    return JSONResponse({"success": True})


def _service(request: Request) -> SessionService:
    return request.app.state.service


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


@router.get("")
async def list_sessions(request: Request) -> JSONResponse:
    return JSONResponse([s.to_json() for s in _service(request).list()])


@router.post("")
async def create_session(request: Request) -> JSONResponse:
    body = await _json_body(request)
    if body is None:
        return _error("Invalid JSON in request body", 400)
    command = body.get("command")
    if not isinstance(command, str) or not command.strip():
        return _error("Command is required", 400)
    try:
        options = SpawnOptions(
            command=command,
            args=body.get("args") or [],
            title=body.get("description"),
            description=body.get("description"),
            workdir=body.get("workdir"),
            parent_session_id=WEB_API_PARENT_ID,
        )
    except ValidationError as e:
        return _error(f"Invalid session options: {describe_validation_error(e)}", 400)
    session = await _service(request).spawn(options)
    return JSONResponse(session.to_json())


@router.delete("")
async def clear_sessions(request: Request) -> JSONResponse:
    _service(request).clear_all_sessions()
    return _success()


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request) -> JSONResponse:
    session = _service(request).get(session_id)
    if session is None:
        return _error("Session not found", 404)
    return JSONResponse(session.to_json())


@router.delete("/{session_id}")
async def kill_session(session_id: str, request: Request) -> JSONResponse:
    if not _service(request).kill(session_id):
        return _error("Failed to kill session", 400)
    return _success()


@router.delete("/{session_id}/cleanup")
async def cleanup_session(session_id: str, request: Request) -> JSONResponse:
    if not _service(request).kill(session_id, cleanup=True):
        return _error("Failed to kill session", 400)
    return _success()


@router.post("/{session_id}/input")
async def send_input(session_id: str, request: Request) -> JSONResponse:
    body = await _json_body(request)
    if body is None:
        return _error("Invalid JSON in request body", 400)
    data = body.get("data")
    if not isinstance(data, str) or not data:
        return _error("Data field is required and must be a string", 400)
    if not _service(request).write(session_id, data):
        return _error("Failed to write to session", 400)
    return _success()


@router.get("/{session_id}/buffer/raw")
async def get_raw_buffer(session_id: str, request: Request) -> JSONResponse:
    buffer = _service(request).get_raw_buffer(session_id)
    if buffer is None:
        return _error("Session not found", 404)
    return JSONResponse(buffer.model_dump(by_alias=True))


@router.get("/{session_id}/buffer/plain")
async def get_plain_buffer(session_id: str, request: Request) -> JSONResponse:
    buffer = _service(request).get_plain_buffer(session_id)
    if buffer is None:
        return _error("Session not found", 404)
    return JSONResponse(buffer.model_dump(by_alias=True))


async def _pump(websocket: WebSocket, viewer: Viewer) -> None:
    """Forward queued frames to the socket until the viewer is closed."""
    while True:
        frame = await viewer.outbox.get()
        if frame is None:
            return
        await websocket.send_text(frame)


async def viewer_socket(websocket: WebSocket) -> None:
    hub: SubscriptionHub = websocket.app.state.hub
    await websocket.accept()
    viewer = hub.connect()
    sender = asyncio.create_task(_pump(websocket, viewer))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            payload = message.get("text")
            if payload is None:
                payload = message.get("bytes") or b""
            await hub.handle_message(viewer, payload)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(viewer)
        sender.cancel()


def create_app(service: SessionService | None = None, config: PtyHubConfig | None = None) -> FastAPI:
    """Create the FastAPI application around a session service.

    A fresh service is built from ``config`` when none is given. All
    sessions are cleared when the application shuts down.
    """
    service = service or SessionService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting ptyhub web transport...")
        yield
        logger.info("Shutting down ptyhub web transport...")
        app.state.hub.close()
        await service.shutdown()

    app = FastAPI(title="ptyhub", version=__version__, lifespan=lifespan)
    app.state.service = service
    app.state.hub = SubscriptionHub(service)
    app.state.started_at = time.monotonic()

    app.include_router(router)
    app.add_api_websocket_route("/ws", viewer_socket)

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        sessions = service.list()
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": time.monotonic() - request.app.state.started_at,
            "sessions": {
                "total": len(sessions),
                "active": sum(1 for s in sessions if s.status == SessionStatus.RUNNING),
            },
            "websocket": {"connections": request.app.state.hub.connection_count},
        }

    return app


def run_server(config: PtyHubConfig) -> None:
    """Serve the web transport until interrupted."""
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(config=config),
            host=config.server.host,
            port=config.server.port,
            log_level="info",
        )
    )
    asyncio.run(server.serve())
