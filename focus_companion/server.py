"""
============================================================
 Focus Companion — Local API
 FastAPI + WebSocket hub in front of one SessionController.
 Run:  focus-companion
       uvicorn --factory focus_companion.server:get_app

   POST  /api/session/start | /api/session/end
   POST  /api/activity | /api/visibility | /api/notes | /api/apology
   GET   /api/status | /api/distractions
   GET / PATCH  /api/settings
   WS    /ws        mood + posture_debug pushes
============================================================
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from focus_companion import config
from focus_companion.session import SessionController

logger = logging.getLogger(__name__)


# ── Request models ──────────────────────────────────────────
class VisibilityUpdate(BaseModel):
    hidden: bool


class NotesUpdate(BaseModel):
    notes: str = ""
    keywords: Optional[List[str]] = None
    whitelist: Optional[List[str]] = None


class ApologyRequest(BaseModel):
    text: str


class SettingsUpdate(BaseModel):
    monitoring_enabled: Optional[bool] = None
    posture_monitoring_enabled: Optional[bool] = None
    demon_mode_enabled: Optional[bool] = None
    sound_enabled: Optional[bool] = None
    posture_debug_enabled: Optional[bool] = None


class ConnectionManager:
    """
    WebSocket hub: fans controller events out to every connected page.
    Events are queued and sent by one owned task, so pages see them in
    the order the controller emitted them.
    """

    def __init__(self) -> None:
        self.clients: Set[WebSocket] = set()
        self._queue: asyncio.Queue | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._sender())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.add(websocket)
        logger.info("[SERVER] Client connected (total: %d)", len(self.clients))

    def disconnect(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)
        logger.info("[SERVER] Client disconnected (total: %d)", len(self.clients))

    def publish(self, message: dict) -> None:
        """Queue `message` for every client. Called on the event loop thread."""
        if self.clients and self._queue is not None:
            self._queue.put_nowait(message)

    async def _sender(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.broadcast(message)
            except Exception:
                logger.exception("[SERVER] Broadcast failed")

    async def broadcast(self, message: dict) -> None:
        for ws in list(self.clients):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug("[SERVER] Dropping client: %s", e)
                self.disconnect(ws)


def create_app(controller: SessionController | None = None) -> FastAPI:
    """Build the API around `controller` (a default one is created if omitted)."""
    controller = controller or SessionController()
    manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        controller.bind_loop(asyncio.get_running_loop())
        await manager.start()
        controller.add_listener(manager.publish)
        logger.info("[SERVER] Ready")
        yield
        controller.remove_listener(manager.publish)
        await controller.shutdown()
        await manager.stop()

    app = FastAPI(title="Focus Companion", version=config.VERSION, lifespan=lifespan)
    app.state.controller = controller
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def require_session() -> None:
        if not controller.active:
            raise HTTPException(status_code=409, detail="No active session")

    # ── Session ──────────────────────────────────────────────
    @app.get("/api/status")
    async def api_status():
        return controller.status()

    @app.post("/api/session/start")
    async def session_start():
        return await controller.start_session()

    @app.post("/api/session/end")
    async def session_end():
        require_session()
        return await controller.end_session()

    # ── Page signals ─────────────────────────────────────────
    @app.post("/api/activity")
    async def activity():
        require_session()
        controller.record_activity()
        return controller.mood.status()

    @app.post("/api/visibility")
    async def visibility(update: VisibilityUpdate):
        require_session()
        controller.record_visibility(update.hidden)
        return controller.mood.status()

    @app.post("/api/notes")
    async def notes(update: NotesUpdate):
        require_session()
        on_topic = controller.update_notes(update.notes, update.keywords, update.whitelist)
        return {"on_topic": on_topic, **controller.mood.status()}

    @app.post("/api/apology")
    async def apology(request: ApologyRequest):
        require_session()
        return controller.submit_apology(request.text)

    # ── Settings & history ───────────────────────────────────
    @app.get("/api/settings")
    async def get_settings():
        return controller.settings.to_dict()

    @app.patch("/api/settings")
    async def patch_settings(update: SettingsUpdate):
        return await controller.update_settings(**update.model_dump(exclude_none=True))

    @app.get("/api/distractions")
    async def distractions(limit: int = 50):
        return {"distractions": controller.ledger.recent_distractions(limit=limit)}

    # ── WebSocket ────────────────────────────────────────────
    @app.websocket("/ws")
    async def ws_events(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            if controller.mood is not None:
                await websocket.send_json({"type": "mood", **controller.mood.status()})
            while True:
                raw = await websocket.receive_text()
                try:
                    cmd = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                if not isinstance(cmd, dict) or not controller.active:
                    continue
                # Pages may stream input / visibility events instead of POSTing them
                if cmd.get("type") == "activity":
                    controller.record_activity()
                elif cmd.get("type") == "visibility":
                    controller.record_visibility(bool(cmd.get("hidden")))
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


def get_app() -> FastAPI:
    """Factory for `uvicorn --factory focus_companion.server:get_app`."""
    return create_app()
