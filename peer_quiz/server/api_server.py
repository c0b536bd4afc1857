"""FastAPI server exposing the room WebSocket, saved-data endpoints and media uploads."""

from __future__ import annotations

import json
import logging

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool
import uvicorn

from peer_quiz.constants.network_constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    UPLOADS_URL_PREFIX,
    WEBSOCKET_PATH,
)
from peer_quiz.core.errors import RoomError
from peer_quiz.core.events import Event
from peer_quiz.core.room_manager import RoomManager
from peer_quiz.server.connection_hub import ConnectionHub
from peer_quiz.server.event_router import disconnect, dispatch
from peer_quiz.server.media_uploads import MediaStore, UploadRejected
from peer_quiz.server.payloads import HostNamePayload, SaveScoresPayload

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "validation": 422,
    "authorization": 403,
    "not_found": 404,
    "capacity": 409,
    "state": 409,
}


def _http_error(exc: RoomError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_KIND.get(exc.kind, 400), detail=exc.message)


def _get_room_manager_dependency(room_manager: RoomManager):
    def dependency() -> RoomManager:
        return room_manager

    return dependency


def create_api_app(room_manager: RoomManager, media_store: MediaStore) -> FastAPI:
    """Create a FastAPI application wired to the provided room manager."""
    app = FastAPI(title="Peer Quiz API", version="0.1.0")
    room_manager_dep = _get_room_manager_dependency(room_manager)
    hub = ConnectionHub()

    @app.get("/api/health")
    def health(manager: RoomManager = Depends(room_manager_dep)) -> dict[str, object]:
        return {"status": "ok", "rooms": manager.room_count(), "connections": hub.connection_count()}

    @app.post("/api/check-quiz")
    def check_quiz(
        payload: HostNamePayload,
        manager: RoomManager = Depends(room_manager_dep),
    ) -> dict[str, object]:
        try:
            exists = manager.has_saved_quiz(payload.host_name)
        except RoomError as exc:
            raise _http_error(exc) from exc
        return {"exists": exists}

    @app.post("/api/check-scores")
    def check_scores(
        payload: HostNamePayload,
        manager: RoomManager = Depends(room_manager_dep),
    ) -> dict[str, object]:
        try:
            scores_data = manager.saved_scores(payload.host_name)
        except RoomError as exc:
            raise _http_error(exc) from exc
        return {"exists": scores_data is not None, "scores_data": scores_data}

    @app.post("/api/save-scores", status_code=201)
    def save_scores(
        payload: SaveScoresPayload,
        manager: RoomManager = Depends(room_manager_dep),
    ) -> dict[str, object]:
        rows = [row.model_dump() for row in payload.scores]
        try:
            saved = manager.store_score_rows(payload.host_name, payload.room_code, rows)
        except RoomError as exc:
            raise _http_error(exc) from exc
        if not saved:
            raise HTTPException(status_code=500, detail="Scores could not be saved.")
        return {"success": True, "message": "Scores saved."}

    @app.post("/api/upload", status_code=201)
    async def upload_media(file: UploadFile = File(...)) -> dict[str, object]:
        data = await file.read()
        try:
            stored = media_store.store(file.filename or "upload", file.content_type, data)
        except UploadRejected as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"success": True, **stored.to_dict()}

    @app.websocket(WEBSOCKET_PATH)
    async def room_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        session_id = hub.register(websocket)
        await hub.send(session_id, Event("connected", {"session_id": session_id}))
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    message = json.loads(text)
                except ValueError:
                    await hub.send(
                        session_id,
                        Event("error", {"kind": "validation", "message": "Messages must be JSON."}),
                    )
                    continue
                outcome = await run_in_threadpool(dispatch, room_manager, session_id, message)
                await hub.deliver(session_id, outcome, room_manager)
        except WebSocketDisconnect:
            logger.info("Session %s disconnected", session_id)
        finally:
            hub.unregister(session_id)
            outcome = await run_in_threadpool(disconnect, room_manager, session_id)
            await hub.deliver(session_id, outcome, room_manager)

    app.mount(
        UPLOADS_URL_PREFIX,
        StaticFiles(directory=media_store.upload_dir, check_dir=False),
        name="uploads",
    )
    return app


def run_api_server(
    room_manager: RoomManager,
    media_store: MediaStore,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(room_manager, media_store)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    server.run()
