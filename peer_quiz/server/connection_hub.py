"""Live WebSocket connections keyed by session id."""

from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from peer_quiz.core.events import Event, Outcome
from peer_quiz.core.room_manager import RoomManager

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Delivers operation outcomes: the reply to its requester, broadcasts to one room."""

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def register(self, websocket: WebSocket) -> str:
        session_id = uuid4().hex
        self._sockets[session_id] = websocket
        return session_id

    def unregister(self, session_id: str) -> None:
        self._sockets.pop(session_id, None)

    def connection_count(self) -> int:
        return len(self._sockets)

    async def send(self, session_id: str, event: Event) -> bool:
        """Send one event; a dead socket is dropped instead of failing the caller."""
        websocket = self._sockets.get(session_id)
        if websocket is None or websocket.client_state is not WebSocketState.CONNECTED:
            return False
        try:
            await websocket.send_json(event.to_message())
        except (RuntimeError, OSError, WebSocketDisconnect):
            logger.warning("Dropping %s for closed session %s", event.name, session_id)
            self.unregister(session_id)
            return False
        return True

    async def deliver(self, session_id: str, outcome: Outcome, manager: RoomManager) -> None:
        if outcome.reply is not None:
            await self.send(session_id, outcome.reply)
        if not outcome.broadcasts or outcome.room_code is None:
            return
        # session_ids takes the room lock, which workers hold across disk writes.
        recipients = await run_in_threadpool(manager.session_ids, outcome.room_code)
        for event in outcome.broadcasts:
            for recipient in recipients:
                await self.send(recipient, event)
