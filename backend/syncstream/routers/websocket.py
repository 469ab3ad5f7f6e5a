import uuid
from typing import Any, Dict, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from syncstream.error_handlers import WebSocketErrorHandler
from syncstream.services.dispatcher import ConnectionDispatcher
from syncstream.utils.logging_config import websocket_logger

router = APIRouter(tags=["WebSocket"])


class ConnectionManager:
    """Live WebSocket connections and the room channels they are subscribed to."""

    def __init__(self):
        # connection_id -> WebSocket
        self.connections: Dict[str, WebSocket] = {}
        # room_id -> {connection_id}
        self.rooms: Dict[str, Set[str]] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self.connections[connection_id] = websocket
        websocket_logger.info(
            "WebSocket connected",
            extra={"connection_id": connection_id, "connections": len(self.connections)}
        )

    def unregister(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)
        for room_id in [r for r, members in self.rooms.items() if connection_id in members]:
            self.remove_from_room(room_id, connection_id)
        websocket_logger.info(
            "WebSocket disconnected",
            extra={"connection_id": connection_id, "connections": len(self.connections)}
        )

    def add_to_room(self, room_id: str, connection_id: str) -> None:
        self.rooms.setdefault(room_id, set()).add(connection_id)

    def remove_from_room(self, room_id: str, connection_id: str) -> None:
        members = self.rooms.get(room_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room_id]

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> None:
        """Send to one connection; a failed or missing peer is logged and skipped."""
        websocket = self.connections.get(connection_id)
        if websocket is None:
            websocket_logger.debug(
                "Connection not found for send_to",
                extra={"connection_id": connection_id, "message_type": message.get("type")}
            )
            return
        try:
            await websocket.send_json(message)
        except Exception as e:
            WebSocketErrorHandler.log_websocket_error(
                error=e,
                user_id=connection_id,
                message_type=message.get("type", "send_to"),
            )

    async def send_to_room(self, room_id: str, message: Dict[str, Any]) -> None:
        await self._broadcast(room_id, message, exclude_connection_id=None)

    async def send_to_room_except(
        self, room_id: str, exclude_connection_id: str, message: Dict[str, Any]
    ) -> None:
        await self._broadcast(room_id, message, exclude_connection_id=exclude_connection_id)

    async def _broadcast(self, room_id: str, message: Dict[str, Any], exclude_connection_id) -> None:
        failed = []
        # Copy: a send can yield while another task joins or leaves the room.
        for connection_id in list(self.rooms.get(room_id, ())):
            if connection_id == exclude_connection_id:
                continue
            websocket = self.connections.get(connection_id)
            if websocket is None:
                continue
            try:
                await websocket.send_json(message)
            except Exception as e:
                failed.append(connection_id)
                WebSocketErrorHandler.log_websocket_error(
                    error=e,
                    room_id=room_id,
                    user_id=connection_id,
                    message_type=message.get("type", "broadcast"),
                )

        if failed:
            websocket_logger.warning(
                "Failed to send message to some connections in room",
                extra={"room_id": room_id, "failed_connections": failed, "failed_count": len(failed)}
            )


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    One connection per client. The first useful frame is ``join_room``;
    everything afterwards is routed by the dispatcher until the socket drops.
    """
    manager: ConnectionManager = websocket.app.state.connection_manager
    dispatcher: ConnectionDispatcher = websocket.app.state.dispatcher

    await websocket.accept()
    connection_id = str(uuid.uuid4())
    manager.register(connection_id, websocket)
    context = dispatcher.connect(connection_id)

    try:
        while True:
            # Raw receive: text and binary frames both go to the dispatcher.
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes")
            if frame is None:
                continue
            await dispatcher.dispatch(context, frame)
    except WebSocketDisconnect:
        pass
    except Exception:
        websocket_logger.exception(
            "WebSocket error",
            extra={"connection_id": connection_id, "room_id": context.room_id}
        )
    finally:
        await dispatcher.disconnect(context)
        manager.unregister(connection_id)
