import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from syncstream.config import settings
from syncstream.error_handlers import WebSocketErrorHandler
from syncstream.exceptions import (
    AppException,
    ErrorCode,
    InvalidRoomCodeException,
    NotInRoomException,
    NotRoomHostException,
    WebSocketInvalidMessageException,
)
from syncstream.models.room import Participant
from syncstream.schemas.events import (
    ChangeMediaEvent,
    ChatMessageEvent,
    JoinRoomEvent,
    ReportPauseEvent,
    ReportPlayEvent,
    ReportSeekEvent,
    ShareStateEvent,
    parse_event,
)
from syncstream.services.broadcaster import Broadcaster
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.membership import MembershipManager
from syncstream.services.playback_sync import PlaybackSyncEngine
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.utils.logging_config import websocket_logger


@dataclass
class ConnectionContext:
    """The room binding of one live connection; unbound until a join succeeds."""

    connection_id: str
    room_id: Optional[str] = None
    participant_id: Optional[str] = None

    @property
    def bound(self) -> bool:
        return self.room_id is not None and self.participant_id is not None

    def bind(self, room_id: str, participant_id: str) -> None:
        self.room_id = room_id
        self.participant_id = participant_id

    def unbind(self) -> None:
        self.room_id = None
        self.participant_id = None


class ConnectionDispatcher:
    """
    Maps inbound WebSocket events onto the room services and their results
    back onto the transport. Every failure becomes one ``error`` frame to the
    offending connection; nothing propagates to the transport loop.
    """

    def __init__(
        self,
        lifecycle: RoomLifecycle,
        membership: MembershipManager,
        playback: PlaybackSyncEngine,
        chat: ChatRelay,
        broadcaster: Broadcaster,
        host_only_playback: bool = None,
    ):
        self.lifecycle = lifecycle
        self.membership = membership
        self.playback = playback
        self.chat = chat
        self.broadcaster = broadcaster
        self.host_only_playback = (
            settings.PLAYBACK_HOST_ONLY if host_only_playback is None else host_only_playback
        )
        self._handlers: Dict[str, Callable[[ConnectionContext, Any], Awaitable[None]]] = {
            "join_room": self._on_join,
            "leave_room": self._on_leave,
            "change_media": self._on_change_media,
            "report_play": self._on_report_play,
            "report_pause": self._on_report_pause,
            "report_seek": self._on_report_seek,
            "request_sync": self._on_request_sync,
            "share_state": self._on_share_state,
            "chat_message": self._on_chat_message,
            "typing_start": self._on_typing_start,
            "typing_stop": self._on_typing_stop,
            "ping": self._on_ping,
        }

    def connect(self, connection_id: str) -> ConnectionContext:
        websocket_logger.debug(f"Connection opened: {connection_id}")
        return ConnectionContext(connection_id=connection_id)

    async def dispatch(self, context: ConnectionContext, frame: Any) -> None:
        """Handle one inbound frame (raw text or decoded JSON)."""
        msg_type = None
        try:
            if isinstance(frame, (str, bytes)):
                try:
                    frame = json.loads(frame)
                except ValueError as e:
                    raise WebSocketInvalidMessageException("frame is not valid JSON") from e
            event = parse_event(frame)
            msg_type = event.type

            websocket_logger.debug(
                "WebSocket message received",
                extra={
                    "connection_id": context.connection_id,
                    "room_id": context.room_id,
                    "user_id": context.participant_id,
                    "msg_type": msg_type,
                }
            )
            await self._handlers[msg_type](context, event)

        except AppException as exc:
            WebSocketErrorHandler.log_websocket_error(
                error=exc,
                room_id=context.room_id,
                user_id=context.participant_id,
                message_type=msg_type,
            )
            await self.broadcaster.send_to(
                context.connection_id,
                WebSocketErrorHandler.build_error_message(exc.message, exc.code.value, exc.details),
            )
        except Exception as exc:
            websocket_logger.exception(
                "Unhandled error in WebSocket handler",
                extra={"connection_id": context.connection_id, "room_id": context.room_id, "msg_type": msg_type}
            )
            await self.broadcaster.send_to(
                context.connection_id,
                WebSocketErrorHandler.build_error_message(
                    "Unexpected server error", ErrorCode.INTERNAL_SERVER_ERROR.value
                ),
            )

    async def disconnect(self, context: ConnectionContext) -> None:
        """Transport-level drop; converges with an explicit leave."""
        websocket_logger.debug(f"Connection closed: {context.connection_id}")
        if not context.bound:
            return
        try:
            await self._leave(context)
        except AppException as exc:
            WebSocketErrorHandler.log_websocket_error(
                error=exc, room_id=context.room_id, user_id=context.participant_id, message_type="disconnect"
            )
        except Exception as exc:
            websocket_logger.exception(f"Error leaving room on disconnect: {exc}")

    # ==================== Helpers ====================

    async def _leave(self, context: ConnectionContext) -> None:
        room_id, participant_id = context.room_id, context.participant_id
        self.broadcaster.remove_from_room(room_id, context.connection_id)
        context.unbind()
        await self.membership.leave(room_id, participant_id, context.connection_id)

    async def _current_participant(self, context: ConnectionContext) -> Participant:
        """Participant record behind a bound connection."""
        if not context.bound:
            raise NotInRoomException()
        participant = await self.membership.get_participant(context.room_id, context.participant_id)
        if participant is None or participant.connection_id != context.connection_id:
            # Room expired or another connection took over this participant.
            self.broadcaster.remove_from_room(context.room_id, context.connection_id)
            context.unbind()
            raise NotInRoomException("Your room session has ended, join again")
        return participant

    async def _controller(self, context: ConnectionContext) -> Participant:
        """Participant allowed to drive media and playback."""
        participant = await self._current_participant(context)
        if self.host_only_playback and not await self.membership.is_host(context.room_id, participant.id):
            raise NotRoomHostException("Only the host controls playback")
        return participant

    # ==================== Handlers ====================

    async def _on_join(self, context: ConnectionContext, event: JoinRoomEvent) -> None:
        if context.bound and (context.room_id, context.participant_id) != (event.room_id, event.participant.id):
            await self._leave(context)

        if event.create:
            if not self.lifecycle.codes.is_valid_code(event.room_id):
                raise InvalidRoomCodeException(event.room_id)
            await self.lifecycle.create(
                event.room_id,
                initial_host_id=event.participant.id,
                name=f"{event.participant.name}'s Room",
            )

        result = await self.membership.join(
            event.room_id,
            event.participant.id,
            event.participant.name,
            event.participant.avatar,
            connection_id=context.connection_id,
        )
        self.broadcaster.add_to_room(event.room_id, context.connection_id)
        context.bind(event.room_id, event.participant.id)

        history = await self.chat.history(event.room_id)
        await self.broadcaster.send_to(context.connection_id, {
            "type": "room_joined",
            "room": result.room.to_wire(),
            "participants": [p.to_public() for p in result.participants],
            "messages": [m.to_wire() for m in history],
            "isHost": result.is_host,
        })

    async def _on_leave(self, context: ConnectionContext, event) -> None:
        if not context.bound:
            raise NotInRoomException()
        await self._leave(context)

    async def _on_change_media(self, context: ConnectionContext, event: ChangeMediaEvent) -> None:
        participant = await self._controller(context)
        await self.playback.set_media(context.room_id, event.media_type, event.media_url, participant)

    async def _on_report_play(self, context: ConnectionContext, event: ReportPlayEvent) -> None:
        participant = await self._controller(context)
        await self.playback.report_play(context.room_id, event.time, participant)

    async def _on_report_pause(self, context: ConnectionContext, event: ReportPauseEvent) -> None:
        participant = await self._controller(context)
        await self.playback.report_pause(context.room_id, event.time, participant)

    async def _on_report_seek(self, context: ConnectionContext, event: ReportSeekEvent) -> None:
        participant = await self._controller(context)
        await self.playback.report_seek(context.room_id, event.time, participant)

    async def _on_request_sync(self, context: ConnectionContext, event) -> None:
        participant = await self._current_participant(context)
        state = await self.playback.request_sync(context.room_id, participant)
        await self.broadcaster.send_to(context.connection_id, {"type": "sync_state", **state.to_wire()})

    async def _on_share_state(self, context: ConnectionContext, event: ShareStateEvent) -> None:
        participant = await self._controller(context)
        await self.playback.share_state(
            context.room_id, event.time, event.playing, participant, target_id=event.target_id
        )

    async def _on_chat_message(self, context: ConnectionContext, event: ChatMessageEvent) -> None:
        participant = await self._current_participant(context)
        await self.chat.post_message(context.room_id, participant, event.text)

    async def _on_typing_start(self, context: ConnectionContext, event) -> None:
        participant = await self._current_participant(context)
        await self.broadcaster.send_to_room_except(context.room_id, context.connection_id, {
            "type": "user_typing",
            "participantId": participant.id,
            "name": participant.name,
        })

    async def _on_typing_stop(self, context: ConnectionContext, event) -> None:
        participant = await self._current_participant(context)
        await self.broadcaster.send_to_room_except(context.room_id, context.connection_id, {
            "type": "user_stopped_typing",
            "participantId": participant.id,
        })

    async def _on_ping(self, context: ConnectionContext, event) -> None:
        await self.broadcaster.send_to(context.connection_id, {"type": "pong"})
