from typing import Any, Dict, Protocol


class Broadcaster(Protocol):
    """
    Fan-out primitives the room core needs from the transport.

    Connections are addressed by the transport's own connection id; rooms are
    transport-level channels the dispatcher subscribes connections to.
    """

    def add_to_room(self, room_id: str, connection_id: str) -> None: ...

    def remove_from_room(self, room_id: str, connection_id: str) -> None: ...

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> None: ...

    async def send_to_room(self, room_id: str, message: Dict[str, Any]) -> None: ...

    async def send_to_room_except(
        self, room_id: str, exclude_connection_id: str, message: Dict[str, Any]
    ) -> None: ...
