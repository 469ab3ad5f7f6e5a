"""
Custom Exception Classes for SyncStream

Every error the room core can raise is an AppException subclass carrying a
stable error code. The HTTP layer turns them into JSON error bodies and the
WebSocket dispatcher turns them into a single ``error`` frame.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes shared by HTTP and WebSocket responses"""

    # Room (ROOM_xxx)
    ROOM_NOT_FOUND = "ROOM_001"
    ROOM_FULL = "ROOM_003"
    NOT_ROOM_HOST = "ROOM_005"
    NOT_IN_ROOM = "ROOM_007"
    INVALID_ROOM_CODE = "ROOM_009"
    CODE_GENERATION_EXHAUSTED = "ROOM_010"

    # Chat (CHAT_xxx)
    EMPTY_MESSAGE = "CHAT_001"
    MESSAGE_TOO_LONG = "CHAT_002"

    # WebSocket (WS_xxx)
    WS_INVALID_MESSAGE = "WS_002"

    # Validation (VAL_xxx)
    VALIDATION_ERROR = "VAL_001"
    INVALID_INPUT = "VAL_002"
    MISSING_REQUIRED_FIELD = "VAL_003"

    # Store (STORE_xxx)
    STORE_UNAVAILABLE = "STORE_001"

    # General (GEN_xxx)
    INTERNAL_SERVER_ERROR = "GEN_001"
    SERVICE_UNAVAILABLE = "GEN_002"
    NOT_FOUND = "GEN_003"


class AppException(Exception):
    """
    Base exception class for all application errors.

    Attributes:
        message: Human readable error message
        code: Error code (ErrorCode enum)
        status_code: HTTP status code
        details: Extra error details (optional)
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Exception as a response dict"""
        result = {
            "error": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== Room Exceptions ====================

class RoomException(AppException):
    """Generic room error"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.ROOM_NOT_FOUND,
        status_code: int = 404,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, status_code, details)


class RoomNotFoundException(RoomException):
    """Room does not exist (never created, deleted or expired)"""

    def __init__(self, room_id: Optional[str] = None):
        super().__init__(
            "Room not found",
            ErrorCode.ROOM_NOT_FOUND,
            404,
            {"room_id": room_id} if room_id else None,
        )


class RoomFullException(RoomException):
    """Room reached its participant capacity"""

    def __init__(self, max_participants: int):
        super().__init__(
            "Room is full",
            ErrorCode.ROOM_FULL,
            409,
            {"max_participants": max_participants},
        )


class NotRoomHostException(RoomException):
    """Only the host may perform this action"""

    def __init__(self, message: str = "Only the room host can do this"):
        super().__init__(message, ErrorCode.NOT_ROOM_HOST, 403)


class NotInRoomException(RoomException):
    """Connection is not bound to a room"""

    def __init__(self, message: str = "Join a room first"):
        super().__init__(message, ErrorCode.NOT_IN_ROOM, 400)


class InvalidRoomCodeException(RoomException):
    """Room code has the wrong length or characters"""

    def __init__(self, room_id: str):
        super().__init__(
            "Invalid room code",
            ErrorCode.INVALID_ROOM_CODE,
            400,
            {"room_id": room_id},
        )


class CodeGenerationExhaustedException(RoomException):
    """No free room code found within the retry budget"""

    def __init__(self, attempts: int):
        super().__init__(
            "Could not generate room code",
            ErrorCode.CODE_GENERATION_EXHAUSTED,
            500,
            {"attempts": attempts},
        )


# ==================== Chat Exceptions ====================

class MessageRejectedException(AppException):
    """Chat message is empty or oversized"""

    def __init__(self, message: str, code: ErrorCode, details: Optional[dict[str, Any]] = None):
        super().__init__(message, code, 400, details)


class EmptyMessageException(MessageRejectedException):
    def __init__(self):
        super().__init__("Message is empty", ErrorCode.EMPTY_MESSAGE)


class MessageTooLongException(MessageRejectedException):
    def __init__(self, max_length: int):
        super().__init__(
            f"Message exceeds {max_length} characters",
            ErrorCode.MESSAGE_TOO_LONG,
            {"max_length": max_length},
        )


# ==================== WebSocket Exceptions ====================

class WebSocketInvalidMessageException(AppException):
    """Frame could not be parsed or has an unknown type"""

    def __init__(self, reason: str = "Invalid message format", details: Optional[dict[str, Any]] = None):
        all_details = {"reason": reason}
        if details:
            all_details.update(details)
        super().__init__(
            f"Invalid message: {reason}",
            ErrorCode.WS_INVALID_MESSAGE,
            400,
            all_details,
        )


# ==================== Validation Exceptions ====================

class ValidationException(AppException):
    """Generic validation error"""

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class InvalidInputException(ValidationException):
    """Invalid field value"""

    def __init__(self, field: str, reason: str = "Invalid value"):
        super().__init__(
            f"Invalid value: {field}",
            {"field": field, "reason": reason},
        )
        self.code = ErrorCode.INVALID_INPUT


class MissingFieldException(ValidationException):
    """Required field missing"""

    def __init__(self, field: str):
        super().__init__(
            f"Missing required field: {field}",
            {"field": field},
        )
        self.code = ErrorCode.MISSING_REQUIRED_FIELD


# ==================== Store Exceptions ====================

class StoreUnavailableException(AppException):
    """Backing store could not be reached; the operation was abandoned"""

    def __init__(self, operation: str, reason: str = "Unknown"):
        super().__init__(
            "Room state is temporarily unavailable",
            ErrorCode.STORE_UNAVAILABLE,
            503,
            {"operation": operation, "reason": reason},
        )
