import re
import secrets
from typing import Awaitable, Callable

from syncstream.config import settings
from syncstream.exceptions import CodeGenerationExhaustedException
from syncstream.utils.logging_config import room_logger


class RoomCodeGenerator:
    """Short, unambiguous room codes with collision retry."""

    def __init__(self, alphabet: str = None, length: int = None):
        self.alphabet = alphabet or settings.ROOM_CODE_ALPHABET
        self.length = length or settings.ROOM_CODE_LENGTH
        self._pattern = re.compile(f"^[{re.escape(self.alphabet)}]{{{self.length}}}$")

    def generate(self) -> str:
        return "".join(secrets.choice(self.alphabet) for _ in range(self.length))

    def is_valid_code(self, code: str) -> bool:
        return bool(code) and bool(self._pattern.match(code))

    async def generate_unique(
        self,
        exists_check: Callable[[str], Awaitable[bool]],
        max_attempts: int = None,
    ) -> str:
        """
        Draw codes until ``exists_check`` reports one as free.

        Raises:
            CodeGenerationExhaustedException: every attempt collided
        """
        max_attempts = max_attempts or settings.ROOM_CODE_MAX_ATTEMPTS
        for attempt in range(1, max_attempts + 1):
            code = self.generate()
            if not await exists_check(code):
                return code
            room_logger.debug(f"Room code collision on attempt {attempt}: {code}")

        room_logger.error(
            "Room code generation exhausted",
            extra={"attempts": max_attempts, "alphabet_size": len(self.alphabet), "length": self.length}
        )
        raise CodeGenerationExhaustedException(max_attempts)
