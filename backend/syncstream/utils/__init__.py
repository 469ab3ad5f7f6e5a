from syncstream.utils.clock import now_ms
from syncstream.utils.logging_config import setup_logging, get_logger

__all__ = ["now_ms", "setup_logging", "get_logger"]
