"""SyncStream: room-based playback and chat relay."""

__version__ = "1.0.0"
