"""Storage abstractions for Grove MCP."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .sessions import ChromaSessionStore

__all__ = [
    "ChromaEvent",
    "ChromaSessionStore",
    "ChromaStore",
    "ChromaUnavailableError",
]
