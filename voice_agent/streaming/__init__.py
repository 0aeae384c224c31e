"""Text chunking and per-session stream state."""

from .chunker import SmartTextChunker, is_abbreviation
from .state import StreamingStateManager, StreamState

__all__ = ["SmartTextChunker", "StreamState", "StreamingStateManager", "is_abbreviation"]
