"""Per-session audio stream bookkeeping.

Exactly one TTS stream may be current for a session.  Starting a new one
stops the previous one, and producers poll a stop checker between audio
chunks, so interruption is cooperative and takes effect at chunk
granularity.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional

from voice_agent.errors import StreamStateError

log = logging.getLogger("voice_agent.streaming.state")


@dataclass
class StreamState:
    session_id: str
    stream_id: str
    started_at: float
    should_stop: bool = False
    bytes_streamed: int = 0
    interrupted_at: Optional[float] = None


class StreamingStateManager:
    """Registry of the current audio stream per session id."""

    def __init__(self) -> None:
        self._streams: dict[str, StreamState] = {}
        self._on_interrupt: Optional[Callable[[str, str], None]] = None

    def set_on_interrupt(self, callback: Callable[[str, str], None] | None) -> None:
        """``callback(session_id, stream_id)`` runs once per stopped stream."""
        self._on_interrupt = callback

    def start_stream(self, session_id: str) -> str:
        previous = self._streams.get(session_id)
        if previous is not None:
            self.stop_stream(session_id)
            if not previous.should_stop:
                raise StreamStateError(
                    f"stream {previous.stream_id} for session {session_id} is still live"
                )

        stream_id = f"{session_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        self._streams[session_id] = StreamState(
            session_id=session_id,
            stream_id=stream_id,
            started_at=time.time(),
        )
        log.info("Started stream %s for session %s", stream_id, session_id)
        return stream_id

    def get_stop_stream(self, session_id: str) -> bool:
        state = self._streams.get(session_id)
        return state.should_stop if state else False

    def stop_stream(self, session_id: str) -> bool:
        """Flag the session's stream to stop. False if absent or already stopped."""
        state = self._streams.get(session_id)
        if state is None or state.should_stop:
            return False

        state.should_stop = True
        state.interrupted_at = time.time()
        log.info(
            "Stopping stream %s for session %s (streamed %d bytes in %.0fms)",
            state.stream_id, session_id, state.bytes_streamed,
            (state.interrupted_at - state.started_at) * 1000,
        )
        if self._on_interrupt:
            self._on_interrupt(session_id, state.stream_id)
        return True

    def update_bytes_streamed(self, session_id: str, n: int) -> None:
        state = self._streams.get(session_id)
        if state:
            state.bytes_streamed += n

    def end_stream(self, session_id: str) -> StreamState | None:
        """Remove the session's stream and return its final snapshot."""
        state = self._streams.pop(session_id, None)
        if state:
            log.info(
                "Ended stream %s for session %s (total %d bytes, interrupted: %s)",
                state.stream_id, session_id, state.bytes_streamed,
                state.interrupted_at is not None,
            )
        return state

    def has_active_stream(self, session_id: str) -> bool:
        state = self._streams.get(session_id)
        return state is not None and not state.should_stop

    def is_current(self, session_id: str, stream_id: str) -> bool:
        state = self._streams.get(session_id)
        return state is not None and state.stream_id == stream_id

    def get_stream_state(self, session_id: str) -> StreamState | None:
        state = self._streams.get(session_id)
        return replace(state) if state else None

    def get_all_streams(self) -> list[StreamState]:
        return [replace(s) for s in self._streams.values()]

    def clear(self) -> None:
        self._streams.clear()

    def create_stop_checker(
        self, session_id: str, stream_id: str | None = None
    ) -> Callable[[], bool]:
        """Return a zero-arg callable answering "should this producer stop?".

        Bound to ``stream_id``, it also answers True once that stream has
        been ended or superseded, so late chunks of an old stream are dropped.
        """
        if stream_id is None:
            return lambda: self.get_stop_stream(session_id)

        def should_stop() -> bool:
            state = self._streams.get(session_id)
            return state is None or state.stream_id != stream_id or state.should_stop

        return should_stop
