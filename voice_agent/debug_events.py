"""Per-session debug event broadcaster for real-time call tracing.

Each RealtimeVoiceHandler can have a DebugBroadcaster attached.  When events
are emitted (transcripts, LLM calls, tool calls, stage transitions, TTS
chunks, barge-ins), they are pushed to every subscriber's asyncio.Queue so
an inspector can follow the call live.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TypedDict

log = logging.getLogger("voice_agent.debug_events")

EVENT_TYPES = frozenset({
    "stt", "llm_call", "llm_response", "tool_call",
    "transition", "tts_chunk", "barge_in", "error",
})


class DebugEvent(TypedDict):
    type: str          # one of EVENT_TYPES
    timestamp: float
    session_id: str
    stage: str
    data: dict


class DebugBroadcaster:
    """Per-session event broadcaster using asyncio.Queue per subscriber."""

    def __init__(self, session_id: str, max_queue: int = 200) -> None:
        self._session_id = session_id
        self._max_queue = max_queue
        self._subscribers: list[asyncio.Queue[DebugEvent]] = []
        self._event_log: list[DebugEvent] = []

    def subscribe(self) -> asyncio.Queue[DebugEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[DebugEvent] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.append(q)
        log.info("Debug subscriber added for session %s (total: %d)",
                 self._session_id, len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[DebugEvent]) -> None:
        """Remove a subscriber queue. Unknown queues are ignored."""
        if q in self._subscribers:
            self._subscribers.remove(q)
        log.info("Debug subscriber removed for session %s (total: %d)",
                 self._session_id, len(self._subscribers))

    def emit(self, event_type: str, stage: str, data: dict) -> DebugEvent:
        """Broadcast an event to all subscribers and append to event log."""
        if event_type not in EVENT_TYPES:
            log.debug("Unregistered debug event type %r", event_type)
        event: DebugEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "session_id": self._session_id,
            "stage": stage,
            "data": data,
        }
        self._event_log.append(event)

        for q in self._subscribers:
            if q.full():
                # Drop oldest event to make room
                q.get_nowait()
            q.put_nowait(event)
        return event

    @property
    def event_log(self) -> list[DebugEvent]:
        """Full event history for debug context export."""
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
