"""Capability interfaces for the speech and language providers.

The orchestrator only talks to these ABCs.  Concrete STT and TTS adapters
(vendor WebSocket framing, codecs) live with the transport; an
OpenAI-compatible LLM adapter ships in ``openai_compat``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Union

from voice_agent.models.session import ConversationMessage
from voice_agent.models.tools import ToolCall, ToolDefinition


# ── Speech-to-text ────────────────────────────────────────────────

@dataclass
class TranscriptEvent:
    """One transcript update from the STT provider."""

    text: str
    is_final: bool
    start_of_turn: bool = False  # provider-native "caller started talking"


class TranscriptSource(ABC):
    """Streaming STT: yields interim and final transcripts for one call."""

    @property
    def supports_turn_detection(self) -> bool:
        """True if the provider emits its own start-of-turn events."""
        return False

    @abstractmethod
    def transcripts(self) -> AsyncIterator[TranscriptEvent]:
        """Async iterator over transcript events for the life of the call."""


# ── LLM ───────────────────────────────────────────────────────────

@dataclass
class TokenEvent:
    text: str


@dataclass
class ToolCallEvent:
    tool_call: ToolCall


@dataclass
class CompleteEvent:
    full_text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None


LLMEvent = Union[TokenEvent, ToolCallEvent, CompleteEvent]


class LLMProvider(ABC):
    """Token-streaming chat model with tool calling."""

    name: str = "llm"

    @abstractmethod
    def generate_streaming(
        self,
        messages: list[ConversationMessage],
        system_prompt: str,
        tools: list[ToolDefinition] | None = None,
    ) -> AsyncIterator[LLMEvent]:
        """Yield TokenEvents and ToolCallEvents in order, then one CompleteEvent."""

    async def aclose(self) -> None:
        """Release network resources. Default: nothing to release."""


# ── Text-to-speech ────────────────────────────────────────────────

class TTSProvider(ABC):
    """Streaming synthesis: text in, PCM int16 audio chunks out."""

    name: str = "tts"

    @abstractmethod
    def synthesize(self, text: str) -> AsyncIterator[bytes]:
        """Yield PCM chunks for ``text`` as they are produced."""
