"""Per-call conversation orchestrator: STT transcripts in, paced TTS audio out.

Each call gets a RealtimeVoiceHandler that:
  1. Holds the SessionState (lead, history, stage)
  2. Runs one LLM turn at a time; transcripts that arrive mid-turn wait in
     a FIFO and run afterwards
  3. Chunks the token stream at speech boundaries and hands chunks to a
     single TTS worker, so audio plays in generation order
  4. Applies tool calls to the session state as they arrive
  5. Paces audio to playback speed and stops it on barge-in
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from contextlib import aclosing
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from voice_agent.audio.barge_in import BargeInDetector, BargeInEvent
from voice_agent.audio.frames import PCMInput
from voice_agent.audio.pacer import StreamPacer
from voice_agent.config import Settings, settings
from voice_agent.debug_events import DebugBroadcaster
from voice_agent.errors import StreamStateError
from voice_agent.models.session import ConversationStage, MessageRole, SessionState
from voice_agent.models.tools import ToolCall
from voice_agent.providers.base import (
    CompleteEvent,
    LLMProvider,
    TokenEvent,
    ToolCallEvent,
    TranscriptSource,
    TTSProvider,
)
from voice_agent.streaming.chunker import SmartTextChunker
from voice_agent.streaming.state import StreamingStateManager
from voice_agent.tools.base import BaseTool
from voice_agent.tools.lead_capture import LEAD_CAPTURE_TOOLS
from voice_agent.workflows.real_estate import WORKFLOW_DEF
from voice_agent.workflows.schema import StageWorkflowDef
from voice_agent.workflows.stage_machine import next_stage

log = logging.getLogger("voice_agent.handler")


def redact_pii(value: str | None) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


def _noop(*args: Any) -> None:
    return None


@dataclass
class VoiceHandlerCallbacks:
    """Outbound hooks.  Each may be a plain function or a coroutine function."""

    on_transcript: Callable[[str, bool], Any] = _noop
    on_agent_text: Callable[[str, bool], Any] = _noop
    on_audio: Callable[[bytes], Any] = _noop
    on_state_update: Callable[[dict], Any] = _noop
    on_error: Callable[[Exception], Any] = _noop
    on_barge_in: Callable[[str], Any] = _noop


async def _notify(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class _SpeechItem:
    turn: int
    text: Optional[str]  # None marks the end of the turn


class RealtimeVoiceHandler:
    """One call's real-time conversation.

    Typical lifecycle::

        handler = RealtimeVoiceHandler(SessionState.new(call_id), llm, tts, callbacks)
        await handler.generate_greeting()

        # Either drive it from an STT source...
        await handler.consume(transcript_source)
        # ...or feed it yourself
        await handler.handle_transcript("I'm looking for a condo", is_final=True)
        await handler.process_audio_frame(mic_pcm)   # fallback barge-in

        await handler.close()
    """

    def __init__(
        self,
        session_state: SessionState,
        llm: LLMProvider,
        tts: TTSProvider,
        callbacks: VoiceHandlerCallbacks | None = None,
        *,
        stream_manager: StreamingStateManager | None = None,
        barge_in: BargeInDetector | None = None,
        pacer: StreamPacer | None = None,
        workflow: StageWorkflowDef | None = None,
        tools: dict[str, BaseTool] | None = None,
        config: Settings = settings,
    ) -> None:
        self.state = session_state
        self._llm = llm
        self._tts = tts
        self._callbacks = callbacks or VoiceHandlerCallbacks()
        self._config = config
        self._workflow = workflow or WORKFLOW_DEF
        self._tools = tools if tools is not None else LEAD_CAPTURE_TOOLS

        self._streams = stream_manager or StreamingStateManager()
        self._detector = barge_in or BargeInDetector(
            energy_threshold=config.barge_in_energy_threshold,
            min_frames=config.barge_in_min_frames,
            cooldown_ms=config.barge_in_cooldown_ms,
        )
        self._detector.set_on_barge_in(self._record_barge_in)
        self._last_barge_in: BargeInEvent | None = None
        self._pacer = pacer or StreamPacer(
            sample_rate=config.sample_rate,
            channels=config.channels,
            bits_per_sample=config.bits_per_sample,
            target_buffer_ms=config.tts_buffer_ms,
            min_sleep_ms=config.pacer_min_sleep_ms,
        )
        self._chunker = SmartTextChunker(config.min_chunk_words)
        self.native_turn_detection = config.native_turn_detection

        # LLM turn serialization
        self._busy = False
        self._pending: deque[str] = deque()
        self._turn = 0
        self._turn_tasks: set[asyncio.Task] = set()

        # TTS worker and the stream it is currently feeding
        self._speech_queue: asyncio.Queue[_SpeechItem] = asyncio.Queue()
        self._tts_task: asyncio.Task | None = None
        self._stream_turn: int | None = None
        self._stream_id: str | None = None
        self._should_stop: Callable[[], bool] = lambda: True

        self._debug_broadcaster: DebugBroadcaster | None = None
        self._closed = False

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def pending_transcripts(self) -> list[str]:
        return list(self._pending)

    @property
    def stream_manager(self) -> StreamingStateManager:
        return self._streams

    @property
    def barge_in_detector(self) -> BargeInDetector:
        return self._detector

    def attach_broadcaster(self, broadcaster: DebugBroadcaster) -> None:
        """Attach a debug event broadcaster to this handler."""
        self._debug_broadcaster = broadcaster

    def _emit_event(self, event_type: str, data: dict) -> None:
        if self._debug_broadcaster:
            self._debug_broadcaster.emit(event_type, self.state.current_stage.value, data)

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Snapshot of the handler for inspection.

        With detail=False: summary suitable for listing, PII redacted.
        With detail=True: adds the full lead record and recent messages.
        """
        lead = self.state.lead_info
        stream = self._streams.get_stream_state(self.session_id)
        d: dict[str, Any] = {
            "session_id": self.session_id,
            "current_stage": self.state.current_stage.value,
            "call_count": self.state.call_count,
            "is_active": self.state.is_active,
            "turn": self._turn,
            "busy": self._busy,
            "pending": len(self._pending),
            "agent_speaking": self._detector.is_agent_speaking,
            "stream": asdict(stream) if stream else None,
            "qualification_score": lead.qualification_score,
            "lead_name": redact_pii(lead.name),
        }
        if detail:
            d["lead_info"] = lead.model_dump(mode="json")
            d["message_count"] = len(self.state.conversation_history)
            d["recent_messages"] = [
                m.model_dump(mode="json") for m in self.state.conversation_history[-6:]
            ]
            if self._debug_broadcaster:
                d["event_log"] = self._debug_broadcaster.event_log
        return d

    # ── Greeting ──────────────────────────────────────────────

    async def generate_greeting(self) -> str:
        """Speak the opening line and move the conversation to ``introduction``."""
        name = self.state.lead_info.name
        if self.state.is_returning and name:
            greeting = (
                f"Hello {name}! Great to hear from you again. Last time we were "
                "discussing your interest in properties. How can I help you today?"
            )
        else:
            greeting = (
                f"Hello! Thank you for taking my call. My name is {self._config.agent_name}, "
                f"and I'm reaching out from {self._config.agency_name}. We specialize in "
                "helping people find their perfect home. Do you have a moment to chat "
                "about your real estate needs?"
            )

        self.state.add_message(MessageRole.ASSISTANT, greeting)
        self._set_stage(ConversationStage.INTRODUCTION)
        log.info("Greeting session %s (call #%d)", self.session_id, self.state.call_count)

        await _notify(self._callbacks.on_agent_text, greeting, True)
        self._turn += 1
        self._queue_speech(self._turn, greeting)
        self._queue_speech(self._turn, None)
        return greeting

    # ── Transcripts and LLM turns ─────────────────────────────

    async def handle_transcript(self, text: str, is_final: bool = True) -> None:
        """Accept an STT transcript.

        Interim transcripts are only forwarded to ``on_transcript``.  A final
        transcript starts an LLM turn, or waits in the pending FIFO if a turn
        is already running; the call that started the running turn also
        works through the FIFO before it returns.
        """
        text = text.strip()
        drive = False
        if is_final and text:
            if not self.state.is_active:
                log.info("Session %s has ended; ignoring transcript", self.session_id)
            elif self._busy:
                self._pending.append(text)
                log.debug("Turn in flight; queued transcript (%d pending)", len(self._pending))
            else:
                self._busy = True
                drive = True

        try:
            await _notify(self._callbacks.on_transcript, text, is_final)
            if is_final and text:
                self._emit_event("stt", {"text": text, "queued": not drive})
            if not drive:
                return

            next_text: str | None = text
            while next_text is not None:
                await self._process_user_input(next_text)
                if not self.state.is_active:
                    if self._pending:
                        log.info("Session %s ended; dropping %d pending transcripts",
                                 self.session_id, len(self._pending))
                    self._pending.clear()
                    break
                next_text = self._pending.popleft() if self._pending else None
        finally:
            if drive:
                self._busy = False

    async def _process_user_input(self, text: str) -> None:
        self._turn += 1
        turn = self._turn
        self.state.add_message(MessageRole.USER, text)

        system_prompt = self.build_contextual_prompt()
        history = self.state.conversation_history[-self._config.max_history_messages:]
        tool_defs = [tool.definition for tool in self._tools.values()]
        self._chunker.reset()
        parts: list[str] = []
        # Chunks handed to TTS this turn; the caller hears these even if the LLM fails
        queued: list[str] = []

        log.info("Turn %d for session %s: stage=%s history=%d",
                 turn, self.session_id, self.state.current_stage.value, len(history))
        self._emit_event("llm_call", {
            "turn": turn,
            "messages": len(history),
            "system_prompt_len": len(system_prompt),
        })

        try:
            async with aclosing(
                self._llm.generate_streaming(history, system_prompt, tool_defs)
            ) as events:
                async for event in events:
                    if isinstance(event, TokenEvent):
                        parts.append(event.text)
                        await _notify(self._callbacks.on_agent_text, event.text, False)
                        chunk = self._chunker.add_token(event.text)
                        while chunk:
                            self._queue_speech(turn, chunk)
                            queued.append(chunk)
                            chunk = self._chunker.next_chunk()
                    elif isinstance(event, ToolCallEvent):
                        self.handle_tool_call(event.tool_call)
                    elif isinstance(event, CompleteEvent):
                        log.debug("LLM complete: finish_reason=%s", event.finish_reason)

            tail = self._chunker.flush()
            if tail:
                self._queue_speech(turn, tail)
            await _notify(self._callbacks.on_agent_text, "", True)

            response = "".join(parts).strip()
            if response:
                self.state.add_message(MessageRole.ASSISTANT, response)
            self._emit_event("llm_response", {"turn": turn, "text": response[:500]})

            self.update_stage()
            await _notify(self._callbacks.on_state_update, self._state_update())
        except Exception as exc:
            log.error("Turn %d failed for session %s: %s", turn, self.session_id, exc)
            self._chunker.reset()
            if queued:
                self.state.add_message(MessageRole.ASSISTANT, " ".join(queued), incomplete=True)
            self._emit_event("error", {"turn": turn, "error": str(exc)})
            await _notify(self._callbacks.on_error, exc)
        finally:
            self._queue_speech(turn, None)

    def _state_update(self) -> dict[str, Any]:
        return {
            "current_stage": self.state.current_stage.value,
            "lead_info": self.state.lead_info.model_dump(mode="json"),
            "is_active": self.state.is_active,
        }

    # ── Tools and stages ──────────────────────────────────────

    def handle_tool_call(self, tool_call: ToolCall) -> str | None:
        """Apply a tool call to the session state. Unknown tools are ignored."""
        tool = self._tools.get(tool_call.name)
        if tool is None:
            log.warning("Unknown tool %r ignored", tool_call.name)
            return None

        stage_before = self.state.current_stage
        result = tool.execute(self.state, tool_call.arguments)
        log.info("Tool %s: %s", tool_call.name, result)
        self._emit_event("tool_call", {
            "name": tool_call.name,
            "fields": sorted(tool_call.arguments),
            "result": result,
        })
        if self.state.current_stage != stage_before:
            self._emit_event("transition", {
                "from": stage_before.value,
                "to": self.state.current_stage.value,
                "trigger": tool_call.name,
            })
        return result

    def update_stage(self) -> ConversationStage:
        """Recompute the stage after a completed turn."""
        lead = self.state.lead_info
        target = next_stage(
            self.state.current_stage.value,
            qualification_score=lead.qualification_score,
            has_property_type=lead.property_preferences.type is not None,
            workflow=self._workflow,
        )
        self._set_stage(ConversationStage(target))
        return self.state.current_stage

    def _set_stage(self, stage: ConversationStage) -> None:
        previous = self.state.current_stage
        if stage == previous:
            return
        self.state.current_stage = stage
        log.info("Session %s stage: %s -> %s", self.session_id, previous.value, stage.value)
        self._emit_event("transition", {"from": previous.value, "to": stage.value})

    def build_contextual_prompt(self) -> str:
        """Persona prompt plus what we know about the lead and the stage instruction."""
        lead = self.state.lead_info
        prefs = lead.property_preferences
        stage = self.state.current_stage.value

        prompt = self._workflow.system_prompt
        for placeholder, value in {
            "{{agent_name}}": self._config.agent_name,
            "{{agency_name}}": self._config.agency_name,
        }.items():
            prompt = prompt.replace(placeholder, value)

        lines = [
            "",
            "",
            "## Current Lead Context",
            f"- Call #{self.state.call_count}",
            f"- Conversation Stage: {stage}",
            f"- Qualification Score: {lead.qualification_score}/100",
        ]
        if lead.name:
            lines.append(f"- Name: {lead.name}")
        if prefs.type:
            lines.append(f"- Property Type: {prefs.type}")
        if prefs.locations:
            lines.append(f"- Interested Locations: {', '.join(prefs.locations)}")
        if lead.budget:
            low = _format_amount(lead.budget.min)
            high = _format_amount(lead.budget.max)
            lines.append(f"- Budget: ${low} - ${high}")
        if lead.timeline:
            lines.append(f"- Timeline: {lead.timeline}")

        lines += ["", "## Stage Instructions", self._workflow.instructions_for(stage)]
        return prompt + "\n".join(lines)

    # ── TTS worker ────────────────────────────────────────────

    def _queue_speech(self, turn: int, text: str | None) -> None:
        if self._closed:
            return
        if self._tts_task is None or self._tts_task.done():
            self._tts_task = asyncio.create_task(self._tts_worker())
        self._speech_queue.put_nowait(_SpeechItem(turn, text))

    async def _tts_worker(self) -> None:
        while True:
            item = await self._speech_queue.get()
            try:
                if item.text is None:
                    self._finish_stream(item.turn)
                else:
                    await self._speak_chunk(item.turn, item.text)
            except StreamStateError as exc:
                log.error("Stream invariant violated for session %s: %s", self.session_id, exc)
                self._emit_event("error", {"error": str(exc)})
                await _notify(self._callbacks.on_error, exc)
                return
            finally:
                self._speech_queue.task_done()

    def _begin_stream(self, turn: int) -> None:
        self._stream_id = self._streams.start_stream(self.session_id)
        self._should_stop = self._streams.create_stop_checker(self.session_id, self._stream_id)
        self._stream_turn = turn
        self._pacer.reset()
        self._detector.agent_started_speaking()

    async def _speak_chunk(self, turn: int, text: str) -> None:
        if self._stream_turn != turn:
            self._begin_stream(turn)
        if self._should_stop():
            log.debug("Stream stopped; skipping chunk %.40r", text)
            return

        self._emit_event("tts_chunk", {"turn": turn, "text": text})
        sent = 0
        try:
            async with aclosing(self._tts.synthesize(text)) as audio:
                async for pcm in audio:
                    if self._should_stop():
                        break
                    await self._pacer.pace(len(pcm))
                    if self._should_stop():
                        break
                    self._streams.update_bytes_streamed(self.session_id, len(pcm))
                    sent += len(pcm)
                    await _notify(self._callbacks.on_audio, pcm)
        except Exception as exc:
            log.error("TTS failed for chunk %.40r: %s", text, exc)
            self._emit_event("error", {"turn": turn, "error": str(exc), "source": "tts"})
            self._abort_stream()
            return
        log.debug("Spoke chunk (%d bytes): %.40r", sent, text)

    def _abort_stream(self) -> None:
        """Drop the current stream after a synthesis failure."""
        if self._stream_id and self._streams.is_current(self.session_id, self._stream_id):
            self._streams.end_stream(self.session_id)
        self._detector.agent_stopped_speaking()
        self._stream_turn = None
        self._stream_id = None
        self._should_stop = lambda: True

    def _finish_stream(self, turn: int) -> None:
        if self._stream_turn != turn:
            return
        self._abort_stream()

    async def drain(self) -> None:
        """Wait until every queued speech chunk has been played or skipped."""
        await self._speech_queue.join()

    # ── Barge-in ──────────────────────────────────────────────

    def _record_barge_in(self, event: BargeInEvent) -> None:
        self._last_barge_in = event

    async def handle_barge_in(self, source: str) -> bool:
        """Stop the current audio stream because the caller started talking.

        Returns True if a stream was actually stopped.
        """
        stopped = self._streams.stop_stream(self.session_id)
        self._detector.agent_stopped_speaking()
        if not stopped:
            return False

        log.info("Barge-in (%s) stopped audio for session %s", source, self.session_id)
        data: dict[str, Any] = {"source": source}
        if source == "energy" and self._last_barge_in:
            data["energy_level"] = round(self._last_barge_in.energy_level, 4)
            data["consecutive_frames"] = self._last_barge_in.consecutive_frames
        self._emit_event("barge_in", data)
        await _notify(self._callbacks.on_barge_in, source)
        return True

    async def handle_start_of_turn(self) -> bool:
        """Provider-native "caller started speaking" signal."""
        return await self.handle_barge_in("native")

    async def process_audio_frame(self, pcm: PCMInput) -> bool:
        """Feed caller audio to the fallback energy detector.

        Ignored when barge-in is disabled or the STT provider does its own
        turn detection.
        """
        if not self._config.barge_in_enabled or self.native_turn_detection:
            return False
        if not self._detector.process_audio_frame(pcm):
            return False
        return await self.handle_barge_in("energy")

    # ── Driving from an STT source ────────────────────────────

    async def consume(self, source: TranscriptSource) -> None:
        """Drive the handler from a transcript source until it is exhausted.

        Final transcripts run as background turns so start-of-turn events
        keep flowing (and can barge in) while the LLM is generating.
        """
        if source.supports_turn_detection:
            self.native_turn_detection = True

        async for event in source.transcripts():
            if event.start_of_turn:
                await self.handle_start_of_turn()
            if not event.text:
                continue
            if event.is_final:
                task = asyncio.create_task(self.handle_transcript(event.text, True))
                self._turn_tasks.add(task)
                task.add_done_callback(self._turn_tasks.discard)
            else:
                await self.handle_transcript(event.text, False)

        if self._turn_tasks:
            await asyncio.gather(*self._turn_tasks)

    async def close(self) -> None:
        """Stop speaking, end the session's stream and shut the TTS worker down."""
        self._closed = True
        self._streams.stop_stream(self.session_id)
        self._streams.end_stream(self.session_id)
        self._detector.reset()

        for task in [*self._turn_tasks, self._tts_task]:
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # Release items the cancelled worker never reached so drain() returns
        while not self._speech_queue.empty():
            self._speech_queue.get_nowait()
            self._speech_queue.task_done()
        self._tts_task = None
        log.info("Handler closed for session %s", self.session_id)


def _format_amount(value: float | None) -> str:
    if not value:
        return "?"
    return f"{value:,.0f}" if value == int(value) else f"{value:,.2f}"
