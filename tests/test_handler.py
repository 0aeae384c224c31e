"""Tests for RealtimeVoiceHandler: turn ordering, speech streaming, tools and barge-in."""

import asyncio

import numpy as np
import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from voice_agent.audio.pacer import StreamPacer
from voice_agent.config import Settings
from voice_agent.debug_events import DebugBroadcaster
from voice_agent.errors import ProviderError
from voice_agent.handler import RealtimeVoiceHandler, VoiceHandlerCallbacks, redact_pii
from voice_agent.models import ConversationStage, MessageRole, SessionState, ToolCall
from voice_agent.providers.base import (
    CompleteEvent,
    LLMProvider,
    TokenEvent,
    ToolCallEvent,
    TranscriptEvent,
    TranscriptSource,
    TTSProvider,
)
from voice_agent.streaming.state import StreamingStateManager

LOUD = np.full(320, 16000, dtype=np.int16)
PCM = b"\x01\x00" * 160  # 10ms of audio


# ── Fakes ─────────────────────────────────────────────────────────


class FakeLLM(LLMProvider):
    """Plays back one scripted response per call.

    Script items are LLM events, an asyncio.Event to wait on, or an
    exception to raise.
    """

    name = "fake-llm"

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = []

    async def generate_streaming(self, messages, system_prompt, tools=None):
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt, "tools": tools})
        script = self.scripts.pop(0) if self.scripts else [CompleteEvent()]
        for item in script:
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            if isinstance(item, Exception):
                raise item
            yield item
            await asyncio.sleep(0)


class FakeTTS(TTSProvider):
    name = "fake-tts"

    def __init__(self, pieces=2, fail_on=()):
        self.pieces = pieces
        self.fail_on = set(fail_on)
        self.texts = []

    async def synthesize(self, text):
        self.texts.append(text)
        if text in self.fail_on:
            raise ProviderError(self.name, "synthesis failed")
        for _ in range(self.pieces):
            yield PCM
            await asyncio.sleep(0)


class CountingStreams(StreamingStateManager):
    def __init__(self):
        super().__init__()
        self.started = []

    def start_stream(self, session_id):
        stream_id = super().start_stream(session_id)
        self.started.append(stream_id)
        return stream_id


class FakeSource(TranscriptSource):
    def __init__(self, events, native=False):
        self.events = events
        self.native = native

    @property
    def supports_turn_detection(self):
        return self.native

    async def transcripts(self):
        for event in self.events:
            yield event
            await asyncio.sleep(0)


async def _no_sleep(seconds):
    return None


class Recorder:
    """Collects every callback invocation."""

    def __init__(self):
        self.transcripts = []
        self.agent_text = []
        self.audio = []
        self.state_updates = []
        self.errors = []
        self.barge_ins = []

    def callbacks(self, **overrides):
        cb = VoiceHandlerCallbacks(
            on_transcript=lambda text, final: self.transcripts.append((text, final)),
            on_agent_text=lambda text, final: self.agent_text.append((text, final)),
            on_audio=self.audio.append,
            on_state_update=self.state_updates.append,
            on_error=self.errors.append,
            on_barge_in=self.barge_ins.append,
        )
        for name, fn in overrides.items():
            setattr(cb, name, fn)
        return cb


def tokens(*texts):
    return [TokenEvent(t) for t in texts] + [CompleteEvent("".join(texts))]


def make_handler(llm, tts=None, recorder=None, state=None, callbacks=None, **config):
    config.setdefault("agent_name", "Alex")
    config.setdefault("agency_name", "KeyReply Properties")
    recorder = recorder or Recorder()
    return RealtimeVoiceHandler(
        state or SessionState.new("call-1"),
        llm,
        tts or FakeTTS(),
        callbacks or recorder.callbacks(),
        stream_manager=CountingStreams(),
        pacer=StreamPacer(sleep=_no_sleep),
        config=Settings(_env_file=None, **config),
    )


# ── Turn processing ───────────────────────────────────────────────


class TestTurn:
    @pytest.mark.asyncio
    async def test_chunks_spoken_in_generation_order(self):
        llm = FakeLLM(tokens("The price is $10", ".50", ".", " Is that okay", "?"))
        tts = FakeTTS()
        rec = Recorder()
        handler = make_handler(llm, tts, rec)

        await handler.handle_transcript("How much is it?")
        await handler.drain()

        assert tts.texts == ["The price is $10.50.", "Is that okay?"]
        assert len(rec.audio) == 4
        assert rec.agent_text[-1] == ("", True)
        assert [t for t, final in rec.agent_text if not final] == [
            "The price is $10", ".50", ".", " Is that okay", "?",
        ]
        await handler.close()

    @pytest.mark.asyncio
    async def test_history_and_state_update(self):
        llm = FakeLLM(tokens("Great, tell me more."))
        rec = Recorder()
        handler = make_handler(llm, recorder=rec)

        await handler.handle_transcript("  I want to buy a home  ")
        history = handler.state.conversation_history
        assert [(m.role, m.content) for m in history] == [
            (MessageRole.USER, "I want to buy a home"),
            (MessageRole.ASSISTANT, "Great, tell me more."),
        ]
        assert rec.transcripts == [("I want to buy a home", True)]
        assert rec.state_updates[-1]["current_stage"] == "introduction"
        await handler.close()

    @pytest.mark.asyncio
    async def test_one_stream_per_turn(self):
        llm = FakeLLM(tokens("One.", " Two.", " Three."))
        handler = make_handler(llm)

        await handler.handle_transcript("hi")
        await handler.drain()

        assert len(handler.stream_manager.started) == 1
        assert not handler.stream_manager.has_active_stream("call-1")
        assert handler.stream_manager.get_stream_state("call-1") is None
        assert not handler.barge_in_detector.is_agent_speaking
        await handler.close()

    @pytest.mark.asyncio
    async def test_interim_transcripts_do_not_start_turns(self):
        llm = FakeLLM()
        rec = Recorder()
        handler = make_handler(llm, recorder=rec)

        await handler.handle_transcript("I want", is_final=False)
        assert llm.calls == []
        assert rec.transcripts == [("I want", False)]
        await handler.close()

    @pytest.mark.asyncio
    async def test_history_window_limits_llm_context(self):
        llm = FakeLLM(tokens("ok"))
        handler = make_handler(llm, max_history_messages=2)
        for i in range(5):
            handler.state.add_message(MessageRole.USER, f"old {i}")

        await handler.handle_transcript("newest")

        sent = llm.calls[0]["messages"]
        assert [m.content for m in sent] == ["old 4", "newest"]
        assert len(handler.state.conversation_history) == 7
        await handler.close()

    @pytest.mark.asyncio
    async def test_tools_offered_to_llm(self):
        llm = FakeLLM(tokens("ok"))
        handler = make_handler(llm)
        await handler.handle_transcript("hi")
        names = {t.name for t in llm.calls[0]["tools"]}
        assert names == {"capture_lead_info", "schedule_callback", "end_conversation"}
        await handler.close()


class TestPendingTranscripts:
    @pytest.mark.asyncio
    async def test_transcripts_during_turn_run_in_order(self):
        gate = asyncio.Event()
        llm = FakeLLM(
            [TokenEvent("Let me think."), gate, CompleteEvent()],
            tokens("Second answer."),
            tokens("Third answer."),
        )
        handler = make_handler(llm)

        first = asyncio.create_task(handler.handle_transcript("first"))
        while not llm.calls:
            await asyncio.sleep(0)
        assert handler.is_busy

        await handler.handle_transcript("second")
        await handler.handle_transcript("third")
        assert handler.pending_transcripts == ["second", "third"]
        assert len(llm.calls) == 1

        gate.set()
        await first

        assert len(llm.calls) == 3
        assert llm.calls[1]["messages"][-1].content == "second"
        assert llm.calls[2]["messages"][-1].content == "third"
        assert not handler.is_busy
        assert handler.pending_transcripts == []
        await handler.close()


class TestErrors:
    @pytest.mark.asyncio
    async def test_llm_failure_reported_and_next_turn_accepted(self):
        failure = ProviderError("fake-llm", "timeout")
        llm = FakeLLM([TokenEvent("Sure"), failure], tokens("Back again."))
        tts = FakeTTS()
        rec = Recorder()
        handler = make_handler(llm, tts, rec)

        await handler.handle_transcript("hello")
        assert rec.errors == [failure]
        assert not handler.is_busy
        assert handler.state.conversation_history[-1].role == MessageRole.USER

        await handler.handle_transcript("hello again")
        await handler.drain()
        assert tts.texts == ["Back again."]
        assert handler.state.conversation_history[-1].content == "Back again."
        await handler.close()

    @pytest.mark.asyncio
    async def test_llm_failure_mid_reply_keeps_spoken_text(self):
        failure = ProviderError("fake-llm", "connection reset")
        llm = FakeLLM([TokenEvent("Sure, the first option is great."), TokenEvent(" And"), failure])
        tts = FakeTTS()
        rec = Recorder()
        handler = make_handler(llm, tts, rec)

        await handler.handle_transcript("hi")
        await handler.drain()

        assert rec.errors == [failure]
        assert tts.texts == ["Sure, the first option is great."]
        assert len(rec.audio) == 2
        last = handler.state.conversation_history[-1]
        assert last.role == MessageRole.ASSISTANT
        assert last.content == "Sure, the first option is great."
        assert last.metadata == {"incomplete": True}
        assert not handler.stream_manager.has_active_stream("call-1")
        await handler.close()

    @pytest.mark.asyncio
    async def test_tts_failure_skips_only_that_chunk(self):
        llm = FakeLLM(tokens("Bad chunk.", " Good chunk."))
        tts = FakeTTS(fail_on={"Bad chunk."})
        rec = Recorder()
        handler = make_handler(llm, tts, rec)

        await handler.handle_transcript("hi")
        await handler.drain()

        assert tts.texts == ["Bad chunk.", "Good chunk."]
        assert len(rec.audio) == 2
        assert rec.errors == []
        assert not handler.stream_manager.has_active_stream("call-1")
        assert not handler.barge_in_detector.is_agent_speaking
        await handler.close()


# ── Tools and stages ──────────────────────────────────────────────


class TestToolsAndStages:
    @pytest.mark.asyncio
    async def test_tool_call_applied_mid_stream(self):
        state = SessionState.new("call-1")
        state.current_stage = ConversationStage.NEEDS_DISCOVERY
        call = ToolCall(id="1", name="capture_lead_info", arguments={"property_type": "condo"})
        llm = FakeLLM([TokenEvent("A condo, great."), ToolCallEvent(call),
                       TokenEvent(" What is your budget?"), CompleteEvent()])
        rec = Recorder()
        handler = make_handler(llm, recorder=rec, state=state)

        await handler.handle_transcript("I'm after a condo")

        assert state.lead_info.property_preferences.type == "condo"
        assert state.current_stage == ConversationStage.QUALIFICATION
        assert rec.state_updates[-1]["lead_info"]["property_preferences"]["type"] == "condo"
        await handler.close()

    @pytest.mark.asyncio
    async def test_end_conversation_ignores_later_transcripts(self):
        call = ToolCall(id="1", name="end_conversation", arguments={"reason": "wrong_number"})
        llm = FakeLLM([TokenEvent("Sorry to bother you."), ToolCallEvent(call), CompleteEvent()])
        handler = make_handler(llm)

        await handler.handle_transcript("wrong number")
        assert handler.state.is_active is False

        await handler.handle_transcript("hello?")
        assert len(llm.calls) == 1
        await handler.close()

    def test_unknown_tool_ignored(self):
        handler = make_handler(FakeLLM())
        assert handler.handle_tool_call(ToolCall(id="x", name="launch_rocket")) is None

    def test_qualification_threshold(self):
        state = SessionState.new("call-1")
        state.current_stage = ConversationStage.QUALIFICATION
        state.lead_info.name = "Sam"          # 10
        state.lead_info.email = "s@x.com"     # 15
        state.lead_info.timeline = "soon"     # 15
        handler = make_handler(FakeLLM(), state=state)

        state.lead_info.property_preferences.type = "house"  # 10 -> 50
        state.lead_info.name = None                          # 40
        assert handler.update_stage() == ConversationStage.QUALIFICATION
        state.lead_info.name = "Sam"                         # 50
        assert handler.update_stage() == ConversationStage.PROPERTY_DISCUSSION


class TestContextualPrompt:
    def test_includes_lead_context_and_stage_instruction(self):
        state = SessionState.new("call-1")
        state.current_stage = ConversationStage.QUALIFICATION
        lead = state.lead_info
        lead.name = "Maria"
        lead.property_preferences.type = "townhouse"
        lead.property_preferences.locations = ["Tampines", "Bedok"]
        lead.timeline = "this year"
        handler = make_handler(FakeLLM(), state=state)
        handler.handle_tool_call(ToolCall(id="1", name="capture_lead_info",
                                          arguments={"budget_min": 500000}))

        prompt = handler.build_contextual_prompt()
        assert "You are Alex" in prompt
        assert "KeyReply Properties" in prompt
        assert "{{" not in prompt
        assert "- Call #1" in prompt
        assert "- Conversation Stage: qualification" in prompt
        assert f"- Qualification Score: {lead.qualification_score}/100" in prompt
        assert "- Name: Maria" in prompt
        assert "- Property Type: townhouse" in prompt
        assert "- Interested Locations: Tampines, Bedok" in prompt
        assert "- Budget: $500,000 - $?" in prompt
        assert "- Timeline: this year" in prompt
        assert prompt.rstrip().endswith(
            "## Stage Instructions\nGather specific details: budget, timeline, must-haves, deal-breakers."
        )

    def test_omits_unknown_fields(self):
        prompt = make_handler(FakeLLM()).build_contextual_prompt()
        assert "- Name:" not in prompt
        assert "- Budget:" not in prompt


class TestGreeting:
    @pytest.mark.asyncio
    async def test_new_caller(self):
        tts = FakeTTS()
        rec = Recorder()
        handler = make_handler(FakeLLM(), tts, rec)

        greeting = await handler.generate_greeting()
        await handler.drain()

        assert greeting.startswith("Hello! Thank you for taking my call. My name is Alex")
        assert "KeyReply Properties" in greeting
        assert handler.state.current_stage == ConversationStage.INTRODUCTION
        assert handler.state.conversation_history[-1].role == MessageRole.ASSISTANT
        assert rec.agent_text == [(greeting, True)]
        assert tts.texts == [greeting]
        await handler.close()

    @pytest.mark.asyncio
    async def test_returning_caller_with_name(self):
        state = SessionState.new("call-1")
        state.lead_info.name = "Maria"
        state.resume()
        handler = make_handler(FakeLLM(), state=state)

        greeting = await handler.generate_greeting()
        assert greeting.startswith("Hello Maria! Great to hear from you again.")
        await handler.close()

    @pytest.mark.asyncio
    async def test_returning_caller_without_name_gets_intro(self):
        state = SessionState.new("call-1")
        state.resume()
        handler = make_handler(FakeLLM(), state=state)
        assert (await handler.generate_greeting()).startswith("Hello! Thank you")
        await handler.close()


# ── Barge-in ──────────────────────────────────────────────────────


class TestBargeIn:
    @pytest.mark.asyncio
    async def test_barge_in_abandons_rest_of_turn(self):
        llm = FakeLLM(tokens("First sentence.", " Second sentence.", " Third one."))
        tts = FakeTTS(pieces=3)
        rec = Recorder()
        handler = None

        async def on_audio(pcm):
            rec.audio.append(pcm)
            if len(rec.audio) == 1:
                await handler.handle_start_of_turn()

        handler = make_handler(llm, tts, rec, callbacks=rec.callbacks(on_audio=on_audio))
        await handler.handle_transcript("tell me")
        await handler.drain()

        assert tts.texts == ["First sentence."]
        assert len(rec.audio) == 1
        assert rec.barge_ins == ["native"]
        assert not handler.stream_manager.has_active_stream("call-1")
        # The response is still recorded even though playback was cut short
        assert handler.state.conversation_history[-1].content.startswith("First sentence.")
        await handler.close()

    @pytest.mark.asyncio
    async def test_next_turn_gets_a_fresh_stream(self):
        llm = FakeLLM(tokens("One."), tokens("Two."))
        tts = FakeTTS()
        handler = make_handler(llm, tts)

        await handler.handle_transcript("a")
        await handler.drain()
        await handler.handle_barge_in("native")  # nothing playing
        await handler.handle_transcript("b")
        await handler.drain()

        assert tts.texts == ["One.", "Two."]
        assert len(handler.stream_manager.started) == 2
        await handler.close()

    @pytest.mark.asyncio
    async def test_barge_in_without_stream_is_noop(self):
        rec = Recorder()
        handler = make_handler(FakeLLM(), recorder=rec)
        assert await handler.handle_barge_in("native") is False
        assert rec.barge_ins == []
        await handler.close()

    @pytest.mark.asyncio
    async def test_energy_detector_fallback(self):
        rec = Recorder()
        handler = make_handler(FakeLLM(), recorder=rec)
        handler.stream_manager.start_stream("call-1")
        handler.barge_in_detector.agent_started_speaking()

        results = [await handler.process_audio_frame(LOUD) for _ in range(3)]

        assert results == [False, False, True]
        assert rec.barge_ins == ["energy"]
        assert handler.stream_manager.get_stop_stream("call-1") is True
        assert not handler.barge_in_detector.is_agent_speaking
        await handler.close()

    @pytest.mark.asyncio
    async def test_native_turn_detection_preempts_energy_detector(self):
        rec = Recorder()
        handler = make_handler(FakeLLM(), recorder=rec, native_turn_detection=True)
        handler.stream_manager.start_stream("call-1")
        handler.barge_in_detector.agent_started_speaking()

        results = [await handler.process_audio_frame(LOUD) for _ in range(5)]

        assert results == [False] * 5
        assert handler.stream_manager.has_active_stream("call-1")
        assert await handler.handle_start_of_turn() is True
        assert rec.barge_ins == ["native"]
        await handler.close()

    @pytest.mark.asyncio
    async def test_barge_in_disabled(self):
        handler = make_handler(FakeLLM(), barge_in_enabled=False)
        handler.stream_manager.start_stream("call-1")
        handler.barge_in_detector.agent_started_speaking()
        assert not any([await handler.process_audio_frame(LOUD) for _ in range(5)])
        await handler.close()


# ── Driving from a source, inspection, shutdown ───────────────────


class TestConsume:
    @pytest.mark.asyncio
    async def test_consume_source(self):
        llm = FakeLLM(tokens("Nice choice."))
        rec = Recorder()
        handler = make_handler(llm, recorder=rec)
        source = FakeSource([
            TranscriptEvent("I want", is_final=False),
            TranscriptEvent("I want a house", is_final=True),
        ])

        await handler.consume(source)

        assert rec.transcripts == [("I want", False), ("I want a house", True)]
        assert len(llm.calls) == 1
        await handler.close()

    @pytest.mark.asyncio
    async def test_native_source_enables_turn_detection(self):
        handler = make_handler(FakeLLM())
        handler.stream_manager.start_stream("call-1")
        source = FakeSource([TranscriptEvent("", is_final=False, start_of_turn=True)], native=True)

        await handler.consume(source)

        assert handler.native_turn_detection is True
        assert handler.stream_manager.get_stop_stream("call-1") is True
        await handler.close()


class TestInspection:
    @pytest.mark.asyncio
    async def test_debug_events_emitted(self):
        call = ToolCall(id="1", name="capture_lead_info", arguments={"name": "Sam"})
        llm = FakeLLM([TokenEvent("Hi Sam."), ToolCallEvent(call), CompleteEvent()])
        handler = make_handler(llm)
        broadcaster = DebugBroadcaster("call-1")
        handler.attach_broadcaster(broadcaster)

        await handler.handle_transcript("I'm Sam")
        await handler.drain()

        types = [e["type"] for e in broadcaster.event_log]
        for expected in ("stt", "llm_call", "tool_call", "llm_response", "transition", "tts_chunk"):
            assert expected in types
        assert types.index("stt") < types.index("llm_call") < types.index("llm_response")
        await handler.close()

    def test_to_dict_redacts_name(self):
        state = SessionState.new("call-1")
        state.lead_info.name = "Maria Lopez"
        handler = make_handler(FakeLLM(), state=state)

        summary = handler.to_dict()
        assert summary["lead_name"] == "Mar***ez"
        assert "lead_info" not in summary
        assert summary["current_stage"] == "greeting"

        detail = handler.to_dict(detail=True)
        assert detail["lead_info"]["name"] == "Maria Lopez"
        assert detail["message_count"] == 0

    def test_redact_pii(self):
        assert redact_pii(None) == "***"
        assert redact_pii("Sam") == "***"
        assert redact_pii("+15551234567") == "+15***67"


class TestClose:
    @pytest.mark.asyncio
    async def test_close_ends_stream(self):
        handler = make_handler(FakeLLM())
        handler.stream_manager.start_stream("call-1")
        await handler.close()
        assert handler.stream_manager.get_stream_state("call-1") is None
        assert not handler.barge_in_detector.is_agent_speaking

    @pytest.mark.asyncio
    async def test_drain_returns_after_close_with_queued_chunks(self):
        gate = asyncio.Event()

        class BlockedTTS(FakeTTS):
            async def synthesize(self, text):
                self.texts.append(text)
                await gate.wait()
                yield PCM

        tts = BlockedTTS()
        handler = make_handler(FakeLLM(tokens("One.", " Two.", " Three.")), tts)

        await handler.handle_transcript("hi")
        await asyncio.sleep(0)
        await handler.close()

        await asyncio.wait_for(handler.drain(), 1.0)
        assert tts.texts in ([], ["One."])
