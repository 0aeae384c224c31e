"""Tests for StreamingStateManager: one current audio stream per session."""

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from voice_agent.streaming.state import StreamingStateManager


class TestStartStop:
    def test_start_creates_active_stream(self):
        m = StreamingStateManager()
        stream_id = m.start_stream("s1")
        assert stream_id.startswith("s1-")
        assert m.has_active_stream("s1")
        assert m.get_stop_stream("s1") is False

    def test_second_start_supersedes_first(self):
        m = StreamingStateManager()
        interrupts = []
        m.set_on_interrupt(lambda sid, stream: interrupts.append((sid, stream)))
        first = m.start_stream("s1")
        second = m.start_stream("s1")
        assert first != second
        assert interrupts == [("s1", first)]
        assert m.get_stream_state("s1").stream_id == second
        assert m.has_active_stream("s1")

    def test_stop_without_stream(self):
        assert StreamingStateManager().stop_stream("nope") is False

    def test_stop_is_reported_once(self):
        m = StreamingStateManager()
        interrupts = []
        m.set_on_interrupt(lambda sid, stream: interrupts.append(stream))
        m.start_stream("s1")
        assert m.stop_stream("s1") is True
        assert m.stop_stream("s1") is False
        assert len(interrupts) == 1
        state = m.get_stream_state("s1")
        assert state.should_stop is True
        assert state.interrupted_at is not None
        assert not m.has_active_stream("s1")

    def test_sessions_are_independent(self):
        m = StreamingStateManager()
        m.start_stream("a")
        m.start_stream("b")
        m.stop_stream("a")
        assert m.has_active_stream("b")
        assert len(m.get_all_streams()) == 2


class TestEndStream:
    def test_end_returns_final_snapshot(self):
        m = StreamingStateManager()
        stream_id = m.start_stream("s1")
        m.update_bytes_streamed("s1", 640)
        m.update_bytes_streamed("s1", 320)
        final = m.end_stream("s1")
        assert final.stream_id == stream_id
        assert final.bytes_streamed == 960
        assert not m.has_active_stream("s1")
        assert m.get_stream_state("s1") is None

    def test_end_without_stream(self):
        assert StreamingStateManager().end_stream("s1") is None

    def test_update_bytes_without_stream_is_noop(self):
        m = StreamingStateManager()
        m.update_bytes_streamed("s1", 100)
        assert m.get_all_streams() == []

    def test_clear(self):
        m = StreamingStateManager()
        m.start_stream("a")
        m.start_stream("b")
        m.clear()
        assert m.get_all_streams() == []


class TestStopChecker:
    def test_session_checker_follows_stop_flag(self):
        m = StreamingStateManager()
        m.start_stream("s1")
        should_stop = m.create_stop_checker("s1")
        assert should_stop() is False
        m.stop_stream("s1")
        assert should_stop() is True

    def test_bound_checker_reports_superseded_stream(self):
        m = StreamingStateManager()
        old = m.start_stream("s1")
        old_checker = m.create_stop_checker("s1", old)
        new = m.start_stream("s1")
        new_checker = m.create_stop_checker("s1", new)
        assert old_checker() is True
        assert new_checker() is False

    def test_bound_checker_reports_ended_stream(self):
        m = StreamingStateManager()
        stream_id = m.start_stream("s1")
        checker = m.create_stop_checker("s1", stream_id)
        m.end_stream("s1")
        assert checker() is True

    def test_is_current(self):
        m = StreamingStateManager()
        first = m.start_stream("s1")
        second = m.start_stream("s1")
        assert not m.is_current("s1", first)
        assert m.is_current("s1", second)

    def test_snapshots_are_copies(self):
        m = StreamingStateManager()
        m.start_stream("s1")
        snapshot = m.get_stream_state("s1")
        snapshot.bytes_streamed = 999
        assert m.get_stream_state("s1").bytes_streamed == 0
