"""Tests for NarrationAdapter.

Organized by concern:
  - TestIdentityGuard: late callbacks from superseded utterances
  - TestOffsetResume: start offsets and boundary coordinates
  - TestBoundaryFiltering: only word boundaries reach the caller
  - TestMute: restart in place while speaking, volume only while paused
  - TestPauseResume: manual state, idempotence
  - TestNoEngine: missing capability degrades to no-ops
"""

from unittest.mock import MagicMock

from paperflip.feed.narration import BoundaryEvent, NarrationAdapter


TEXT = "Hello brave world"


# ---------------------------------------------------------------------------
# TestIdentityGuard
# ---------------------------------------------------------------------------


class TestIdentityGuard:

    def test_late_end_from_cancelled_utterance_is_ignored(self, adapter, engine):
        first_end = MagicMock()
        adapter.speak("First", on_end=first_end)
        first = engine.last

        adapter.stop()
        adapter.speak("Second")
        first.on_end()

        assert adapter.is_speaking() is True
        assert engine.last.text == "Second"
        first_end.assert_not_called()

    def test_late_boundary_from_cancelled_utterance_is_ignored(self, adapter, engine):
        on_boundary = MagicMock()
        adapter.speak("First words", on_boundary)
        first = engine.last

        adapter.speak("Second words", on_boundary)
        engine.word(0, 5, utterance=first)

        on_boundary.assert_not_called()

    def test_generation_increments_on_speak_and_stop(self, adapter):
        assert adapter.generation == 0
        adapter.speak(TEXT)
        assert adapter.generation == 1
        adapter.stop()
        assert adapter.generation == 2

    def test_speak_cancels_previous_utterance(self, adapter, engine):
        adapter.speak("First")
        adapter.speak("Second")
        assert engine.cancel_count == 1

    def test_end_clears_state_and_calls_back_once(self, adapter, engine):
        on_end = MagicMock()
        adapter.speak(TEXT, on_end=on_end)

        engine.finish()
        engine.finish()

        on_end.assert_called_once_with()
        assert adapter.is_speaking() is False

    def test_error_is_treated_as_end(self, adapter, engine):
        on_end = MagicMock()
        adapter.speak(TEXT, on_end=on_end)

        engine.last.on_error(RuntimeError("synthesis-failed"))

        on_end.assert_called_once_with()
        assert adapter.is_speaking() is False


# ---------------------------------------------------------------------------
# TestOffsetResume
# ---------------------------------------------------------------------------


class TestOffsetResume:

    def test_speaks_only_the_remainder(self, adapter, engine):
        adapter.speak(TEXT, start_offset=6)
        assert engine.last.text == "brave world"

    def test_boundaries_are_shifted_back(self, adapter, engine):
        on_boundary = MagicMock()
        adapter.speak(TEXT, on_boundary, start_offset=6)

        engine.word(0, 5)
        engine.word(6, 5)

        assert on_boundary.call_args_list[0].args == ("brave", 6, 5)
        assert on_boundary.call_args_list[1].args == ("world", 12, 5)

    def test_offset_is_clamped(self, adapter, engine):
        adapter.speak(TEXT, start_offset=500)
        assert engine.last.text == ""


# ---------------------------------------------------------------------------
# TestBoundaryFiltering
# ---------------------------------------------------------------------------


class TestBoundaryFiltering:

    def test_sentence_boundaries_are_dropped(self, adapter, engine):
        on_boundary = MagicMock()
        adapter.speak(TEXT, on_boundary)

        engine.last.on_boundary(BoundaryEvent("sentence", 0, 17))
        engine.word(0, 5)

        on_boundary.assert_called_once_with("Hello", 0, 5)


# ---------------------------------------------------------------------------
# TestMute
# ---------------------------------------------------------------------------


class TestMute:

    def test_mute_restarts_from_last_boundary(self, adapter, engine):
        on_boundary = MagicMock()
        adapter.speak(TEXT, on_boundary)
        engine.word(6, 5)

        adapter.set_muted(True)

        assert engine.cancel_count == 1
        assert engine.last.text == "brave world"
        assert engine.last.volume == 0.0

        engine.word(0, 5)
        assert on_boundary.call_args.args == ("brave", 6, 5)

    def test_restarted_utterance_keeps_end_callback(self, adapter, engine):
        on_end = MagicMock()
        adapter.speak(TEXT, on_end=on_end)
        first = engine.last

        adapter.set_muted(True)
        first.on_end()
        on_end.assert_not_called()

        engine.finish()
        on_end.assert_called_once_with()

    def test_unmute_restores_volume(self, engine):
        adapter = NarrationAdapter(engine, muted=True)
        adapter.speak(TEXT)
        assert engine.last.volume == 0.0

        adapter.set_muted(False)
        assert engine.last.volume == 1.0

    def test_mute_while_paused_only_changes_volume(self, adapter, engine):
        adapter.speak(TEXT)
        adapter.pause()

        adapter.set_muted(True)

        assert len(engine.utterances) == 1
        assert adapter.muted is True

        adapter.speak("Next")
        assert engine.last.volume == 0.0

    def test_same_value_does_not_restart(self, adapter, engine):
        adapter.speak(TEXT)
        adapter.set_muted(False)
        assert len(engine.utterances) == 1

    def test_mute_while_idle_does_not_speak(self, adapter, engine):
        adapter.set_muted(True)
        assert engine.utterances == []

    def test_rate_applies_to_next_utterance(self, adapter, engine):
        adapter.set_rate(1.5)
        adapter.speak(TEXT)
        assert engine.last.rate == 1.5


# ---------------------------------------------------------------------------
# TestPauseResume
# ---------------------------------------------------------------------------


class TestPauseResume:

    def test_pause_keeps_speaking_flag(self, adapter, engine):
        adapter.speak(TEXT)
        adapter.pause()

        assert adapter.is_speaking() is True
        assert adapter.is_paused() is True
        assert engine.pause_count == 1

    def test_pause_and_resume_are_idempotent(self, adapter, engine):
        adapter.speak(TEXT)
        adapter.pause()
        adapter.pause()
        adapter.resume()
        adapter.resume()

        assert engine.pause_count == 1
        assert engine.resume_count == 1
        assert adapter.is_paused() is False

    def test_pause_when_not_speaking_is_noop(self, adapter, engine):
        adapter.pause()
        assert engine.pause_count == 0
        assert adapter.is_paused() is False

    def test_stop_clears_pause(self, adapter, engine):
        adapter.speak(TEXT)
        adapter.pause()
        adapter.stop()

        assert adapter.is_paused() is False
        assert adapter.is_speaking() is False


# ---------------------------------------------------------------------------
# TestNoEngine
# ---------------------------------------------------------------------------


class TestNoEngine:

    def test_every_call_is_a_noop(self):
        adapter = NarrationAdapter(None)

        adapter.speak(TEXT, MagicMock(), MagicMock(), 3)
        adapter.pause()
        adapter.resume()
        adapter.set_muted(True)
        adapter.stop()

        assert adapter.available is False
        assert adapter.is_speaking() is False

    def test_warns_instead_of_raising(self, capsys):
        NarrationAdapter(None).speak(TEXT)
        assert "Speech synthesis" in capsys.readouterr().out
