"""
Playback Controller

Drives per-segment narration for one open document:

    IDLE -> KARAOKE(segment) -> DICTATION(segment, sentence) -> next segment

Karaoke highlights one word at a time from narration word boundaries. If no
boundary arrives within the watchdog delay, the segment falls back to
dictation: sentences are spoken one after another and each sentence is
highlighted as a whole. The decision is made once per segment.

Reaching the end of a segment writes 100% progress immediately and moves
on; the last segment ends playback.
"""

from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Callable, List, Optional, Sequence

from paperflip.feed.narration import NarrationAdapter
from paperflip.feed.progress_sync import ProgressSynchronizer
from paperflip.feed.segmenter import SentenceSpan, split_sentences
from paperflip.utils.config import config
from paperflip.utils import logger


class PlaybackMode(str, Enum):
    """How the active segment is highlighted."""

    KARAOKE = "karaoke"
    DICTATION = "dictation"


class PlaybackPhase(str, Enum):
    """Controller state machine states."""

    IDLE = "idle"
    KARAOKE = "karaoke"
    DICTATION = "dictation"


@dataclass
class PlaybackState:
    """Snapshot of the controller, handed to subscribers."""

    active_index: int = 0
    mode: PlaybackMode = PlaybackMode.KARAOKE
    current_char_index: int = 0
    highlight_start: int = 0
    highlight_end: int = 0
    is_playing: bool = False
    is_paused: bool = False
    resumed_once: bool = False
    phase: PlaybackPhase = PlaybackPhase.IDLE
    sentence_index: Optional[int] = None


StateListener = Callable[[PlaybackState], None]


class PlaybackController:
    """
    Per-document playback state machine.

    Every segment entry gets a fresh entry token; narration callbacks and
    the watchdog carry the token they were created with and are ignored
    once the controller has moved on.
    """

    def __init__(
        self,
        document_id: str,
        segments: Sequence[str],
        adapter: NarrationAdapter,
        synchronizer: ProgressSynchronizer,
        *,
        scheduler,
        initial_index: int = 0,
        initial_progress: int = 0,
        force_dictation: bool = False,
        watchdog_delay: Optional[float] = None,
        video=None,
    ):
        """
        Args:
            document_id: Key of the document being played
            segments: Ordered segment texts
            adapter: Narration adapter owned by this session
            synchronizer: Progress persistence
            scheduler: Object with call_later(delay, callback) and time()
            initial_index: Segment to start on
            initial_progress: Character offset to resume from, used once
            force_dictation: Start every segment in dictation mode
            watchdog_delay: Seconds to wait for a word boundary
            video: Optional background video with play() and pause()
        """
        self.document_id = document_id
        self.segments: List[str] = [s for s in (segments or []) if isinstance(s, str)]
        self.adapter = adapter
        self.synchronizer = synchronizer
        self.scheduler = scheduler
        self.force_dictation = force_dictation
        self.watchdog_delay = config.watchdog_delay if watchdog_delay is None else watchdog_delay
        self.video = video

        last_index = max(len(self.segments) - 1, 0)
        self._initial_index = min(max(initial_index or 0, 0), last_index)
        segment_length = len(self.segments[self._initial_index]) if self.segments else 0
        self._initial_progress = min(max(initial_progress or 0, 0), segment_length)

        self._state = PlaybackState(active_index=self._initial_index)
        self._sentences: List[SentenceSpan] = []
        self._listeners: List[StateListener] = []
        self._entry = 0
        self._mounted = False

        self._watchdog = None
        self._watchdog_deadline: Optional[float] = None
        self._watchdog_remaining: Optional[float] = None

    # -- public API ------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return replace(self._state)

    @property
    def sentences(self) -> List[SentenceSpan]:
        """Sentence spans of the active segment."""
        return list(self._sentences)

    @property
    def active_segment(self) -> str:
        if not self.segments:
            return ""
        return self.segments[self._state.active_index]

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call listener with a snapshot on every state change."""
        self._listeners.append(listener)
        listener(self.state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def mount(self) -> None:
        """Start playback at the initial position."""
        if self._mounted:
            return
        self._mounted = True

        if not self.segments:
            logger.warning(f"Document {self.document_id} has no segments; nothing to play")
            self._notify()
            return

        self._state.is_playing = True
        self._state.resumed_once = True
        self._play_video()
        self._enter_segment(self._initial_index, self._initial_progress)

    def go_to(self, index: int) -> None:
        """User navigation: restart playback at the start of another segment."""
        if not self.segments:
            return

        index = min(max(index, 0), len(self.segments) - 1)
        self._cancel_watchdog()
        self.adapter.stop()

        self.synchronizer.record(self.document_id, index, 0)

        self._state.is_playing = True
        self._state.is_paused = False
        self._state.resumed_once = True
        self._mounted = True
        self._play_video()
        self._enter_segment(index, 0)

    def next(self) -> None:
        if self._state.active_index + 1 < len(self.segments):
            self.go_to(self._state.active_index + 1)

    def previous(self) -> None:
        if self._state.active_index > 0:
            self.go_to(self._state.active_index - 1)

    def toggle_pause(self) -> None:
        """Pause or resume; pausing writes progress immediately."""
        state = self._state
        if state.phase == PlaybackPhase.IDLE:
            return

        if not state.is_paused:
            state.is_paused = True
            self._suspend_watchdog()
            if self.video is not None:
                self.video.pause()
            self.adapter.pause()
            self.synchronizer.flush_now(
                self.document_id, state.active_index, state.current_char_index
            )
        else:
            state.is_paused = False
            self.adapter.resume()
            self._play_video()
            self._restore_watchdog()

        self._notify()

    def set_force_dictation(self, enabled: bool) -> None:
        """Apply the dictation override from the next segment on."""
        self.force_dictation = bool(enabled)

    def destroy(self) -> None:
        """Stop narration and write the current position immediately."""
        self._cancel_watchdog()
        self._entry += 1
        self.adapter.stop()

        if self._mounted and self.segments:
            self.synchronizer.flush_now(
                self.document_id, self._state.active_index, self._state.current_char_index
            )

        self._mounted = False
        self._state.phase = PlaybackPhase.IDLE
        self._state.is_playing = False
        self._notify()
        self._listeners.clear()

    # -- segment entry ---------------------------------------------------

    def _enter_segment(self, index: int, offset: int) -> None:
        self._cancel_watchdog()
        self._entry += 1
        entry = self._entry

        segment = self.segments[index]
        offset = min(max(offset, 0), len(segment))

        state = self._state
        state.active_index = index
        state.mode = PlaybackMode.KARAOKE
        state.current_char_index = offset
        state.highlight_start = offset
        state.highlight_end = offset
        state.sentence_index = None
        self._sentences = split_sentences(segment)

        if self.force_dictation:
            self._start_dictation(offset)
            return

        state.phase = PlaybackPhase.KARAOKE
        self._notify()

        if self.adapter.available:
            self._arm_watchdog(entry, self.watchdog_delay)

        self.adapter.speak(
            segment,
            partial(self._on_karaoke_word, entry),
            partial(self._on_karaoke_end, entry),
            offset,
        )

    def _on_karaoke_word(self, entry: int, word: str, char_index: int, char_length: int) -> None:
        if entry != self._entry:
            return

        # First boundary settles the mode for this segment
        self._cancel_watchdog()

        state = self._state
        state.current_char_index = char_index
        state.highlight_start = char_index
        state.highlight_end = char_index + char_length
        self.synchronizer.record(self.document_id, state.active_index, char_index)
        self._notify()

    def _on_karaoke_end(self, entry: int) -> None:
        if entry != self._entry:
            return
        self._complete_segment()

    # -- watchdog ----------------------------------------------------------

    def _arm_watchdog(self, entry: int, delay: float) -> None:
        self._watchdog = self.scheduler.call_later(delay, partial(self._on_watchdog, entry))
        self._watchdog_deadline = self.scheduler.time() + delay
        self._watchdog_remaining = None

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
        self._watchdog = None
        self._watchdog_deadline = None
        self._watchdog_remaining = None

    def _suspend_watchdog(self) -> None:
        if self._watchdog is None:
            return
        remaining = max(self._watchdog_deadline - self.scheduler.time(), 0.0)
        self._watchdog.cancel()
        self._watchdog = None
        self._watchdog_remaining = remaining

    def _restore_watchdog(self) -> None:
        if self._watchdog_remaining is None:
            return
        self._arm_watchdog(self._entry, self._watchdog_remaining)

    def _on_watchdog(self, entry: int) -> None:
        self._watchdog = None
        self._watchdog_deadline = None
        if entry != self._entry or self._state.phase != PlaybackPhase.KARAOKE:
            return

        logger.info(
            f"No word boundaries for segment {self._state.active_index + 1}; "
            "switching to dictation"
        )
        self.adapter.stop()
        self._start_dictation(self._state.current_char_index)

    # -- dictation -------------------------------------------------------

    def _start_dictation(self, offset: int) -> None:
        self._entry += 1
        entry = self._entry

        state = self._state
        state.mode = PlaybackMode.DICTATION
        state.phase = PlaybackPhase.DICTATION

        for index, span in enumerate(self._sentences):
            if span.end > offset:
                self._speak_sentence(entry, index, max(offset - span.start, 0))
                return

        self._complete_segment()

    def _speak_sentence(self, entry: int, index: int, start_offset: int = 0) -> None:
        span = self._sentences[index]

        state = self._state
        state.sentence_index = index
        state.highlight_start = span.start
        state.highlight_end = span.end
        state.current_char_index = span.start + start_offset
        self._notify()

        self.adapter.speak(
            span.text,
            partial(self._on_sentence_word, entry, span),
            partial(self._on_sentence_end, entry, index),
            start_offset,
        )

    def _on_sentence_word(
        self, entry: int, span: SentenceSpan, word: str, char_index: int, char_length: int
    ) -> None:
        if entry != self._entry:
            return

        state = self._state
        state.current_char_index = span.start + char_index
        self.synchronizer.record(self.document_id, state.active_index, state.current_char_index)
        self._notify()

    def _on_sentence_end(self, entry: int, index: int) -> None:
        if entry != self._entry:
            return

        if index + 1 < len(self._sentences):
            self._speak_sentence(entry, index + 1)
        else:
            self._complete_segment()

    # -- segment completion ---------------------------------------------

    def _complete_segment(self) -> None:
        self._cancel_watchdog()

        state = self._state
        index = state.active_index
        length = len(self.segments[index])

        state.current_char_index = length
        state.highlight_start = length
        state.highlight_end = length
        self.synchronizer.flush_now(self.document_id, index, length)

        next_index = index + 1
        if next_index < len(self.segments):
            self.synchronizer.record(self.document_id, next_index, 0)
            self._enter_segment(next_index, 0)
            return

        self._entry += 1
        state.phase = PlaybackPhase.IDLE
        state.is_playing = False
        state.sentence_index = None
        if self.video is not None:
            self.video.pause()
        logger.success(f"Finished {self.document_id}")
        self._notify()

    # -- helpers ---------------------------------------------------------

    def _play_video(self) -> None:
        if self.video is not None:
            self.video.play()

    def _notify(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)
