"""
Narration Adapter

Wraps a text-to-speech engine whose own state reporting and callbacks
cannot be trusted. The adapter tracks speaking/paused itself, tags every
utterance with a generation number so that late callbacks from a cancelled
utterance are ignored, speaks from an offset while reporting boundaries in
the full text's coordinates, and restarts in place when mute is toggled.

Engines implement the small NarrationEngine protocol; see
narration_pyttsx3 for the system TTS engine.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from paperflip.utils import logger

WORD_BOUNDARY = "word"

BoundaryCallback = Callable[[str, int, int], None]
EndCallback = Callable[[], None]


@dataclass
class BoundaryEvent:
    """Progress event raised by an engine while speaking."""

    name: str  # "word", "sentence", ...
    char_index: int  # Offset into the utterance text
    char_length: int = 0


@dataclass
class Utterance:
    """One piece of text handed to an engine, with its callbacks."""

    text: str
    volume: float = 1.0
    rate: float = 1.0
    on_boundary: Optional[Callable[[BoundaryEvent], None]] = None
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Any], None]] = None


class NarrationEngine(Protocol):
    """Capability the adapter drives. Callbacks may arrive late or never."""

    def speak(self, utterance: Utterance) -> None: ...

    def cancel(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...


@dataclass
class _ActiveNarration:
    text: str
    on_boundary: Optional[BoundaryCallback]
    on_end: Optional[EndCallback]
    start_offset: int
    last_offset: int


class NarrationAdapter:
    """
    Reliable speak/stop/pause/resume on top of a NarrationEngine.

    Only the utterance started by the latest speak() may change adapter
    state or reach the caller's callbacks. stop() does not wait for the
    engine to confirm cancellation.
    """

    def __init__(
        self,
        engine: Optional[NarrationEngine],
        muted: bool = False,
        rate: float = 1.0,
    ):
        """
        Args:
            engine: Narration engine, or None when the environment has none
            muted: Start muted
            rate: Playback rate multiplier
        """
        self.engine = engine
        self._muted = muted
        self._rate = rate
        self._generation = 0
        self._speaking = False
        self._paused = False
        self._active: Optional[_ActiveNarration] = None

        if engine is None:
            logger.warning("Speech synthesis not supported; narration is disabled")

    @property
    def available(self) -> bool:
        return self.engine is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def rate(self) -> float:
        return self._rate

    def speak(
        self,
        text: str,
        on_boundary: Optional[BoundaryCallback] = None,
        on_end: Optional[EndCallback] = None,
        start_offset: int = 0,
    ) -> None:
        """
        Speak text[start_offset:], cancelling whatever is playing.

        Boundary callbacks receive (word, char_index, char_length) with
        char_index relative to the full text, not the spoken remainder.
        """
        if self.engine is None:
            logger.warning("Speech synthesis not initialized; skipping narration")
            return

        start_offset = max(0, min(start_offset, len(text)))

        if self._active is not None or self._speaking:
            self.engine.cancel()

        self._generation += 1
        generation = self._generation

        self._speaking = True
        self._paused = False
        self._active = _ActiveNarration(
            text=text,
            on_boundary=on_boundary,
            on_end=on_end,
            start_offset=start_offset,
            last_offset=start_offset,
        )

        utterance = Utterance(
            text=text[start_offset:],
            volume=0.0 if self._muted else 1.0,
            rate=self._rate,
        )
        utterance.on_boundary = lambda event: self._handle_boundary(generation, event)
        utterance.on_end = lambda: self._handle_end(generation)
        utterance.on_error = lambda error: self._handle_error(generation, error)

        self.engine.speak(utterance)

    def stop(self) -> None:
        """Cancel narration. Late callbacks from the cancelled utterance are dropped."""
        if self.engine is not None and (self._speaking or self._active is not None):
            self.engine.cancel()
        self._generation += 1
        self._active = None
        self._speaking = False
        self._paused = False

    def pause(self) -> None:
        if self.engine is not None and self._speaking and not self._paused:
            self.engine.pause()
            self._paused = True

    def resume(self) -> None:
        if self.engine is not None and self._paused:
            self.engine.resume()
            self._paused = False

    def is_speaking(self) -> bool:
        return self._speaking

    def is_paused(self) -> bool:
        return self._paused

    def set_muted(self, muted: bool) -> None:
        """
        Apply a mute toggle.

        While narrating, the utterance is restarted from the last word
        boundary at the new volume. While paused (or idle) the volume only
        applies to the next utterance.
        """
        muted = bool(muted)
        if muted == self._muted:
            return
        self._muted = muted

        active = self._active
        if active is not None and self._speaking and not self._paused:
            self.speak(active.text, active.on_boundary, active.on_end, active.last_offset)

    def set_rate(self, rate: float) -> None:
        """Set the playback rate used from the next utterance on."""
        self._rate = rate

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._active is not None

    def _handle_boundary(self, generation: int, event: BoundaryEvent) -> None:
        if not self._is_current(generation) or event.name != WORD_BOUNDARY:
            return

        active = self._active
        char_index = event.char_index + active.start_offset
        word = active.text[char_index:char_index + event.char_length]
        active.last_offset = char_index

        if active.on_boundary is not None:
            active.on_boundary(word, char_index, event.char_length)

    def _handle_end(self, generation: int) -> None:
        if not self._is_current(generation):
            return

        on_end = self._active.on_end
        self._active = None
        self._speaking = False
        self._paused = False

        if on_end is not None:
            on_end()

    def _handle_error(self, generation: int, error: Any) -> None:
        if not self._is_current(generation):
            return

        logger.error(f"Narration error: {error}")
        self._handle_end(generation)
