"""
System TTS narration engine using pyttsx3.

Runs pyttsx3 with an external run loop pumped from the asyncio scheduler,
so word and end events arrive on the same loop as the rest of playback.

pyttsx3 has no pause, so pause stops the engine and resume re-queues the
unspoken remainder, shifting boundary offsets back into the coordinates of
the original utterance.

On Windows: SAPI5 voices
On macOS: NSSpeechSynthesizer
On Linux: espeak
"""

import itertools
from dataclasses import dataclass
from typing import Any, Dict, Optional

from paperflip.feed.narration import WORD_BOUNDARY, BoundaryEvent, Utterance
from paperflip.utils.config import config
from paperflip.utils import logger


@dataclass
class _QueuedUtterance:
    utterance: Utterance
    offset: int = 0  # Chars of the original utterance already spoken before this request
    last_index: int = 0  # Last word start reported, in original utterance coordinates


class Pyttsx3Engine:
    """NarrationEngine backed by the platform speech synthesizer."""

    def __init__(
        self,
        scheduler,
        driver_name: Optional[str] = None,
        base_rate: Optional[int] = None,
        pump_interval: Optional[float] = None,
    ):
        """
        Args:
            scheduler: Object with call_later(delay, callback), e.g. the running loop
            driver_name: pyttsx3 driver (sapi5, nsss, espeak); platform default if None
            base_rate: Words per minute at rate 1.0
            pump_interval: Seconds between run loop iterations
        """
        self.scheduler = scheduler
        self.driver_name = driver_name or config.engine_driver
        self.base_rate = base_rate or config.engine_base_rate
        self.pump_interval = pump_interval or config.pump_interval

        self._engine = None
        self._pump_handle = None
        self._names = itertools.count(1)
        self._queued: Dict[str, _QueuedUtterance] = {}
        self._current: Optional[str] = None
        self._paused: Optional[_QueuedUtterance] = None

    def _get_engine(self):
        """Lazy load pyttsx3 engine and start its external loop."""
        if self._engine is None:
            try:
                import pyttsx3
            except ImportError as e:
                logger.error("pyttsx3 not installed")
                raise RuntimeError(
                    "pyttsx3 not found. Install with: pip install pyttsx3"
                ) from e

            logger.info("Loading pyttsx3 TTS engine...")
            engine = pyttsx3.init(self.driver_name)
            engine.connect("started-word", self._on_word)
            engine.connect("finished-utterance", self._on_finished)
            engine.connect("error", self._on_error)
            engine.startLoop(False)

            self._engine = engine
            self._schedule_pump()
            logger.success("pyttsx3 TTS loaded")

        return self._engine

    def _schedule_pump(self) -> None:
        self._pump_handle = self.scheduler.call_later(self.pump_interval, self._pump)

    def _pump(self) -> None:
        if self._engine is None:
            return
        self._engine.iterate()
        self._schedule_pump()

    def _say(self, queued: _QueuedUtterance, text: str) -> None:
        engine = self._get_engine()
        name = f"utt-{next(self._names)}"

        self._queued[name] = queued
        self._current = name

        engine.setProperty("volume", queued.utterance.volume)
        engine.setProperty("rate", int(self.base_rate * queued.utterance.rate))
        engine.say(text, name)

    def speak(self, utterance: Utterance) -> None:
        self._paused = None
        self._say(_QueuedUtterance(utterance), utterance.text)

    def cancel(self) -> None:
        self._queued.clear()
        self._current = None
        self._paused = None
        if self._engine is not None:
            self._engine.stop()

    def pause(self) -> None:
        if self._current is None or self._current not in self._queued:
            return
        self._paused = self._queued.pop(self._current)
        self._current = None
        self._engine.stop()

    def resume(self) -> None:
        paused, self._paused = self._paused, None
        if paused is None:
            return

        remainder = paused.utterance.text[paused.last_index:]
        if not remainder.strip():
            if paused.utterance.on_end is not None:
                paused.utterance.on_end()
            return

        paused.offset = paused.last_index
        self._say(paused, remainder)

    def close(self) -> None:
        """Stop speaking and shut down the run loop."""
        if self._pump_handle is not None:
            self._pump_handle.cancel()
            self._pump_handle = None
        if self._engine is not None:
            self._queued.clear()
            self._engine.stop()
            self._engine.endLoop()
            self._engine = None

    def _on_word(self, name: str, location: int, length: int) -> None:
        queued = self._queued.get(name)
        if queued is None:
            return

        char_index = location + queued.offset
        queued.last_index = char_index
        if queued.utterance.on_boundary is not None:
            queued.utterance.on_boundary(BoundaryEvent(WORD_BOUNDARY, char_index, length))

    def _on_finished(self, name: str, completed: bool) -> None:
        queued = self._queued.pop(name, None)
        if queued is None:
            return
        if self._current == name:
            self._current = None
        if queued.utterance.on_end is not None:
            queued.utterance.on_end()

    def _on_error(self, name: str, exception: Any) -> None:
        queued = self._queued.pop(name, None)
        if queued is None:
            return
        if self._current == name:
            self._current = None
        if queued.utterance.on_error is not None:
            queued.utterance.on_error(exception)


def create_engine(scheduler, driver_name: Optional[str] = None) -> Optional[Pyttsx3Engine]:
    """
    Build a system TTS engine, or return None when no driver is usable.

    A None engine makes NarrationAdapter a logged no-op.
    """
    engine = Pyttsx3Engine(scheduler, driver_name=driver_name)
    try:
        engine._get_engine()
    except Exception as e:
        logger.warning(f"System TTS unavailable: {e}")
        return None
    return engine
