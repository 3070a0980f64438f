"""Shared test fixtures for the paperflip test suite.

Playback code never sleeps: timers go through a scheduler object, so tests
drive time with FakeScheduler.advance(). Narration goes through FakeEngine,
which records utterances and lets a test fire word/end/error callbacks
whenever it wants, including late ones from cancelled utterances.
"""

from typing import Any, Callable, List, Optional, Tuple

import pytest

from paperflip.feed.narration import BoundaryEvent, NarrationAdapter, Utterance
from paperflip.feed.progress_sync import ProgressSynchronizer
from paperflip.feed.segmenter import reset_boundary_finder
from paperflip.store.database import Database, reset_db
from paperflip.utils.config import config


# ---------------------------------------------------------------------------
# Fake scheduler
# ---------------------------------------------------------------------------


class FakeTimer:
    def __init__(self, when: float, callback: Callable, args: Tuple[Any, ...]):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manually advanced stand-in for the event loop's call_later/time."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay: float, callback: Callable, *args: Any) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback, args)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback(*timer.args)
        self.now = target

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self._timers if not t.cancelled]


# ---------------------------------------------------------------------------
# Fake narration engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """NarrationEngine that only records calls."""

    def __init__(self):
        self.utterances: List[Utterance] = []
        self.cancel_count = 0
        self.pause_count = 0
        self.resume_count = 0

    def speak(self, utterance: Utterance) -> None:
        self.utterances.append(utterance)

    def cancel(self) -> None:
        self.cancel_count += 1

    def pause(self) -> None:
        self.pause_count += 1

    def resume(self) -> None:
        self.resume_count += 1

    @property
    def last(self) -> Utterance:
        return self.utterances[-1]

    def word(self, char_index: int, char_length: int, utterance: Optional[Utterance] = None) -> None:
        """Fire a word boundary, relative to the utterance text."""
        (utterance or self.last).on_boundary(BoundaryEvent("word", char_index, char_length))

    def finish(self, utterance: Optional[Utterance] = None) -> None:
        (utterance or self.last).on_end()


class WriteRecorder:
    """Progress writer that records (document_id, index, progress) calls."""

    def __init__(self):
        self.writes: List[Tuple[str, int, int]] = []

    def __call__(self, document_id: str, index: int, progress: int) -> None:
        self.writes.append((document_id, index, progress))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def regex_sentence_finder(monkeypatch):
    """Use the regex sentence finder so results don't depend on PyICU."""
    monkeypatch.setitem(config._config["segmenter"], "sentence_finder", "regex")
    reset_boundary_finder()
    yield
    reset_boundary_finder()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def adapter(engine):
    return NarrationAdapter(engine)


@pytest.fixture
def recorder():
    return WriteRecorder()


@pytest.fixture
def synchronizer(recorder, scheduler):
    return ProgressSynchronizer(recorder, scheduler=scheduler, delay=1.0)


@pytest.fixture
def db():
    """In-memory database installed as the process default."""
    database = Database()
    reset_db(database)
    yield database
    reset_db()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """On-disk database under a temporary directory."""
    directory = tmp_path / "data"
    monkeypatch.setenv("PAPERFLIP_DATA_DIR", str(directory))
    reset_db()
    yield directory
    reset_db()
