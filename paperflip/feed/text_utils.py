"""
Word location and caption helpers used when rendering highlights.
"""

import re
from dataclasses import dataclass
from typing import List

WORD_COUNT = 8

# Average reading speed approx 16.6 chars/sec (1000 chars / 60 sec)
CHARS_PER_SECOND = 16.6

_WORD = re.compile(r"\S+")


@dataclass(frozen=True)
class Word:
    """A non-whitespace run with its offsets in the source text."""

    word: str
    start: int
    end: int


def parse_words(text: str) -> List[Word]:
    """Split text into words, keeping each word's character offsets."""
    if not text:
        return []
    return [Word(m.group(), m.start(), m.end()) for m in _WORD.finditer(text)]


def active_word_index(words: List[Word], char_index: int) -> int:
    """Index of the word containing (or last starting before) char_index."""
    active = 0
    for index, word in enumerate(words):
        if word.start > char_index:
            break
        active = index
    return active


def caption_window(
    words: List[Word],
    highlight_start: int,
    highlight_end: int,
    word_count: int = WORD_COUNT,
    dictation: bool = False,
) -> List[Word]:
    """
    Pick the words to show around the highlighted range.

    Karaoke captions show the page of `word_count` words that contains the
    active word. In dictation mode the whole highlighted sentence is shown,
    however many words it has.
    """
    if not words:
        return []

    if dictation:
        covered = [w for w in words if w.end > highlight_start and w.start < highlight_end]
        if covered:
            return covered

    active = active_word_index(words, highlight_start)
    page_start = (active // word_count) * word_count
    return words[page_start:page_start + word_count]


def granular_progress(
    segment_index: int,
    segment_progress: int,
    segment_length: int,
    total_segments: int,
) -> int:
    """
    Whole-document progress as a rounded percentage.

    Combines the segment index with the character offset inside the
    current segment, e.g. segment 1 of 3 at 5/7 characters -> 57.
    """
    if total_segments <= 0:
        return 0

    fraction = 0.0
    if segment_length > 0:
        fraction = min(max(segment_progress / segment_length, 0.0), 1.0)

    percent = (segment_index + fraction) / total_segments * 100
    return min(100, max(0, int(percent + 0.5)))


def estimate_reading_seconds(text: str) -> float:
    """Rough narration time for text at the average reading speed."""
    return len(text) / CHARS_PER_SECOND


def document_progress(record) -> int:
    """Granular progress of a stored document record."""
    return granular_progress(
        record.current_segment_index,
        record.current_segment_progress,
        record.current_segment_length,
        record.total_segments,
    )
