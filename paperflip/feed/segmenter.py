"""
Text Segmenter Module

Splits extracted document text into bounded playback segments, and a
segment into sentence spans with exact character offsets for dictation
playback.

Sentence boundaries come from ICU (via PyICU) when it is installed, and
from a regex splitter otherwise. Both produce the same span contract.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from paperflip.utils.config import config
from paperflip.utils import logger

MAX_SEGMENT_LENGTH = 1000

# One or more blank lines separate paragraphs
_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Terminal punctuation, optional closing quotes/brackets, then whitespace or end
_SENTENCE_END = re.compile(r"[.!?]+[\"'”’)\]]*(?=\s|$)\s*")


@dataclass(frozen=True)
class SentenceSpan:
    """A sentence with its character offsets in the text it was split from."""

    text: str
    start: int
    end: int


class RegexBoundaryFinder:
    """
    Sentence boundary finder based on terminal punctuation.

    Splits after runs of . ! ? followed by whitespace or end of text.
    Trailing whitespace stays with the sentence it follows. Periods after
    common abbreviations and single initials do not end a sentence.
    """

    name = "regex"

    # Common abbreviations that shouldn't end sentences
    ABBREVIATIONS = {
        "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "st", "ltd", "inc",
        "vs", "etc", "al", "eg", "ie", "cf", "vol", "pp", "ed",
        "jan", "feb", "mar", "apr", "jun", "jul", "aug", "sep", "oct", "nov", "dec",
        "fig", "figs", "eq", "eqs", "sec", "ch", "pt", "para",
    }

    def boundaries(self, text: str) -> List[int]:
        """Return sorted end offsets of each sentence; the last one is len(text)."""
        if not text:
            return []

        ends = []
        for match in _SENTENCE_END.finditer(text):
            if self._is_abbreviation(text, match):
                continue
            ends.append(match.end())

        if not ends or ends[-1] != len(text):
            ends.append(len(text))
        return ends

    def _is_abbreviation(self, text: str, match: "re.Match") -> bool:
        if not match.group().startswith(".") or match.group().startswith(".."):
            return False
        # Only a bare period followed by more text can be an abbreviation
        if match.end() >= len(text):
            return False

        word_start = match.start()
        while word_start > 0 and not text[word_start - 1].isspace():
            word_start -= 1
        word = text[word_start:match.start()].strip("\"'(“‘")

        if len(word) == 1 and word.isupper():
            return True
        return word.lower().replace(".", "") in self.ABBREVIATIONS


class IcuBoundaryFinder:
    """Locale-aware sentence boundary finder backed by ICU's BreakIterator."""

    name = "icu"

    def __init__(self, locale: Optional[str] = None):
        import icu

        self._icu = icu
        self.locale = locale or config.locale
        self._iterator = icu.BreakIterator.createSentenceInstance(icu.Locale(self.locale))

    def boundaries(self, text: str) -> List[int]:
        if not text:
            return []

        self._iterator.setText(self._icu.UnicodeString(text))
        # ICU reports UTF-16 offsets
        utf16_ends = [b for b in self._iterator if b > 0]
        ends = _utf16_to_codepoints(text, utf16_ends)

        if not ends or ends[-1] != len(text):
            ends.append(len(text))
        return ends


def _utf16_to_codepoints(text: str, offsets: List[int]) -> List[int]:
    """Convert UTF-16 code unit offsets into str indices."""
    if all(ord(ch) < 0x10000 for ch in text):
        return list(offsets)

    mapping = {}
    units = 0
    for index, ch in enumerate(text):
        mapping[units] = index
        units += 2 if ord(ch) >= 0x10000 else 1
    mapping[units] = len(text)
    return [mapping[offset] for offset in offsets if offset in mapping]


_boundary_finder = None


def get_boundary_finder():
    """
    Return the process-wide sentence boundary finder.

    Built once on first use according to `segmenter.sentence_finder`
    (auto, icu or regex). Finders hold no per-call state, so sharing one
    across calls is safe.
    """
    global _boundary_finder

    if _boundary_finder is None:
        preference = (config.sentence_finder or "auto").lower()

        if preference == "regex":
            _boundary_finder = RegexBoundaryFinder()
        else:
            try:
                _boundary_finder = IcuBoundaryFinder()
            except ImportError:
                logger.warning(
                    "PyICU not installed, using regex sentence splitting "
                    "(install with: pip install 'paperflip[icu]')"
                )
                _boundary_finder = RegexBoundaryFinder()
            except Exception as e:
                logger.warning(f"ICU sentence splitting unavailable ({e}), using regex")
                _boundary_finder = RegexBoundaryFinder()

    return _boundary_finder


def reset_boundary_finder() -> None:
    """Drop the cached boundary finder (used by tests and config reloads)."""
    global _boundary_finder
    _boundary_finder = None


def split_sentences(text: str) -> List[SentenceSpan]:
    """
    Split text into sentence spans.

    Offsets always refer to the original text, so for every span
    text[span.start:span.end] == span.text. Whitespace-only spans are
    dropped without shifting the others.

    Args:
        text: Text to split (usually a single segment)

    Returns:
        Ordered list of SentenceSpan objects
    """
    spans = []
    start = 0

    for end in get_boundary_finder().boundaries(text):
        if end <= start:
            continue
        chunk = text[start:end]
        if chunk.strip():
            spans.append(SentenceSpan(text=chunk, start=start, end=end))
        start = end

    return spans


def segment_text(text: str, max_length: int = MAX_SEGMENT_LENGTH) -> List[str]:
    """
    Split raw text into playback segments.

    Paragraphs (separated by blank lines) that fit within max_length are
    kept whole. Longer paragraphs are packed sentence by sentence, and a
    sentence that alone exceeds the limit is cut at the last space inside
    the window, or exactly at the limit when the window has no space.

    Args:
        text: Raw document text
        max_length: Maximum segment length in characters

    Returns:
        Ordered list of non-empty, trimmed segments
    """
    segments = []

    for paragraph in _PARAGRAPH_BREAK.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if len(paragraph) <= max_length:
            segments.append(paragraph)
        else:
            segments.extend(_pack_sentences(paragraph, max_length))

    return [s for s in segments if s]


def _pack_sentences(paragraph: str, max_length: int) -> List[str]:
    """Greedily pack consecutive sentences into chunks of at most max_length."""
    chunks = []
    current = ""

    for sentence in split_sentences(paragraph):
        candidate = current + sentence.text

        if len(candidate.strip()) <= max_length:
            current = candidate
            continue

        if current.strip():
            chunks.append(current.strip())
        current = ""

        if len(sentence.text.strip()) > max_length:
            chunks.extend(_force_split(sentence.text, max_length))
        else:
            current = sentence.text

    if current.strip():
        chunks.append(current.strip())

    return chunks


def _force_split(text: str, max_length: int) -> List[str]:
    """
    Cut an oversize sentence into pieces of at most max_length.

    Words longer than max_length are torn at exactly the limit.
    """
    pieces = []
    remaining = text.strip()

    while len(remaining) > max_length:
        window = remaining[:max_length + 1]
        cut = _last_space(window)

        if cut > 0:
            piece = remaining[:cut]
            remaining = remaining[cut:].lstrip()
        else:
            piece = remaining[:max_length]
            remaining = remaining[max_length:]

        if piece.strip():
            pieces.append(piece.strip())

    if remaining.strip():
        pieces.append(remaining.strip())

    return pieces


def _last_space(window: str) -> int:
    for index in range(len(window) - 1, 0, -1):
        if window[index].isspace():
            return index
    return -1
