"""
Feed Module

Segmentation, narration and playback for the captioned reading feed.
"""

from paperflip.feed.segmenter import SentenceSpan, segment_text, split_sentences
from paperflip.feed.text_utils import Word, caption_window, parse_words
from paperflip.feed.narration import NarrationAdapter
from paperflip.feed.playback import PlaybackController, PlaybackMode, PlaybackState
from paperflip.feed.progress_sync import ProgressSynchronizer
from paperflip.feed.session import FeedSession, open_feed

__all__ = [
    "SentenceSpan",
    "segment_text",
    "split_sentences",
    "Word",
    "caption_window",
    "parse_words",
    "NarrationAdapter",
    "PlaybackController",
    "PlaybackMode",
    "PlaybackState",
    "ProgressSynchronizer",
    "FeedSession",
    "open_feed",
]
