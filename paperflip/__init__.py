"""
paperflip

Turns long-form papers into a feed of short narrated, captioned segments
with resumable reading progress.
"""

__version__ = "0.3.0"
