"""
Progress Synchronizer

Debounced persistence of (segment index, character progress) per document.
Rapid calls collapse into one write carrying only the latest position;
pause, segment completion and unmount write immediately instead.
"""

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional, Tuple

from paperflip.utils import background
from paperflip.utils.config import config
from paperflip.utils import logger

ProgressWriter = Callable[[str, int, int], Any]


@dataclass
class _Pending:
    index: int
    progress: int
    handle: Any


class ProgressSynchronizer:
    """
    Owns one debounce timer per document.

    The writer is called as writer(document_id, index, progress). If it
    returns an awaitable, the write runs in the background and failures
    are logged rather than raised into playback.
    """

    def __init__(self, writer: ProgressWriter, *, scheduler, delay: Optional[float] = None):
        self.writer = writer
        self.scheduler = scheduler
        self.delay = config.debounce_delay if delay is None else delay
        self._pending: Dict[str, _Pending] = {}

    def record(self, document_id: str, index: int, progress: int) -> None:
        """Schedule a write; any write still pending for this document is replaced."""
        self._cancel(document_id)
        handle = self.scheduler.call_later(self.delay, partial(self._fire, document_id))
        self._pending[document_id] = _Pending(index, progress, handle)

    def flush_now(self, document_id: str, index: int, progress: int) -> None:
        """Write immediately, dropping any pending debounced write."""
        self._cancel(document_id)
        self._write(document_id, index, progress)

    def flush(self, document_id: Optional[str] = None) -> None:
        """Write pending state now, for one document or all of them."""
        ids = [document_id] if document_id is not None else list(self._pending)
        for doc_id in ids:
            pending = self._pending.pop(doc_id, None)
            if pending is None:
                continue
            pending.handle.cancel()
            self._write(doc_id, pending.index, pending.progress)

    def close(self) -> None:
        """Flush everything pending; no timer survives."""
        self.flush()

    def pending(self, document_id: str) -> Optional[Tuple[int, int]]:
        """The (index, progress) waiting to be written, if any."""
        pending = self._pending.get(document_id)
        if pending is None:
            return None
        return pending.index, pending.progress

    async def wait_idle(self) -> None:
        """Wait for background writes already dispatched."""
        await background.drain()

    def _cancel(self, document_id: str) -> None:
        pending = self._pending.pop(document_id, None)
        if pending is not None:
            pending.handle.cancel()

    def _fire(self, document_id: str) -> None:
        pending = self._pending.pop(document_id, None)
        if pending is not None:
            self._write(document_id, pending.index, pending.progress)

    def _write(self, document_id: str, index: int, progress: int) -> None:
        try:
            result = self.writer(document_id, index, progress)
        except Exception as e:
            logger.error(f"Failed to save progress for {document_id}: {e}")
            return
        background.run_in_background(result, f"Saving progress for {document_id}")
