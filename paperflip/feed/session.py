"""
Feed session: one open document wired to narration, playback, progress
persistence and the live preferences.
"""

import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, List, Optional

from paperflip.feed.narration import NarrationAdapter
from paperflip.feed.playback import PlaybackController
from paperflip.feed.progress_sync import ProgressSynchronizer
from paperflip.store import database
from paperflip.store.database import Database, DocumentNotFoundError, DocumentRecord
from paperflip.store.settings_sync import Preference
from paperflip.utils import logger


@dataclass
class FeedSession:
    """An open document. close() stops playback and saves the position."""

    document: DocumentRecord
    controller: PlaybackController
    synchronizer: ProgressSynchronizer
    unsubscribers: List[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        for unsubscribe in self.unsubscribers:
            unsubscribe()
        self.unsubscribers = []
        self.controller.destroy()
        self.synchronizer.close()

    async def wait_idle(self) -> None:
        """Wait for progress writes still running in the background."""
        await self.synchronizer.wait_idle()


async def open_feed(
    document_id: str,
    *,
    adapter: NarrationAdapter,
    preferences: Dict[str, Preference],
    db: Optional[Database] = None,
    scheduler=None,
    video=None,
    synchronizer: Optional[ProgressSynchronizer] = None,
    mount: bool = True,
) -> FeedSession:
    """
    Load a document and start playing it.

    With autoResume on, playback starts at the saved segment and offset;
    otherwise at the beginning. Mute and playback rate follow the
    preferences live; the dictation override applies from the next
    segment on.

    Raises:
        DocumentNotFoundError: if the document is not stored
    """
    scheduler = scheduler or asyncio.get_running_loop()

    document = await database.get_document(document_id, db=db)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")

    if not document.segments:
        logger.warning(f"Document {document_id} has no segments")

    if preferences["autoResume"].get():
        initial_index = document.current_segment_index
        initial_progress = document.current_segment_progress
    else:
        initial_index, initial_progress = 0, 0

    if synchronizer is None:
        synchronizer = ProgressSynchronizer(
            partial(database.update_document_progress, db=db),
            scheduler=scheduler,
        )

    adapter.set_rate(preferences["playbackRate"].get())
    adapter.set_muted(preferences["isMuted"].get())

    controller = PlaybackController(
        document.document_id,
        document.segments,
        adapter,
        synchronizer,
        scheduler=scheduler,
        initial_index=initial_index,
        initial_progress=initial_progress,
        force_dictation=bool(preferences["isDictationMode"].get()),
        video=video,
    )

    session = FeedSession(document, controller, synchronizer)
    session.unsubscribers.extend([
        preferences["isMuted"].subscribe(adapter.set_muted),
        preferences["playbackRate"].subscribe(adapter.set_rate),
        preferences["isDictationMode"].subscribe(controller.set_force_dictation),
    ])

    await database.touch_document(document_id, db=db)

    if mount:
        controller.mount()
    return session
