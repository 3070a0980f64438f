"""
Document and settings storage.

Two collections:
- documents: one record per uploaded paper (segments plus reading progress)
- settings: a single "global" record of playback and display preferences

Best-effort updates (progress, favourite, delete, settings) log failures
and carry on; inserts and upserts made during ingestion re-raise so the
caller can report them.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from paperflip.store.collection import DocumentCollection, StoreError
from paperflip.utils.config import config
from paperflip.utils import logger

DOCUMENT_SCHEMA_VERSION = 4
SETTINGS_SCHEMA_VERSION = 0
SETTINGS_ID = "global"


class DocumentNotFoundError(StoreError):
    """Raised when a document id is not in the store."""
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class DocumentRecord:
    """A stored document with its segments and reading position."""

    document_id: str
    segments: List[str] = field(default_factory=list)
    total_segments: int = 0
    current_segment_index: int = 0
    current_segment_length: int = 0
    current_segment_progress: int = 0
    created_at: int = 0
    last_viewed_at: int = 0
    is_favourite: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "segments": self.segments,
            "totalSegments": self.total_segments,
            "currentSegmentIndex": self.current_segment_index,
            "currentSegmentLength": self.current_segment_length,
            "currentSegmentProgress": self.current_segment_progress,
            "createdAt": self.created_at,
            "lastViewedAt": self.last_viewed_at,
            "isFavourite": self.is_favourite,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentRecord":
        """Build a record, defaulting absent fields and clamping the position."""
        segments = data.get("segments")
        if not isinstance(segments, list):
            segments = []
        segments = [s for s in segments if isinstance(s, str)]

        index = _as_int(data.get("currentSegmentIndex"))
        index = min(max(index, 0), max(len(segments) - 1, 0))
        length = len(segments[index]) if segments else 0
        progress = min(max(_as_int(data.get("currentSegmentProgress")), 0), length)

        return cls(
            document_id=str(data["documentId"]),
            segments=segments,
            total_segments=len(segments),
            current_segment_index=index,
            current_segment_length=length,
            current_segment_progress=progress,
            created_at=_as_int(data.get("createdAt")),
            last_viewed_at=_as_int(data.get("lastViewedAt")),
            is_favourite=bool(data.get("isFavourite", False)),
        )

    @property
    def progress_percent(self) -> int:
        from paperflip.feed.text_utils import document_progress

        return document_progress(self)


@dataclass
class SettingsRecord:
    """Playback and display preferences (singleton record)."""

    video_length: int = 30
    background_url: str = ""
    auto_resume: bool = True
    dark_mode: bool = True
    text_scale: float = 1.0
    is_muted: bool = False
    is_dictation_mode: bool = False
    playback_rate: float = 1.0
    auto_scroll: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": SETTINGS_ID,
            "videoLength": self.video_length,
            "backgroundUrl": self.background_url,
            "autoResume": self.auto_resume,
            "darkMode": self.dark_mode,
            "textScale": self.text_scale,
            "isMuted": self.is_muted,
            "isDictationMode": self.is_dictation_mode,
            "playbackRate": self.playback_rate,
            "autoScroll": self.auto_scroll,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettingsRecord":
        defaults = cls()
        return cls(
            video_length=data.get("videoLength", defaults.video_length),
            background_url=data.get("backgroundUrl", defaults.background_url),
            auto_resume=data.get("autoResume", defaults.auto_resume),
            dark_mode=data.get("darkMode", defaults.dark_mode),
            text_scale=data.get("textScale", defaults.text_scale),
            is_muted=data.get("isMuted", defaults.is_muted),
            is_dictation_mode=data.get("isDictationMode", defaults.is_dictation_mode),
            playback_rate=data.get("playbackRate", defaults.playback_rate),
            auto_scroll=data.get("autoScroll", defaults.auto_scroll),
        )


# camelCase field name -> default value
DEFAULT_SETTINGS: Dict[str, Any] = {
    key: value for key, value in SettingsRecord().to_dict().items() if key != "id"
}


# -- document migrations ----------------------------------------------------

def _migrate_v1(record: Dict[str, Any]) -> Dict[str, Any]:
    """v1 adds createdAt."""
    record.setdefault("createdAt", _now_ms())
    return record


def _migrate_v2(record: Dict[str, Any]) -> Dict[str, Any]:
    """v2 adds intra-segment progress."""
    record.setdefault("currentSegmentProgress", 0)
    return record


def _migrate_v3(record: Dict[str, Any]) -> Dict[str, Any]:
    """v3 adds favourites."""
    record.setdefault("isFavourite", False)
    return record


def _migrate_v4(record: Dict[str, Any]) -> Dict[str, Any]:
    """v4 adds segment totals and lastViewedAt."""
    segments = record.get("segments") or []
    index = _as_int(record.get("currentSegmentIndex"))
    record.setdefault("totalSegments", len(segments))
    record.setdefault(
        "currentSegmentLength",
        len(segments[index]) if 0 <= index < len(segments) else 0,
    )
    record.setdefault("lastViewedAt", record.get("createdAt", 0))
    return record


DOCUMENT_MIGRATIONS = {
    1: _migrate_v1,
    2: _migrate_v2,
    3: _migrate_v3,
    4: _migrate_v4,
}


class Database:
    """The documents and settings collections, on disk or in memory."""

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Args:
            data_dir: Directory for the collection files; None keeps everything in memory
        """
        self.data_dir = Path(data_dir) if data_dir is not None else None

        self.documents = DocumentCollection(
            "documents",
            "documentId",
            path=self.data_dir / "documents.json" if self.data_dir else None,
            version=DOCUMENT_SCHEMA_VERSION,
            migration_strategies=DOCUMENT_MIGRATIONS,
        )
        self.settings = DocumentCollection(
            "settings",
            "id",
            path=self.data_dir / "settings.json" if self.data_dir else None,
            version=SETTINGS_SCHEMA_VERSION,
        )


_db: Optional[Database] = None


def get_db() -> Database:
    """Return the process-wide database, stored under the configured data dir."""
    global _db
    if _db is None:
        _db = Database(config.data_dir)
    return _db


def reset_db(db: Optional[Database] = None) -> None:
    """Replace the process-wide database (None rebuilds it on next use)."""
    global _db
    _db = db


# -- documents ---------------------------------------------------------------

async def add_document(
    document_id: str,
    segments: List[str],
    current_segment_index: int = 0,
    db: Optional[Database] = None,
) -> DocumentRecord:
    """Insert a new document. Raises on storage failure or duplicate id."""
    db = db or get_db()
    now = _now_ms()
    record = DocumentRecord.from_dict({
        "documentId": document_id,
        "segments": segments,
        "currentSegmentIndex": current_segment_index,
        "createdAt": now,
        "lastViewedAt": now,
    })
    try:
        stored = await db.documents.insert(record.to_dict())
    except Exception as e:
        logger.error(f"Failed to add document {document_id}: {e}")
        raise
    return DocumentRecord.from_dict(stored)


async def upsert_document(
    document_id: str,
    segments: List[str],
    db: Optional[Database] = None,
) -> DocumentRecord:
    """
    Create a document or re-open an existing one.

    An existing document keeps createdAt and isFavourite. Empty incoming
    segments never replace stored ones; the same segments keep the reading
    position; different segments start again from the beginning.
    """
    db = db or get_db()
    try:
        existing = await db.documents.find_one(document_id)
        now = _now_ms()

        if existing is None:
            data = {
                "documentId": document_id,
                "segments": segments,
                "createdAt": now,
                "lastViewedAt": now,
            }
        else:
            data = dict(existing)
            data["lastViewedAt"] = now
            if segments and segments != existing.get("segments"):
                data["segments"] = segments
                data["currentSegmentIndex"] = 0
                data["currentSegmentProgress"] = 0

        record = DocumentRecord.from_dict(data)
        stored = await db.documents.upsert(record.to_dict())
    except Exception as e:
        logger.error(f"Failed to upsert document {document_id}: {e}")
        raise
    return DocumentRecord.from_dict(stored)


async def get_document(document_id: str, db: Optional[Database] = None) -> Optional[DocumentRecord]:
    db = db or get_db()
    data = await db.documents.find_one(document_id)
    if data is None:
        return None
    return DocumentRecord.from_dict(data)


async def get_recent_uploads(
    limit: Optional[int] = None,
    db: Optional[Database] = None,
) -> List[DocumentRecord]:
    """Documents ordered by lastViewedAt, most recent first."""
    db = db or get_db()
    rows = await db.documents.find(sort_by="lastViewedAt", descending=True, limit=limit)
    return [DocumentRecord.from_dict(row) for row in rows]


async def update_document_progress(
    document_id: str,
    segment_index: int,
    segment_progress: int = 0,
    db: Optional[Database] = None,
) -> Optional[DocumentRecord]:
    """
    Patch the reading position. Only the position fields and lastViewedAt
    change; segments, createdAt and isFavourite are left alone.
    """
    db = db or get_db()
    try:
        existing = await db.documents.find_one(document_id)
        if existing is None:
            logger.warning(f"Cannot save progress: document {document_id} not found")
            return None

        segments = DocumentRecord.from_dict(existing).segments
        index = min(max(segment_index, 0), max(len(segments) - 1, 0))
        length = len(segments[index]) if segments else 0

        patched = await db.documents.patch(document_id, {
            "currentSegmentIndex": index,
            "currentSegmentProgress": min(max(segment_progress, 0), length),
            "currentSegmentLength": length,
            "lastViewedAt": _now_ms(),
        })
    except Exception as e:
        logger.error(f"Failed to update progress for {document_id}: {e}")
        return None

    return DocumentRecord.from_dict(patched) if patched is not None else None


async def touch_document(document_id: str, db: Optional[Database] = None) -> None:
    """Mark a document as viewed now."""
    db = db or get_db()
    try:
        await db.documents.patch(document_id, {"lastViewedAt": _now_ms()})
    except Exception as e:
        logger.error(f"Failed to update lastViewedAt for {document_id}: {e}")


async def toggle_favourite(document_id: str, db: Optional[Database] = None) -> Optional[bool]:
    """Flip isFavourite. Returns the new value, or None if it could not be changed."""
    db = db or get_db()
    try:
        existing = await db.documents.find_one(document_id)
        if existing is None:
            logger.warning(f"Cannot toggle favourite: document {document_id} not found")
            return None

        value = not bool(existing.get("isFavourite", False))
        await db.documents.patch(document_id, {"isFavourite": value})
    except Exception as e:
        logger.error(f"Failed to toggle favourite for {document_id}: {e}")
        return None
    return value


async def delete_document(document_id: str, db: Optional[Database] = None) -> bool:
    db = db or get_db()
    try:
        return await db.documents.remove(document_id)
    except Exception as e:
        logger.error(f"Failed to delete document {document_id}: {e}")
        return False


# -- settings ----------------------------------------------------------------

async def get_settings(db: Optional[Database] = None) -> SettingsRecord:
    db = db or get_db()
    data = await db.settings.find_one(SETTINGS_ID)
    return SettingsRecord.from_dict(data or {})


async def update_settings(changes: Dict[str, Any], db: Optional[Database] = None) -> Optional[SettingsRecord]:
    """
    Patch the settings record with camelCase fields, creating it from the
    defaults on first write.
    """
    db = db or get_db()
    unknown = [key for key in changes if key not in DEFAULT_SETTINGS]
    if unknown:
        logger.warning(f"Ignoring unknown settings: {', '.join(unknown)}")
    changes = {key: value for key, value in changes.items() if key in DEFAULT_SETTINGS}

    try:
        existing = await db.settings.find_one(SETTINGS_ID)
        if existing is None:
            data = SettingsRecord().to_dict()
            data.update(changes)
            stored = await db.settings.upsert(data)
        else:
            stored = await db.settings.patch(SETTINGS_ID, changes)
    except Exception as e:
        logger.error(f"Failed to update settings: {e}")
        return None
    return SettingsRecord.from_dict(stored)


def watch_settings(
    callback: Callable[[Optional[Dict[str, Any]]], None],
    db: Optional[Database] = None,
) -> Callable[[], None]:
    """
    Subscribe to the settings record. The callback gets the raw camelCase
    record (None until one has been written), now and after every change.
    """
    db = db or get_db()
    return db.settings.watch(SETTINGS_ID, callback)
