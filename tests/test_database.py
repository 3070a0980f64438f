"""Tests for document and settings storage operations."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from paperflip.store import database
from paperflip.store.collection import DuplicateKeyError, StoreError
from paperflip.store.database import Database, DocumentRecord, SettingsRecord


def run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# DocumentRecord
# ---------------------------------------------------------------------------


class TestDocumentRecord:

    def test_defaults_for_absent_fields(self):
        record = DocumentRecord.from_dict({"documentId": "doc"})
        assert record.segments == []
        assert record.total_segments == 0
        assert record.current_segment_index == 0
        assert record.current_segment_progress == 0
        assert record.is_favourite is False

    def test_position_is_clamped(self):
        record = DocumentRecord.from_dict({
            "documentId": "doc",
            "segments": ["abc", "defgh"],
            "currentSegmentIndex": 9,
            "currentSegmentProgress": 40,
        })
        assert record.current_segment_index == 1
        assert record.current_segment_length == 5
        assert record.current_segment_progress == 5

    def test_round_trip_uses_camel_case(self):
        data = DocumentRecord.from_dict({"documentId": "doc", "segments": ["a"]}).to_dict()
        assert set(data) == {
            "documentId", "segments", "totalSegments", "currentSegmentIndex",
            "currentSegmentLength", "currentSegmentProgress", "createdAt",
            "lastViewedAt", "isFavourite",
        }


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class TestDocuments:

    def test_add_and_get(self, db):
        run(database.add_document("doc", ["one", "two"]))

        record = run(database.get_document("doc"))
        assert record.segments == ["one", "two"]
        assert record.total_segments == 2
        assert record.created_at > 0
        assert record.last_viewed_at == record.created_at

    def test_add_duplicate_reraises(self, db, capsys):
        run(database.add_document("doc", ["one"]))
        with pytest.raises(DuplicateKeyError):
            run(database.add_document("doc", ["one"]))
        assert "Failed to add document doc" in capsys.readouterr().out

    def test_get_missing_returns_none(self, db):
        assert run(database.get_document("nope")) is None

    def test_upsert_same_segments_keeps_progress(self, db):
        run(database.add_document("doc", ["one", "two"]))
        run(database.update_document_progress("doc", 1, 2))
        run(database.toggle_favourite("doc"))

        record = run(database.upsert_document("doc", ["one", "two"]))

        assert record.current_segment_index == 1
        assert record.current_segment_progress == 2
        assert record.is_favourite is True

    def test_upsert_new_segments_resets_progress(self, db):
        run(database.add_document("doc", ["one", "two"]))
        run(database.update_document_progress("doc", 1, 2))
        created = run(database.get_document("doc")).created_at

        record = run(database.upsert_document("doc", ["changed"]))

        assert record.segments == ["changed"]
        assert record.current_segment_index == 0
        assert record.current_segment_progress == 0
        assert record.created_at == created

    def test_upsert_empty_segments_keeps_stored(self, db):
        run(database.add_document("doc", ["one"]))
        record = run(database.upsert_document("doc", []))
        assert record.segments == ["one"]

    def test_upsert_creates_missing(self, db):
        record = run(database.upsert_document("fresh", ["text"]))
        assert record.document_id == "fresh"
        assert run(database.get_document("fresh")) is not None

    def test_upsert_failure_reraises(self, db, monkeypatch):
        monkeypatch.setattr(db.documents, "upsert", AsyncMock(side_effect=OSError("disk")))
        with pytest.raises(OSError):
            run(database.upsert_document("doc", ["one"]))

    def test_recent_uploads_most_recent_first(self, db):
        run(db.documents.upsert(DocumentRecord("old", ["a"], last_viewed_at=100).to_dict()))
        run(db.documents.upsert(DocumentRecord("new", ["a"], last_viewed_at=300).to_dict()))
        run(db.documents.upsert(DocumentRecord("mid", ["a"], last_viewed_at=200).to_dict()))

        recent = run(database.get_recent_uploads())
        assert [r.document_id for r in recent] == ["new", "mid", "old"]
        assert len(run(database.get_recent_uploads(limit=1))) == 1


class TestProgress:

    def test_updates_position_only(self, db):
        run(database.add_document("doc", ["one", "two"]))

        record = run(database.update_document_progress("doc", 1, 2))

        assert record.current_segment_index == 1
        assert record.current_segment_progress == 2
        assert record.current_segment_length == 3
        assert record.segments == ["one", "two"]

    def test_position_is_clamped(self, db):
        run(database.add_document("doc", ["one", "two"]))
        record = run(database.update_document_progress("doc", 5, 99))
        assert (record.current_segment_index, record.current_segment_progress) == (1, 3)

    def test_missing_document_warns(self, db, capsys):
        assert run(database.update_document_progress("nope", 0, 0)) is None
        assert "not found" in capsys.readouterr().out

    def test_failure_is_swallowed(self, db, monkeypatch, capsys):
        run(database.add_document("doc", ["one"]))
        monkeypatch.setattr(db.documents, "patch", AsyncMock(side_effect=OSError("disk")))

        assert run(database.update_document_progress("doc", 0, 1)) is None
        assert "Failed to update progress for doc" in capsys.readouterr().out

    def test_touch_updates_last_viewed(self, db):
        run(db.documents.upsert(DocumentRecord("doc", ["a"], last_viewed_at=1).to_dict()))
        run(database.touch_document("doc"))
        assert run(database.get_document("doc")).last_viewed_at > 1


class TestFavouriteAndDelete:

    def test_toggle_favourite(self, db):
        run(database.add_document("doc", ["one"]))
        assert run(database.toggle_favourite("doc")) is True
        assert run(database.toggle_favourite("doc")) is False

    def test_toggle_missing(self, db):
        assert run(database.toggle_favourite("nope")) is None

    def test_delete(self, db):
        run(database.add_document("doc", ["one"]))
        assert run(database.delete_document("doc")) is True
        assert run(database.delete_document("doc")) is False
        assert run(database.get_document("doc")) is None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:

    def test_defaults_before_first_write(self, db):
        assert run(database.get_settings()) == SettingsRecord()

    def test_first_update_creates_record_from_defaults(self, db):
        settings = run(database.update_settings({"isMuted": True}))

        assert settings.is_muted is True
        assert settings.auto_resume is True
        assert run(db.settings.find_one("global"))["videoLength"] == 30

    def test_later_updates_patch(self, db):
        run(database.update_settings({"isMuted": True}))
        settings = run(database.update_settings({"playbackRate": 1.5}))
        assert settings.is_muted is True
        assert settings.playback_rate == 1.5

    def test_unknown_keys_are_ignored(self, db, capsys):
        settings = run(database.update_settings({"bogus": 1, "darkMode": False}))
        assert settings.dark_mode is False
        assert "bogus" not in run(db.settings.find_one("global"))
        assert "Ignoring unknown settings: bogus" in capsys.readouterr().out

    def test_watch_settings(self, db):
        seen = []
        unsubscribe = database.watch_settings(seen.append)
        run(database.update_settings({"textScale": 1.2}))
        unsubscribe()

        assert seen[0] is None
        assert seen[1]["textScale"] == 1.2


# ---------------------------------------------------------------------------
# On disk
# ---------------------------------------------------------------------------


class TestOnDisk:

    def test_get_db_uses_data_dir(self, data_dir):
        run(database.add_document("doc", ["one"]))
        assert (data_dir / "documents.json").exists()

    def test_add_can_be_retried_after_failed_write(self, data_dir):
        blocker = data_dir / "documents.json.tmp"
        blocker.mkdir(parents=True)

        with pytest.raises(StoreError):
            run(database.add_document("doc", ["one"]))
        assert run(database.get_document("doc")) is None

        blocker.rmdir()
        record = run(database.add_document("doc", ["one"]))
        assert record.segments == ["one"]

    def test_v0_documents_are_migrated(self, tmp_path):
        (tmp_path / "documents.json").write_text(json.dumps({
            "records": [{"documentId": "legacy", "segments": ["abc", "de"], "currentSegmentIndex": 1}],
        }))

        record = run(database.get_document("legacy", db=Database(tmp_path)))

        assert record.current_segment_progress == 0
        assert record.is_favourite is False
        assert record.total_segments == 2
        assert record.current_segment_length == 2
        assert record.created_at > 0
        assert record.last_viewed_at == record.created_at
