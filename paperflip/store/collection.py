"""
Keyed document collection persisted as a single JSON file.

Each record is a JSON object identified by its primary key field. Records
are stamped with the collection's schema version; records written by an
older version are migrated step by step when the collection is loaded.
"""

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from paperflip.utils import logger

Record = Dict[str, Any]
MigrationStrategy = Callable[[Record], Record]
Watcher = Callable[[Optional[Record]], None]

VERSION_FIELD = "_version"


class StoreError(Exception):
    """Raised when a collection cannot be read or written."""
    pass


class DuplicateKeyError(StoreError):
    """Raised when inserting a record whose key already exists."""
    pass


class DocumentCollection:
    """
    Async collection of JSON records keyed by `primary_key`.

    With path=None the collection lives in memory only. Returned records
    are copies; mutating them does not touch the stored data.
    """

    def __init__(
        self,
        name: str,
        primary_key: str,
        path: Optional[Path] = None,
        version: int = 0,
        migration_strategies: Optional[Dict[int, MigrationStrategy]] = None,
    ):
        self.name = name
        self.primary_key = primary_key
        self.path = Path(path) if path is not None else None
        self.version = version
        self.migration_strategies = migration_strategies or {}

        missing = [v for v in range(1, version + 1) if v not in self.migration_strategies]
        if missing:
            raise StoreError(f"Collection {name} is missing migration strategies {missing}")

        self._records: Optional[Dict[str, Record]] = None
        self._watchers: Dict[str, List[Watcher]] = {}
        self._lock = asyncio.Lock()

    # -- persistence -----------------------------------------------------

    def _load(self) -> Dict[str, Record]:
        if self._records is not None:
            return self._records

        records: Dict[str, Record] = {}
        migrated = False

        if self.path is not None and self.path.exists():
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                raise StoreError(f"Could not read collection {self.name} from {self.path}: {e}") from e

            for raw in data.get("records", []):
                if not isinstance(raw, dict) or raw.get(self.primary_key) is None:
                    logger.warning(f"Skipping malformed record in {self.name}")
                    continue
                record = self._migrate(raw)
                migrated = migrated or record is not raw
                records[str(record[self.primary_key])] = record

        self._records = records
        if migrated:
            logger.info(f"Migrated {self.name} to schema version {self.version}")
            self._save()
        return records

    def _migrate(self, record: Record) -> Record:
        record_version = record.get(VERSION_FIELD, 0)
        if record_version >= self.version:
            return record

        migrated = dict(record)
        for version in range(record_version + 1, self.version + 1):
            migrated = self.migration_strategies[version](migrated)
        migrated[VERSION_FIELD] = self.version
        return migrated

    def _save(self, records: Optional[Dict[str, Record]] = None) -> None:
        """Write records (default: the loaded ones) to disk atomically."""
        if records is None:
            records = self._records
        if self.path is None:
            return

        data = {
            "name": self.name,
            "version": self.version,
            "records": list(records.values()),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Could not write collection {self.name} to {self.path}: {e}") from e

    def _commit(self, records: Dict[str, Record]) -> None:
        """Persist a new record map, then make it current. A failed write changes nothing."""
        self._save(records)
        self._records = records

    def _public(self, record: Optional[Record]) -> Optional[Record]:
        if record is None:
            return None
        public = copy.deepcopy(record)
        public.pop(VERSION_FIELD, None)
        return public

    def _key_of(self, record: Record) -> str:
        key = record.get(self.primary_key)
        if key is None or key == "":
            raise StoreError(f"Record for {self.name} has no {self.primary_key}")
        return str(key)

    def _notify(self, key: str) -> None:
        value = self._public(self._records.get(key))
        for watcher in list(self._watchers.get(key, [])):
            watcher(value)

    # -- operations ------------------------------------------------------

    async def insert(self, record: Record) -> Record:
        """Insert a new record. Raises DuplicateKeyError if the key exists."""
        async with self._lock:
            records = self._load()
            key = self._key_of(record)
            if key in records:
                raise DuplicateKeyError(f"{self.name} already contains {key}")

            stored = copy.deepcopy(record)
            stored[VERSION_FIELD] = self.version
            self._commit({**records, key: stored})

        self._notify(key)
        return self._public(stored)

    async def upsert(self, record: Record) -> Record:
        """Insert or fully replace a record."""
        async with self._lock:
            records = self._load()
            key = self._key_of(record)

            stored = copy.deepcopy(record)
            stored[VERSION_FIELD] = self.version
            self._commit({**records, key: stored})

        self._notify(key)
        return self._public(stored)

    async def find_one(self, key: str) -> Optional[Record]:
        async with self._lock:
            return self._public(self._load().get(str(key)))

    async def find(
        self,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """All records, optionally sorted by a field and truncated."""
        async with self._lock:
            records = list(self._load().values())

        if sort_by is not None:
            records.sort(key=lambda r: (r.get(sort_by) is not None, r.get(sort_by) or 0), reverse=descending)
        if limit is not None:
            records = records[:max(limit, 0)]
        return [self._public(r) for r in records]

    async def patch(self, key: str, changes: Record) -> Optional[Record]:
        """Merge changes into an existing record. Returns None if it does not exist."""
        async with self._lock:
            records = self._load()
            key = str(key)
            stored = records.get(key)
            if stored is None:
                return None

            updated = dict(stored)
            updated.update(copy.deepcopy(changes))
            updated[self.primary_key] = stored[self.primary_key]
            self._commit({**records, key: updated})

        self._notify(key)
        return self._public(updated)

    async def remove(self, key: str) -> bool:
        async with self._lock:
            records = self._load()
            key = str(key)
            if key not in records:
                return False
            remaining = dict(records)
            del remaining[key]
            self._commit(remaining)

        self._notify(key)
        return True

    def watch(self, key: str, callback: Watcher) -> Callable[[], None]:
        """
        Subscribe to one record.

        The callback receives the current value right away and the new
        value (or None once removed) after every change.
        """
        key = str(key)
        self._watchers.setdefault(key, []).append(callback)
        callback(self._public(self._load().get(key)))

        def unsubscribe() -> None:
            watchers = self._watchers.get(key, [])
            if callback in watchers:
                watchers.remove(callback)

        return unsubscribe

    async def count(self) -> int:
        async with self._lock:
            return len(self._load())
