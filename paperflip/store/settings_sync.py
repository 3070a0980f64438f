"""
Two-way sync between in-memory preferences and the stored settings record.

The first value read from storage hydrates the preferences and is never
written back. After that, storage changes are mirrored into preferences
(again without write-back) and local preference changes patch storage.
While a local write to a field is in flight, storage values for that field
are not applied, so the echo of an older write cannot undo a newer change.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from paperflip.store import database
from paperflip.store.database import DEFAULT_SETTINGS, Database
from paperflip.utils.background import run_in_background
from paperflip.utils import logger

PreferenceListener = Callable[[Any], None]


class Preference:
    """Observable in-memory value."""

    def __init__(self, name: str, value: Any):
        self.name = name
        self._value = value
        self._listeners: List[PreferenceListener] = []

    def get(self) -> Any:
        return self._value

    def set(self, value: Any) -> None:
        """Update the value; listeners run only if it actually changed."""
        if value == self._value:
            return
        self._value = value
        for listener in list(self._listeners):
            listener(value)

    def subscribe(self, listener: PreferenceListener) -> Callable[[], None]:
        """Call listener with the current value now and on every change."""
        self._listeners.append(listener)
        listener(self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __repr__(self) -> str:
        return f"Preference({self.name}={self._value!r})"


def create_preferences(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Preference]:
    """One Preference per settings field, keyed by camelCase name."""
    values = dict(DEFAULT_SETTINGS)
    values.update(overrides or {})
    return {name: Preference(name, values[name]) for name in DEFAULT_SETTINGS}


class SyncPhase(str, Enum):
    IDLE = "idle"
    HYDRATING = "hydrating"
    SYNCED = "synced"


class SettingsSync:
    """
    Binds a set of preferences to the settings record.

    Usage:
        sync = SettingsSync(db, preferences)
        await sync.start()
        ...
        sync.stop()
    """

    def __init__(self, db: Optional[Database], preferences: Dict[str, Preference]):
        self.db = db
        self.preferences = preferences
        self.phase = SyncPhase.IDLE
        self._applying = False
        # Values written locally whose store round trip has not finished, per field
        self._in_flight: Dict[str, List[Any]] = {}
        self._hydrated: Optional[asyncio.Event] = None
        self._unsubscribers: List[Callable[[], None]] = []

    async def start(self) -> None:
        """Begin syncing and wait until the stored settings have hydrated the preferences."""
        if self.phase != SyncPhase.IDLE:
            await self.wait_hydrated()
            return

        self.phase = SyncPhase.HYDRATING
        self._hydrated = asyncio.Event()

        for name, preference in self.preferences.items():
            self._unsubscribers.append(
                preference.subscribe(lambda value, name=name: self._on_local_change(name, value))
            )

        self._unsubscribers.append(
            database.watch_settings(self._on_storage_pulse, db=self.db)
        )

        await self.wait_hydrated()

    async def wait_hydrated(self) -> None:
        if self._hydrated is None:
            raise RuntimeError("SettingsSync.start() has not been called")
        await self._hydrated.wait()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.phase = SyncPhase.IDLE

    def _on_storage_pulse(self, record: Optional[Dict[str, Any]]) -> None:
        if record is not None:
            self._applying = True
            try:
                for name, preference in self.preferences.items():
                    if name in self._in_flight:
                        continue
                    if name in record and record[name] is not None:
                        preference.set(record[name])
            finally:
                self._applying = False

        if self.phase == SyncPhase.HYDRATING:
            self.phase = SyncPhase.SYNCED
            self._hydrated.set()
            logger.info("Settings loaded")

    def _on_local_change(self, name: str, value: Any) -> None:
        if self._applying or self.phase != SyncPhase.SYNCED:
            return
        self._in_flight.setdefault(name, []).append(value)
        run_in_background(self._write(name, value), f"Saving setting {name}")

    async def _write(self, name: str, value: Any) -> None:
        try:
            await database.update_settings({name: value}, db=self.db)
        finally:
            pending = self._in_flight.get(name, [])
            if value in pending:
                pending.remove(value)
            if not pending:
                self._in_flight.pop(name, None)
