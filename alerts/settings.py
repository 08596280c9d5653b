from pathlib import Path
import asyncio
import json
import logging
from contextlib import suppress

from alerts.events import Subscription

logger = logging.getLogger("queuekeeper.settings")

DEFAULT_SETTINGS = {
    "enabled": True,
    "audioPermission": False,
}


def as_flag(value, default: bool, key: str = "setting") -> bool:
    """Read a stored on/off setting. Only real JSON booleans count; anything
    else (a hand-edited "false" string, a number) falls back to `default`."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    logger.warning("Ignoring non-boolean %s=%r in settings, using %s", key, value, default)
    return default


class JsonSettingsStore:
    """Persisted key/value settings with change notification.

    Reads never fail: a missing or corrupt file yields the defaults. Writes
    that cannot reach the disk are logged and kept in memory. Subscribers get
    a dict of {key: (old, new)} for every change, whether it came from this
    process (`set`) or from another one editing the file (`watch`).
    """

    def __init__(self, settings_path: Path, defaults: dict = None):
        self.settings_path = Path(settings_path)
        self.defaults = dict(DEFAULT_SETTINGS if defaults is None else defaults)
        self._values = dict(self.defaults)
        self._subscribers = []
        self._mtime = None
        self._watch_task = None
        self.reload(notify=False)

    def create_empty(self) -> None:
        if self.settings_path.exists():
            return
        try:
            self._write(self.defaults)
        except OSError as exc:
            logger.warning("Could not create settings file %s: %s", self.settings_path, exc)
            return
        logger.info("Created settings file at %s", self.settings_path)

    def _read(self) -> dict:
        if not self.settings_path.exists():
            self.create_empty()
            return dict(self.defaults)

        try:
            with open(self.settings_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read settings from %s, using defaults: %s", self.settings_path, exc)
            return dict(self.defaults)

        if not isinstance(raw, dict):
            logger.warning("Settings file %s must hold a JSON object, using defaults.", self.settings_path)
            return dict(self.defaults)

        values = dict(self.defaults)
        values.update(raw)
        return values

    def _write(self, values: dict) -> None:
        self.settings_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_path, "w", encoding="utf-8") as f:
            json.dump(values, f, indent=2)
        self._mtime = self._current_mtime()

    def _current_mtime(self):
        try:
            return self.settings_path.stat().st_mtime_ns
        except OSError:
            return None

    def get(self, key: str, default=None):
        if key in self._values:
            return self._values[key]
        return self.defaults.get(key, default)

    def as_dict(self) -> dict:
        return dict(self._values)

    def set(self, key: str, value) -> None:
        old = self.get(key)
        self._values[key] = value
        try:
            self._write(self._values)
        except OSError as exc:
            logger.warning("Could not save setting %s to %s: %s", key, self.settings_path, exc)
        if old != value:
            self._notify({key: (old, value)})

    def reload(self, notify: bool = True) -> dict:
        """Re-read the file. Returns the changed keys as {key: (old, new)}."""
        self._mtime = self._current_mtime()
        new_values = self._read()
        changes = {
            key: (self._values.get(key), new_values.get(key))
            for key in set(self._values) | set(new_values)
            if self._values.get(key) != new_values.get(key)
        }
        self._values = new_values
        if notify and changes:
            self._notify(changes)
        return changes

    def subscribe(self, callback) -> Subscription:
        self._subscribers.append(callback)

        def remove():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return Subscription(remove)

    def _notify(self, changes: dict) -> None:
        for callback in list(self._subscribers):
            try:
                callback(changes)
            except Exception:
                logger.exception("Settings subscriber failed")

    def changed_on_disk(self) -> bool:
        return self._current_mtime() != self._mtime

    async def _watch_loop(self, poll_interval: float) -> None:
        while True:
            await asyncio.sleep(poll_interval)
            if self.changed_on_disk():
                self.reload()

    def watch(self, poll_interval: float = 1.0):
        """Start polling the file for edits made by other processes."""
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.create_task(self._watch_loop(poll_interval))
        return self._watch_task

    async def stop_watching(self) -> None:
        if self._watch_task is None:
            return
        self._watch_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._watch_task
        self._watch_task = None
