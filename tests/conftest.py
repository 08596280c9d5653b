"""
tests/conftest.py
Shared fakes: message source, audio backend, notification sink, settings.
No network, no sound device, no real Discord data.
"""

import asyncio

import pytest

from alerts.audio import AudioBackend
from alerts.events import Subscription
from alerts.notify import NotificationSink, kind_name
from feed.source import FetchError, MessageSource


def discord_message(message_id, description=None, content=""):
    embeds = [{"description": description}] if description is not None else []
    return {"id": str(message_id), "content": content, "embeds": embeds}


class FakeSource(MessageSource):
    label = "#test-alerts"

    def __init__(self, messages=None):
        self.messages = list(messages or [])
        self.failures = 0
        self.fetch_count = 0

    def add(self, message):
        self.messages.append(message)

    async def fetch(self):
        self.fetch_count += 1
        if self.failures > 0:
            self.failures -= 1
            raise FetchError("channel unreachable")
        return [(message["id"], message) for message in self.messages]


class FakeAudioBackend(AudioBackend):
    """Each result is a bool, an exception to raise, or a list consumed in order."""

    def __init__(self, asset=True, tone=True, active=True):
        self.results = {"asset": asset, "tone": tone, "active": active}
        self.calls = []

    def _next(self, name):
        result = self.results[name]
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def play_asset(self, volume=0.7):
        self.calls.append(("asset", volume))
        return self._next("asset")

    async def play_tone(self, volume=0.1, frequency=800, duration_ms=200):
        self.calls.append(("tone", volume))
        return self._next("tone")

    async def is_active(self):
        self.calls.append(("active", None))
        return self._next("active")

    def count(self, name, volume=None):
        return sum(
            1 for call, call_volume in self.calls
            if call == name and (volume is None or call_volume == volume)
        )


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []
        self.lines = []

    def emit(self, kind, payload=None):
        self.events.append((kind_name(kind), payload or {}))

    def log(self, message):
        self.lines.append(message)

    def kinds(self):
        return [kind for kind, _ in self.events]

    def payloads(self, kind):
        return [payload for event_kind, payload in self.events if event_kind == kind]


class BrokenSink(NotificationSink):
    def emit(self, kind, payload=None):
        raise ConnectionError("sink unreachable")

    def log(self, message):
        raise ConnectionError("sink unreachable")


class MemorySettings:
    def __init__(self, **values):
        self.values = {"enabled": True, "audioPermission": False}
        self.values.update(values)
        self.subscribers = []

    def get(self, key, default=None):
        return self.values.get(key, default)

    def set(self, key, value):
        old = self.values.get(key)
        self.values[key] = value
        if old != value:
            for callback in list(self.subscribers):
                callback({key: (old, value)})

    def subscribe(self, callback):
        self.subscribers.append(callback)
        return Subscription(lambda: self.subscribers.remove(callback))


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


async def settle(unlocker, rounds=5):
    """Let spawned audio tasks and replay timers run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0.01)
        pending = [task for task in unlocker._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def settings():
    return MemorySettings()
