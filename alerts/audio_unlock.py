"""Audio unlock state machine.

Alert sound can be blocked until someone is at the machine (locked session,
muted device, no audio focus). The first failed alert is kept pending and
replayed once a user interaction has brought the audio device back.

    LOCKED --alert plays--------------------> UNLOCKED
    LOCKED --interaction--> UNLOCKING --probe ok--> UNLOCKED (+ replay pending alert)
                            UNLOCKING --all probes fail--> LOCKED (re-armed)

UNLOCKED is terminal for the lifetime of the process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from alerts.audio import AudioBackend
from alerts.events import INTERACTION_KINDS, EventHub, Subscription, SubscriptionGroup
from alerts.notify import EventKind, NotificationSink, safe_emit, safe_log
from alerts.settings import as_flag

logger = logging.getLogger("queuekeeper.audio")

AUDIO_PERMISSION_KEY = "audioPermission"


class AudioState(Enum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class Attempt:
    name: str
    run: Callable[[], Awaitable[bool]]
    needs_unlock: bool = False


class AudioUnlocker:
    def __init__(
        self,
        backend: AudioBackend,
        settings=None,
        sink: Optional[NotificationSink] = None,
        interactions: Optional[EventHub] = None,
        replay_delay_ms: int = 200,
        grant_replay_delay_ms: int = 500,
        alert_volume: float = 0.7,
        interaction_kinds=INTERACTION_KINDS,
    ):
        self.backend = backend
        self.settings = settings
        self.sink = sink
        self.interactions = interactions or EventHub()
        self.replay_delay_ms = replay_delay_ms
        self.grant_replay_delay_ms = grant_replay_delay_ms
        self.interaction_kinds = tuple(interaction_kinds)

        self.state = AudioState.LOCKED
        self.pending_alert = False
        self.last_error: Optional[str] = None

        self._listeners = SubscriptionGroup()
        self._timers = SubscriptionGroup()
        self._tasks: set[asyncio.Task] = set()

        # Tried in order for every alert; the tone only once sound is known to work.
        self.alert_attempts = (
            Attempt("asset", lambda: backend.play_asset(volume=alert_volume)),
            Attempt("tone", lambda: backend.play_tone(volume=0.1), needs_unlock=True),
        )
        # Tried in order after a user interaction.
        self.unlock_probes = (
            Attempt("tone", lambda: backend.play_tone(volume=0.01, duration_ms=100)),
            Attempt("asset", lambda: backend.play_asset(volume=0.1)),
        )

    @property
    def unlocked(self) -> bool:
        return self.state is AudioState.UNLOCKED

    @property
    def armed(self) -> bool:
        return len(self._listeners) > 0

    def _log(self, message: str) -> None:
        safe_log(self.sink, message, logger)

    def _notify(self, kind, payload: dict) -> None:
        safe_emit(self.sink, kind, payload, logger)

    def _set_state(self, state: AudioState, reason: str) -> None:
        previous, self.state = self.state, state
        self._log(f"Audio {previous.value} -> {state.value}: {reason}")

    def _read_permission(self) -> bool:
        if self.settings is None:
            return False
        try:
            return as_flag(self.settings.get(AUDIO_PERMISSION_KEY, False), False, AUDIO_PERMISSION_KEY)
        except Exception as exc:
            logger.warning("Could not read stored audio permission: %s", exc)
            return False

    def _persist(self, granted: bool) -> None:
        if self.settings is None:
            return
        try:
            self.settings.set(AUDIO_PERMISSION_KEY, granted)
        except Exception as exc:
            logger.warning("Could not store audio permission: %s", exc)

    async def _attempt(self, name: str, run: Callable[[], Awaitable[bool]]) -> bool:
        try:
            ok = bool(await run())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.last_error = f"{name}: {exc}"
            logger.debug("Audio attempt %s raised", name, exc_info=True)
            return False
        if not ok:
            self.last_error = f"{name} failed"
        return ok

    def _spawn(self, coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    ## ---------------------------- Startup ---------------------------- ##
    async def initialize(self) -> AudioState:
        """Restore the stored permission, but only if the device really works."""
        if self.unlocked:
            return self.state
        if self._read_permission():
            if await self._attempt("verify", self.backend.is_active):
                self._set_state(AudioState.UNLOCKED, "stored permission verified")
                return self.state
            self._log("Stored audio permission is stale - audio device is not active")
            self._persist(False)
        else:
            self._log("No audio permission yet - interact with the watcher to enable sound")
        self._arm()
        return self.state

    ## ---------------------------- Alerts ---------------------------- ##
    def request_alert(self) -> asyncio.Task:
        """Start an alert attempt without waiting for it."""
        return self._spawn(self.play_alert())

    async def play_alert(self) -> bool:
        self._log("Attempting to play alert...")
        primary = self.alert_attempts[0]
        for attempt in self.alert_attempts:
            if attempt.needs_unlock and not self.unlocked:
                continue
            if not await self._attempt(attempt.name, attempt.run):
                self._log(f"Alert {attempt.name} failed, trying fallback")
                continue
            if attempt is primary:
                if not self.unlocked:
                    # A working alert proves the device is usable; nothing left to replay.
                    self.pending_alert = False
                    self._become_unlocked("alert played", replay=False)
                self._notify(EventKind.ALERT_PLAYED, {"success": True})
            else:
                self._notify(
                    EventKind.ALERT_PLAYED,
                    {"success": False, "error": self.last_error, "fallback": attempt.name},
                )
            return True

        if not self.unlocked:
            self.pending_alert = True
            self._log("Queuing alert - no audio permission yet")
            self._notify(
                EventKind.ALERT_QUEUED,
                {
                    "reason": "Audio is blocked - waiting for user interaction",
                    "instructions": "The alert will play after any interaction (key press or toast click)",
                },
            )
            self._arm()
            return False

        self._notify(EventKind.ALERT_PLAYED, {"success": False, "error": self.last_error, "fallback": None})
        return False

    ## ---------------------------- Unlocking ---------------------------- ##
    def _arm(self) -> None:
        """Listen once for any interaction kind; the first one disarms them all."""
        if self.state is not AudioState.LOCKED or self.armed:
            return
        for kind in self.interaction_kinds:
            self._listeners.add(self.interactions.subscribe(kind, self._on_interaction, once=True))
        self._log("Waiting for user interaction to unlock audio...")

    def _on_interaction(self, kind: str, payload=None) -> None:
        if self.state is not AudioState.LOCKED:
            return
        self._listeners.cancel_all()
        self._set_state(AudioState.UNLOCKING, f"user interaction detected: {kind}")
        self._spawn(self._unlock(kind))

    async def _unlock(self, interaction: str) -> bool:
        await self._attempt("activate", self.backend.activate)
        for probe in self.unlock_probes:
            ok = await self._attempt(probe.name, probe.run)
            if self.unlocked:
                # Granted from elsewhere while the probe was running.
                return True
            if ok:
                self._become_unlocked(f"{probe.name} probe succeeded after {interaction}")
                return True
            self._log(f"Audio {probe.name} probe failed: {self.last_error}")

        self._set_state(AudioState.LOCKED, "audio unlock failed")
        self._arm()
        return False

    def _become_unlocked(self, reason: str, replay: bool = True, delay_ms: Optional[int] = None) -> None:
        self._listeners.cancel_all()
        self._set_state(AudioState.UNLOCKED, reason)
        self._persist(True)
        if replay and self.pending_alert:
            self.pending_alert = False
            self._schedule_replay(self.replay_delay_ms if delay_ms is None else delay_ms)

    def _schedule_replay(self, delay_ms: int) -> None:
        self._log("Playing pending alert...")
        handle = asyncio.get_running_loop().call_later(delay_ms / 1000, self.request_alert)
        self._timers.add(Subscription(handle.cancel))

    def grant_permission(self, source: str = "settings") -> None:
        """Accept a permission grant made outside the watcher (e.g. --grant-audio)."""
        if self.unlocked:
            return
        self._spawn(self._attempt("activate", self.backend.activate))
        self._become_unlocked(f"permission granted via {source}", delay_ms=self.grant_replay_delay_ms)

    def on_settings_changed(self, changes: dict) -> None:
        change = changes.get(AUDIO_PERMISSION_KEY)
        if change is None:
            return
        _, new_value = change
        if as_flag(new_value, False, AUDIO_PERMISSION_KEY) and not self.unlocked:
            self.grant_permission("settings")

    async def close(self) -> None:
        self._listeners.cancel_all()
        self._timers.cancel_all()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
