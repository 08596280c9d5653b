"""Surveillance loop: fetch, find new messages, classify, gate, alert.

One `SurveillanceController` watches one channel. It owns the session state
(novelty watermark and alert scheduler) and is handed the shared pieces
(message source, audio unlocker, notification sink) by whoever builds it.
"""

from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from alerts.audio_unlock import AudioUnlocker
from alerts.classifier import ScanResult, classify_texts
from alerts.config import WatchConfig
from alerts.events import Subscription
from alerts.notify import EventKind, NotificationSink, detected_kind, safe_emit, safe_log
from alerts.scheduler import AlertScheduler, Decision, Phase
from alerts.settings import as_flag
from feed.novelty import NoveltyTracker
from feed.source import FetchError, MessageSource

logger = logging.getLogger("queuekeeper.surveillance")

ENABLED_KEY = "enabled"


def now_ms() -> int:
    return int(time.time() * 1000)


def _iso(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


@dataclass
class Detection:
    message_id: str
    result: ScanResult
    decision: Decision


@dataclass
class ScanReport:
    new_messages: int
    phase: Phase
    detections: list = field(default_factory=list)
    heartbeat: bool = False
    silent: bool = False

    @property
    def fired(self) -> list:
        return [d for d in self.detections if d.decision is Decision.FIRE]


class SurveillanceController:
    def __init__(
        self,
        source: MessageSource,
        config: WatchConfig,
        audio: AudioUnlocker,
        sink: Optional[NotificationSink] = None,
        clock: Callable[[], int] = now_ms,
        open_url: Callable[[str], object] = webbrowser.open,
    ):
        self.source = source
        self.audio = audio
        self.sink = sink
        self.clock = clock
        self.open_url = open_url
        self.tracker = NoveltyTracker()
        self.scheduler = AlertScheduler()
        self._task: Optional[asyncio.Task] = None
        self._seeded = False
        self._settings_subscription: Optional[Subscription] = None
        self.configure(config)

    @property
    def channel(self) -> str:
        return self.config.channel_label or getattr(self.source, "label", "channel")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def configure(self, config: WatchConfig) -> None:
        """Apply a (re)loaded config. Timings take effect on the next start()."""
        self.config = config
        self.classifier_config = config.classifier_config()
        self.scheduler.grace_period_ms = config.grace_period_ms
        self.scheduler.debounce_ms = config.debounce_ms
        self.scheduler.verbose_logging_ms = config.verbose_logging_ms
        self.scheduler.pulse_interval_ms = config.pulse_interval_ms
        self.scheduler.debounce_scope = config.debounce_scope

    def _log(self, message: str) -> None:
        safe_log(self.sink, f"[{self.channel}] {message}", logger)

    def _notify(self, kind, payload: dict) -> None:
        payload = dict(payload, channel=self.channel)
        safe_emit(self.sink, kind, payload, logger)

    ## ---------------------------- Lifecycle ---------------------------- ##
    def start(self) -> asyncio.Task:
        """(Re)start the loop. Any loop already running is cancelled first."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.tracker.reset()
        self.scheduler.reset(self.clock())
        self._seeded = False
        self._log("Starting surveillance...")
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self._log("Surveillance stopped")

    async def shutdown(self) -> None:
        """Stop the loop, drop the settings subscription and wait for the task."""
        self.unbind()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        await self._seed()
        self._notify(
            EventKind.SURVEILLANCE_ACTIVE,
            {"interval_ms": self.config.check_interval_ms, "timestamp": _iso(self.clock())},
        )
        self._log(f"Checking every {self.config.check_interval_ms / 1000:g} seconds for queue alerts")
        while True:
            await asyncio.sleep(self.config.check_interval_ms / 1000)
            await self.tick()

    async def _fetch(self):
        try:
            return await self.source.fetch()
        except FetchError as exc:
            logger.warning("%s", exc)
            return None

    async def _seed(self) -> None:
        candidates = await self._fetch()
        if candidates is None:
            self._log("Could not read existing messages yet, will retry on the next scan")
            return
        marked = self.tracker.initialize(candidates)
        self._seeded = True
        self._log(f"Marking {marked} existing messages as seen")

    async def tick(self) -> Optional[ScanReport]:
        """Run one scan.

        Returns None when the source could not be read; that tick produces no
        scan event and no heartbeat. A tick that completes a delayed seed
        reports an empty scan.
        """
        if not self._seeded:
            await self._seed()
            if not self._seeded:
                return None
            now = self.clock()
            report = ScanReport(new_messages=0, phase=self.scheduler.phase(now))
            report.silent = not self.scheduler.is_verbose(now)
            self._scan_complete(report, now)
            return report
        candidates = await self._fetch()
        if candidates is None:
            return None
        return self.process(candidates, self.clock())

    ## ---------------------------- Scanning ---------------------------- ##
    def _classify(self, payload) -> ScanResult:
        try:
            texts = self.source.extract_texts(payload)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.debug("Could not extract text from message payload", exc_info=True)
            texts = []
        return classify_texts(texts, self.classifier_config)

    def process(self, candidates, now: int) -> ScanReport:
        """Classify and gate the new messages among `candidates`."""
        new_messages = self.tracker.poll(candidates)
        verbose = self.scheduler.is_verbose(now)
        report = ScanReport(new_messages=len(new_messages), phase=self.scheduler.phase(now))

        if new_messages and verbose:
            self._log(f"Found {len(new_messages)} new message(s)")

        for message_id, payload in new_messages:
            result = self._classify(payload)
            if not result.found:
                continue
            decision = self.scheduler.evaluate(now, result.classification, result.matched_text)
            report.detections.append(Detection(message_id, result, decision))

            if decision is Decision.FIRE or verbose:
                self._log(f"{result.classification} QUEUE DETECTED ({decision.value})")
                self._log(f"Text preview: {result.matched_text}...")
                self._notify(
                    detected_kind(result.classification),
                    {
                        "message_id": message_id,
                        "type": result.classification,
                        "decision": decision.value,
                        "url": result.url,
                        "text": result.matched_text,
                        "timestamp": _iso(now),
                    },
                )
            if decision is Decision.FIRE:
                self._fire(result)

        if not new_messages and verbose:
            self._log("Scanning... no new messages")
        if not verbose:
            report.heartbeat = self.scheduler.heartbeat_due(now)
            if report.heartbeat:
                self._log("Heartbeat - surveillance still active")

        report.silent = not verbose and not report.fired and not report.heartbeat
        self._scan_complete(report, now)
        return report

    def _scan_complete(self, report: ScanReport, now: int) -> None:
        self._notify(
            EventKind.SCAN_COMPLETE,
            {
                "new_messages": report.new_messages,
                "silent": report.silent,
                "phase": report.phase.value,
                "timestamp": _iso(now),
            },
        )

    def _fire(self, result: ScanResult) -> None:
        self.audio.request_alert()
        if self.config.auto_open and result.url:
            try:
                self.open_url(result.url)
            except webbrowser.Error as exc:
                logger.warning("Could not open %s: %s", result.url, exc)

    ## ---------------------------- Enable flag ---------------------------- ##
    def bind(self, settings) -> None:
        """Follow the `enabled` setting: start or stop now and on every change."""
        self.unbind()
        self._settings_subscription = settings.subscribe(self._on_settings_changed)
        try:
            enabled = as_flag(settings.get(ENABLED_KEY, True), True, ENABLED_KEY)
        except Exception as exc:
            logger.warning("Could not read the enabled flag, assuming enabled: %s", exc)
            enabled = True
        self._apply_enabled(enabled)

    def unbind(self) -> None:
        if self._settings_subscription is not None:
            self._settings_subscription.cancel()
            self._settings_subscription = None

    def _on_settings_changed(self, changes: dict) -> None:
        change = changes.get(ENABLED_KEY)
        if change is None:
            return
        old_value, new_value = change
        enabled = as_flag(new_value, True, ENABLED_KEY)
        # "true" -> true is no change once both are read as flags.
        if enabled == as_flag(old_value, True, ENABLED_KEY):
            return
        self._apply_enabled(enabled)

    def _apply_enabled(self, enabled: bool) -> None:
        self._log(f"Watcher enabled: {enabled}")
        if enabled:
            self.start()
            self._notify(EventKind.EXTENSION_ENABLED, {})
        else:
            self.stop()
            self._notify(EventKind.EXTENSION_DISABLED, {})
