"""Windows toast notification sink.

Detections and queued alerts are shown as toasts. Clicking or dismissing a
toast counts as user interaction, which is what unlocks blocked audio.
Toasts are shown one at a time from an asyncio queue worker so the scan
loop never waits on the toast API.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from functools import partial
from pathlib import Path

from windows_toasts import (
    InteractableWindowsToaster,
    Toast,
    ToastActivatedEventArgs,
    ToastAudio,
    ToastDismissedEventArgs,
    ToastDisplayImage,
    ToastDuration,
    ToastFailedEventArgs,
    ToastImagePosition,
)

from alerts.events import EventHub
from alerts.notify import EventKind, NotificationSink, is_detected_kind, kind_name

BANNER_PATH = Path(__file__).resolve().parent / "assets" / "banner.png"

DISMISSAL_REASONS = {
    0: "UserCanceled",
    1: "ApplicationHidden",
    2: "TimedOut",
}


def log_toast_activation(activated_event_args: ToastActivatedEventArgs, logger, dispatch) -> None:
    """Log one toast click and report it as a user interaction."""
    logger.info("Toast activated (arguments: %s)", activated_event_args.arguments)
    dispatch("toast_activated")


def log_toast_dismissal(dismissed_event_args: ToastDismissedEventArgs, logger, dispatch) -> None:
    """Log one toast dismissal; a user closing it is an interaction too."""
    reason = dismissed_event_args.reason
    reason_value = int(reason)
    reason_name = DISMISSAL_REASONS.get(reason_value, str(reason))
    logger.info("Toast dismissed reason: %s (%s)", reason_name, reason_value)
    if reason_value == 0:
        dispatch("click")


def log_toast_failure(failed_event_args: ToastFailedEventArgs, logger) -> None:
    """Log one toast failure event."""
    logger.error("Toast failed: %s", failed_event_args.reason)


class ToastSink(NotificationSink):
    def __init__(
        self,
        interactions: EventHub,
        logger: logging.Logger,
        app_name: str = "QueueKeeper",
        banner_path: Path = BANNER_PATH,
    ):
        self.interactions = interactions
        self.logger = logger
        self.banner_path = Path(banner_path)
        self.toaster = InteractableWindowsToaster(app_name)
        self.toast_queue = asyncio.Queue()
        self._loop = None
        self._worker_task = None

    def start(self):
        """Start the queue worker if it is not already running."""
        self._loop = asyncio.get_running_loop()
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self._toast_queue_worker())
        return self._worker_task

    async def stop(self) -> None:
        """Stop the queue worker."""
        if self._worker_task is None:
            return
        self._worker_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._worker_task
        self._worker_task = None

    def _dispatch_interaction(self, kind: str) -> None:
        # Toast callbacks arrive on a WinRT thread; hop back onto the event loop.
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.interactions.dispatch, kind)

    def log(self, message: str) -> None:
        return None

    def emit(self, kind, payload: dict | None = None) -> None:
        payload = payload or {}
        name = kind_name(kind)
        if is_detected_kind(name) and payload.get("decision") == "fire":
            self.toast_queue.put_nowait(self._build_queue_toast(payload))
        elif name == EventKind.ALERT_QUEUED.value:
            self.toast_queue.put_nowait(self._build_unlock_toast(payload))

    def _new_toast(self, title: str) -> Toast:
        toast = Toast(title)
        toast.on_activated = partial(log_toast_activation, logger=self.logger, dispatch=self._dispatch_interaction)
        toast.on_dismissed = partial(log_toast_dismissal, logger=self.logger, dispatch=self._dispatch_interaction)
        toast.on_failed = partial(log_toast_failure, logger=self.logger)
        # The alert sound is played by the audio backend, not by the toast.
        toast.audio = ToastAudio(silent=True)
        if self.banner_path.exists():
            toast.AddImage(ToastDisplayImage.fromPath(str(self.banner_path), position=ToastImagePosition.Hero))
        return toast

    def _build_queue_toast(self, payload: dict) -> Toast:
        queue_type = str(payload.get("type", "QUEUE")).replace("_", " ").title()
        toast = self._new_toast("Queue Alert")
        toast.duration = ToastDuration.Long
        toast.text_fields = [
            f"{queue_type} queue is live!",
            f"{payload.get('text', '')[:80]}",
            f"Seen in {payload.get('channel', 'channel')} at {time.strftime('%H:%M:%S')}",
        ]
        url = payload.get("url")
        if url:
            toast.launch_action = url
            self.logger.info("Toast launch action configured: %s", url)
        return toast

    def _build_unlock_toast(self, payload: dict) -> Toast:
        toast = self._new_toast("Queue Alert - sound blocked")
        toast.duration = ToastDuration.Long
        toast.text_fields = [
            payload.get("reason", "Audio is blocked"),
            "Click this notification to enable sound and hear the alert.",
        ]
        return toast

    async def _toast_queue_worker(self) -> None:
        while True:
            toast = await self.toast_queue.get()
            try:
                self.toaster.show_toast(toast)
            except Exception:
                self.logger.exception("Could not show toast")
            finally:
                self.toast_queue.task_done()
