"""Notification sinks: where status events and log lines end up.

The watcher core only ever calls `emit(kind, payload)` and `log(message)`.
What gets rendered (log file, console, Windows toast) is up to the sink.
"""

from __future__ import annotations

import logging
from enum import Enum


class EventKind(str, Enum):
    SURVEILLANCE_ACTIVE = "SURVEILLANCE_ACTIVE"
    SCAN_COMPLETE = "SCAN_COMPLETE"
    ALERT_PLAYED = "ALERT_PLAYED"
    ALERT_QUEUED = "ALERT_QUEUED"
    EXTENSION_ENABLED = "EXTENSION_ENABLED"
    EXTENSION_DISABLED = "EXTENSION_DISABLED"


DETECTED_SUFFIX = "_DETECTED"


def detected_kind(classification: str) -> str:
    """Event kind for a detected queue, e.g. "COSTCO_DETECTED"."""
    return f"{classification}{DETECTED_SUFFIX}"


def is_detected_kind(kind) -> bool:
    return str(kind).endswith(DETECTED_SUFFIX)


def kind_name(kind) -> str:
    return kind.value if isinstance(kind, EventKind) else str(kind)


class NotificationSink:
    def emit(self, kind, payload: dict | None = None) -> None:
        raise NotImplementedError

    def log(self, message: str) -> None:
        raise NotImplementedError


class LoggingSink(NotificationSink):
    """Renders every event as one log line."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log(self, message: str) -> None:
        self.logger.info(message)

    def emit(self, kind, payload: dict | None = None) -> None:
        payload = payload or {}
        name = kind_name(kind)
        channel = payload.get("channel", "unknown")

        if name == EventKind.SCAN_COMPLETE.value:
            # Quiet-phase scans with nothing to report stay out of the log.
            if not payload.get("silent"):
                self.logger.debug("[%s] Scan complete: %s new message(s)", channel, payload.get("new_messages", 0))
            return
        if name == EventKind.SURVEILLANCE_ACTIVE.value:
            self.logger.info("SURVEILLANCE ACTIVE on %s", channel)
        elif name == EventKind.ALERT_PLAYED.value:
            if payload.get("success"):
                self.logger.info("Alert played")
            else:
                self.logger.warning(
                    "Alert played with fallback %s (error: %s)",
                    payload.get("fallback", "none"),
                    payload.get("error", "unknown"),
                )
        elif name == EventKind.ALERT_QUEUED.value:
            self.logger.warning("Alert queued - %s. %s", payload.get("reason"), payload.get("instructions", ""))
        elif name == EventKind.EXTENSION_ENABLED.value:
            self.logger.info("Watcher enabled on %s", channel)
        elif name == EventKind.EXTENSION_DISABLED.value:
            self.logger.info("Watcher disabled on %s", channel)
        elif is_detected_kind(name):
            decision = payload.get("decision", "fire")
            if decision == "fire":
                self.logger.warning(
                    "%s QUEUE detected on %s (message %s)",
                    payload.get("type", name),
                    channel,
                    payload.get("message_id"),
                )
            else:
                self.logger.info(
                    "%s queue match suppressed (%s), message %s",
                    payload.get("type", name),
                    decision,
                    payload.get("message_id"),
                )
        else:
            self.logger.info("Unknown event %s: %s", name, payload)


class FanoutSink(NotificationSink):
    """Delivers to several sinks; one failing sink does not starve the others."""

    def __init__(self, *sinks: NotificationSink, logger: logging.Logger | None = None):
        self.sinks = list(sinks)
        self.logger = logger or logging.getLogger("queuekeeper.notify")

    def add(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def emit(self, kind, payload: dict | None = None) -> None:
        for sink in self.sinks:
            try:
                sink.emit(kind, payload)
            except Exception:
                self.logger.debug("Sink %r failed to handle %s", sink, kind_name(kind), exc_info=True)

    def log(self, message: str) -> None:
        for sink in self.sinks:
            try:
                sink.log(message)
            except Exception:
                self.logger.debug("Sink %r failed to log", sink, exc_info=True)


def safe_emit(sink: NotificationSink | None, kind, payload: dict | None, logger: logging.Logger) -> None:
    """Emit to `sink`, swallowing its failures. Observability never breaks a scan."""
    if sink is None:
        return
    try:
        sink.emit(kind, payload or {})
    except Exception:
        logger.debug("Notification sink failed to handle %s", kind_name(kind), exc_info=True)


def safe_log(sink: NotificationSink | None, message: str, logger: logging.Logger) -> None:
    if sink is None:
        logger.info(message)
        return
    try:
        sink.log(message)
    except Exception:
        logger.debug("Notification sink failed to log %r", message, exc_info=True)
