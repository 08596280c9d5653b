"""Subscription handles and a small synchronous event hub.

Timers, listeners and store watchers all hand back a `Subscription`; owners
collect them in a `SubscriptionGroup` and cancel the lot on teardown.
"""

import logging
from typing import Callable, Optional

logger = logging.getLogger("queuekeeper.events")

# Interaction kinds that count as the user being present at the machine.
INTERACTION_KINDS = ("keypress", "click", "toast_activated")


class Subscription:
    """Cancellation handle. Cancelling twice is harmless."""

    def __init__(self, cancel: Optional[Callable[[], None]] = None):
        self._cancel = cancel
        self.cancelled = False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._cancel is not None:
            self._cancel()
            self._cancel = None


class SubscriptionGroup:
    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def __len__(self):
        return len(self._subscriptions)

    def add(self, subscription: Subscription) -> Subscription:
        self._subscriptions.append(subscription)
        return subscription

    def cancel_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.cancel()


class EventHub:
    """Dispatches named events to subscribed callbacks."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {}

    def listener_count(self, kind: Optional[str] = None) -> int:
        if kind is not None:
            return len(self._listeners.get(kind, []))
        return sum(len(callbacks) for callbacks in self._listeners.values())

    def subscribe(self, kind: str, callback: Callable, once: bool = False) -> Subscription:
        subscription = None

        def remove():
            callbacks = self._listeners.get(kind, [])
            if wrapper in callbacks:
                callbacks.remove(wrapper)

        def wrapper(event_kind, payload):
            if once:
                subscription.cancel()
            callback(event_kind, payload)

        self._listeners.setdefault(kind, []).append(wrapper)
        subscription = Subscription(remove)
        return subscription

    def dispatch(self, kind: str, payload=None) -> int:
        """Call every listener of `kind`. Returns the number of listeners called."""
        callbacks = list(self._listeners.get(kind, []))
        called = 0
        for callback in callbacks:
            # An earlier listener may have cancelled this one.
            if callback not in self._listeners.get(kind, []):
                continue
            called += 1
            try:
                callback(kind, payload)
            except Exception:
                logger.exception("Listener for %s failed", kind)
        return called
