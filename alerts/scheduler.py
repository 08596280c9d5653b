"""Grace period, debounce and log-verbosity bookkeeping for one session."""

from enum import Enum
from typing import Optional

GLOBAL_DEBOUNCE_KEY = "*"


class Decision(Enum):
    FIRE = "fire"
    SUPPRESS_GRACE = "suppress_grace"
    SUPPRESS_DEBOUNCE = "suppress_debounce"


class Phase(Enum):
    GRACE = "grace"
    VERBOSE = "verbose"
    QUIET = "quiet"


class AlertScheduler:
    """Decides whether a detected queue should alert.

    All times are epoch milliseconds. Alert gating (grace, debounce) and log
    verbosity (verbose, quiet) are derived independently from the session
    start; verbosity never changes a decision.
    """

    def __init__(
        self,
        grace_period_ms: int = 20000,
        debounce_ms: int = 30000,
        verbose_logging_ms: int = 60000,
        pulse_interval_ms: int = 300000,
        debounce_scope: str = "global",
    ):
        if debounce_scope not in ("global", "classification"):
            raise ValueError(f"Unknown debounce scope: {debounce_scope}")
        self.grace_period_ms = grace_period_ms
        self.debounce_ms = debounce_ms
        self.verbose_logging_ms = verbose_logging_ms
        self.pulse_interval_ms = pulse_interval_ms
        self.debounce_scope = debounce_scope

        self.session_start: Optional[int] = None
        self.last_alert_at: dict[str, int] = {}
        self.last_heartbeat_at: Optional[int] = None

    def reset(self, now: int) -> None:
        """Begin a new session at `now`."""
        self.session_start = now
        self.last_alert_at = {}
        self.last_heartbeat_at = now

    def _elapsed(self, now: int) -> int:
        if self.session_start is None:
            self.reset(now)
        return now - self.session_start

    def _debounce_key(self, classification: str) -> str:
        if self.debounce_scope == "classification":
            return classification
        return GLOBAL_DEBOUNCE_KEY

    def in_grace(self, now: int) -> bool:
        return self._elapsed(now) < self.grace_period_ms

    def is_verbose(self, now: int) -> bool:
        return self._elapsed(now) < self.verbose_logging_ms

    def phase(self, now: int) -> Phase:
        if self.in_grace(now):
            return Phase.GRACE
        if self.is_verbose(now):
            return Phase.VERBOSE
        return Phase.QUIET

    def evaluate(self, now: int, classification: str, match_text: str = "") -> Decision:
        """Gate one detected match; records the alert time when it fires."""
        if self.in_grace(now):
            return Decision.SUPPRESS_GRACE

        key = self._debounce_key(classification)
        last = self.last_alert_at.get(key)
        if last is not None and now - last < self.debounce_ms:
            return Decision.SUPPRESS_DEBOUNCE

        self.last_alert_at[key] = now
        return Decision.FIRE

    def heartbeat_due(self, now: int) -> bool:
        """True at most once per pulse interval, and only in the quiet phase."""
        if self.is_verbose(now):
            return False
        if self.last_heartbeat_at is not None and now - self.last_heartbeat_at < self.pulse_interval_ms:
            return False
        self.last_heartbeat_at = now
        return True
