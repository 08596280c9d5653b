"""Watermark based novelty tracking for channel messages."""

from typing import Any, Iterable, Optional

from feed.utils import parse_message_id


class NoveltyTracker:
    """Returns only the messages newer than everything already seen.

    The watermark is the highest message id observed in this session. It only
    ever moves forward, so re-polling an unchanged channel yields nothing.
    """

    def __init__(self, id_prefix: str = ""):
        self.id_prefix = id_prefix
        self.watermark: Optional[int] = None

    def __repr__(self):
        return f"NoveltyTracker(watermark={self.watermark})"

    def reset(self) -> None:
        self.watermark = None

    def _parse_candidates(self, candidates: Iterable[tuple[str, Any]]):
        parsed = []
        for external_id, payload in candidates:
            message_id = parse_message_id(external_id, prefix=self.id_prefix)
            if message_id is None:
                continue
            parsed.append((message_id, external_id, payload))
        return parsed

    def _advance(self, message_ids) -> None:
        if not message_ids:
            return
        batch_max = max(message_ids)
        if self.watermark is None or batch_max > self.watermark:
            self.watermark = batch_max

    def initialize(self, candidates: Iterable[tuple[str, Any]]) -> int:
        """Mark everything currently present as seen. Returns how many were marked."""
        parsed = self._parse_candidates(candidates)
        self._advance([message_id for message_id, _, _ in parsed])
        return len(parsed)

    def poll(self, candidates: Iterable[tuple[str, Any]]) -> list[tuple[str, Any]]:
        """Return the (external_id, payload) pairs newer than the watermark, oldest first."""
        parsed = self._parse_candidates(candidates)
        fresh = [
            item
            for item in parsed
            if self.watermark is None or item[0] > self.watermark
        ]
        fresh.sort(key=lambda item: item[0])
        self._advance([message_id for message_id, _, _ in parsed])
        return [(external_id, payload) for _, external_id, payload in fresh]
