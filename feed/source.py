"""Message source interface and a file backed replay source."""

import json
import logging
from pathlib import Path
from typing import Any

from feed.utils import extract_message_texts

logger = logging.getLogger("queuekeeper.feed")


class FetchError(Exception):
    """The message source could not be read this time; try again next tick."""


class MessageSource:
    """Enumerates the messages currently present in one channel.

    `fetch` returns (external_id, payload) pairs. `extract_texts` turns one
    payload into the text blocks the classifier looks at. A fetch that cannot
    reach the channel raises `FetchError` rather than returning an empty list,
    so callers can tell an outage from a quiet channel.
    """

    label = "channel"

    async def fetch(self) -> list[tuple[str, Any]]:
        raise NotImplementedError

    def extract_texts(self, payload) -> list[str]:
        return extract_message_texts(payload)

    async def close(self) -> None:
        return None


class JsonFileMessageSource(MessageSource):
    """Reads Discord-shaped message objects from a JSON file on every fetch.

    The file holds a list of objects with at least an "id". Appending to the
    file while the watcher runs simulates new messages arriving.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.label = self.path.name

    async def fetch(self) -> list[tuple[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as exc:
            raise FetchError(f"Replay file not found: {self.path}") from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise FetchError(f"Could not read replay file {self.path}: {exc}") from exc

        if not isinstance(raw, list):
            raise FetchError(f"Replay file {self.path} must contain a list of messages.")

        return [
            (str(message.get("id")), message)
            for message in raw
            if isinstance(message, dict) and message.get("id") is not None
        ]
