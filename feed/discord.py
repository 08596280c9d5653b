"""Async Discord channel poller used as the live message source."""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from feed.source import FetchError, MessageSource

logger = logging.getLogger("queuekeeper.feed.discord")

API_BASE = "https://discord.com/api/v10"


def build_auth_header(token: str, token_type: str = "bot") -> str:
    if token_type.lower() == "bot":
        return f"Bot {token}"
    return token


def _decode_messages(body: str) -> Optional[list]:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return None
    if isinstance(payload, list):
        return payload
    return None


class DiscordChannelSource(MessageSource):
    """Polls the most recent messages of one channel over the REST API."""

    def __init__(
        self,
        channel_id: str,
        token: str,
        token_type: str = "bot",
        limit: int = 50,
        api_base: str = API_BASE,
        timeout: float = 10.0,    # Seconds before one fetch is abandoned
        label: Optional[str] = None,
    ):
        self.channel_id = str(channel_id)
        self.token = token
        self.token_type = token_type
        self.limit = max(1, min(int(limit), 100))
        self.api_base = api_base.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.label = label or f"channel {self.channel_id}"
        self._session: Optional[aiohttp.ClientSession] = None
        self._blocked_until = 0.0

    @property
    def url(self) -> str:
        return f"{self.api_base}/channels/{self.channel_id}/messages"

    def _headers(self) -> dict:
        return {
            "Authorization": build_auth_header(self.token, self.token_type),
            "User-Agent": "DiscordBot (QueueKeeper, 1.0)",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self._headers())
        return self._session

    async def fetch(self) -> list[tuple[str, Any]]:
        if time.monotonic() < self._blocked_until:
            raise FetchError(f"Still rate limited on {self.label}")

        session = await self._get_session()
        try:
            async with session.get(self.url, params={"limit": str(self.limit)}) as response:
                body = await response.text()
                if response.status == 429:
                    self._handle_rate_limit(body)
                    raise FetchError(f"Rate limited on {self.label}")
                if response.status in (401, 403):
                    logger.error("Discord refused access to %s (HTTP %s)", self.label, response.status)
                    raise FetchError(f"Access denied to {self.label}")
                if response.status != 200:
                    raise FetchError(f"Unexpected HTTP {response.status} while reading {self.label}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise FetchError(f"Failed to fetch messages for {self.label}: {exc}") from exc

        messages = _decode_messages(body)
        if messages is None:
            raise FetchError(f"Discord returned a non-list payload for {self.label}")
        return [
            (str(message.get("id")), message)
            for message in messages
            if isinstance(message, dict) and message.get("id") is not None
        ]

    def _handle_rate_limit(self, body: str) -> None:
        retry_after = 1.0
        try:
            retry_after = float(json.loads(body).get("retry_after", retry_after))
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError):
            pass
        self._blocked_until = time.monotonic() + retry_after
        logger.warning("Rate limited on %s, backing off for %.1fs", self.label, retry_after)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
