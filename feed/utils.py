"""Small shared helpers for parsing message identifiers and payloads."""

import re
from typing import Optional

_DIGITS = re.compile(r"\d+", re.ASCII)

# Discord epoch (2015-01-01T00:00:00Z) in milliseconds.
DISCORD_EPOCH_MS = 1420070400000


def parse_message_id(external_id, prefix: str = "") -> Optional[int]:
    """Parse an external message id into an int, or None if it is not one of ours."""
    if external_id is None:
        return None
    raw = str(external_id).strip()
    if prefix:
        if not raw.startswith(prefix):
            return None
        raw = raw[len(prefix):]
    if not _DIGITS.fullmatch(raw):
        return None
    return int(raw)


def snowflake_timestamp_ms(message_id: int) -> int:
    """Return the creation time (epoch ms) encoded in a Discord snowflake."""
    return (message_id >> 22) + DISCORD_EPOCH_MS


def extract_message_texts(message) -> list[str]:
    """Extract the searchable text blocks from a Discord message payload.

    Queue bots post their announcements as embeds, so every embed description
    is returned first (in order), followed by the plain message content.
    """
    if not isinstance(message, dict):
        return []
    texts = []
    for embed in message.get("embeds") or []:
        if not isinstance(embed, dict):
            continue
        description = embed.get("description")
        if description:
            texts.append(str(description))
    content = message.get("content")
    if content:
        texts.append(str(content))
    return texts
