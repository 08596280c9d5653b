"""Blocking Discord REST lookups used at startup and by the CLI."""

import requests

from feed.discord import API_BASE, build_auth_header


def fetch_endpoint(path: str, token: str, token_type: str = "bot", api_base: str = API_BASE, timeout: float = 10.0):
    '''
    Performs one GET against the Discord API.

    :param path: Path below the API base, e.g. "/channels/123".
    :param token: Bot or user token.
    :return: The decoded JSON body.
    :raises requests.HTTPError: when Discord answers with an error status.
    '''
    response = requests.get(
        f"{api_base.rstrip('/')}{path}",
        headers={"Authorization": build_auth_header(token, token_type)},
        timeout=timeout,
    )
    response.raise_for_status()
    return response.json()


def get_channel(channel_id, token: str, token_type: str = "bot") -> dict:
    return fetch_endpoint(f"/channels/{channel_id}", token, token_type)


def describe_channel(channel_id, token: str, token_type: str = "bot") -> str:
    """Return a readable label such as "#pokemon-alerts" for a channel id.

    Falls back to the bare id when the lookup fails, so callers can use the
    result for log output without further checks.
    """
    try:
        channel = get_channel(channel_id, token, token_type)
    except (requests.RequestException, ValueError):
        return f"channel {channel_id}"
    name = channel.get("name") if isinstance(channel, dict) else None
    if not name:
        return f"channel {channel_id}"
    return f"#{name}"
