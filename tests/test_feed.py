"""
tests/test_feed.py
Message sources: JSON replay file, Discord REST poller and channel lookup.
No network: aiohttp and requests are replaced with stubs.
"""

import json

import aiohttp
import pytest
import requests

from feed import discord_api
from feed.discord import DiscordChannelSource, build_auth_header
from feed.source import FetchError, JsonFileMessageSource
from conftest import discord_message


@pytest.mark.asyncio
async def test_replay_file_source_reads_messages(tmp_path):
    path = tmp_path / "messages.json"
    path.write_text(
        json.dumps([discord_message(1, "costco queue"), {"content": "no id"}, discord_message(2)]),
        encoding="utf-8",
    )
    source = JsonFileMessageSource(path)
    fetched = await source.fetch()
    assert [external_id for external_id, _ in fetched] == ["1", "2"]
    assert source.extract_texts(fetched[0][1]) == ["costco queue"]


@pytest.mark.asyncio
async def test_replay_file_source_raises_fetch_error(tmp_path):
    source = JsonFileMessageSource(tmp_path / "missing.json")
    with pytest.raises(FetchError):
        await source.fetch()

    path = tmp_path / "object.json"
    path.write_text("{}", encoding="utf-8")
    with pytest.raises(FetchError):
        await JsonFileMessageSource(path).fetch()


class _StubResponse:
    def __init__(self, status, body):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class _StubSession:
    def __init__(self, status=200, body="[]", error=None):
        self.status = status
        self.body = body
        self.error = error
        self.closed = False
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        if self.error is not None:
            raise self.error
        return _StubResponse(self.status, self.body)

    async def close(self):
        self.closed = True


def _source_with(session):
    source = DiscordChannelSource("42", "token", limit=500)
    source._session = session
    return source


def test_auth_header():
    assert build_auth_header("abc") == "Bot abc"
    assert build_auth_header("abc", "user") == "abc"


@pytest.mark.asyncio
async def test_discord_source_parses_messages():
    body = json.dumps([discord_message(20, "costco queue"), discord_message(19), {"no": "id"}])
    session = _StubSession(body=body)
    source = _source_with(session)
    fetched = await source.fetch()
    assert [external_id for external_id, _ in fetched] == ["20", "19"]
    assert session.requests == [("https://discord.com/api/v10/channels/42/messages", {"limit": "100"})]
    await source.close()
    assert session.closed


@pytest.mark.asyncio
@pytest.mark.parametrize("status, body", [(401, "{}"), (500, "oops"), (200, "{\"message\": \"x\"}")])
async def test_discord_source_errors_become_fetch_errors(status, body):
    source = _source_with(_StubSession(status=status, body=body))
    with pytest.raises(FetchError):
        await source.fetch()


@pytest.mark.asyncio
async def test_discord_source_network_error():
    source = _source_with(_StubSession(error=aiohttp.ClientConnectionError("down")))
    with pytest.raises(FetchError):
        await source.fetch()


@pytest.mark.asyncio
async def test_discord_source_backs_off_when_rate_limited():
    session = _StubSession(status=429, body=json.dumps({"retry_after": 60}))
    source = _source_with(session)
    with pytest.raises(FetchError):
        await source.fetch()
    with pytest.raises(FetchError):
        await source.fetch()
    # The second call never reached the API.
    assert len(session.requests) == 1


class _StubRequestsResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        return self.payload


def test_describe_channel(monkeypatch):
    calls = []

    def fake_get(url, headers=None, timeout=None):
        calls.append((url, headers))
        return _StubRequestsResponse({"id": "42", "name": "pokemon-alerts"})

    monkeypatch.setattr(discord_api.requests, "get", fake_get)
    assert discord_api.describe_channel("42", "token") == "#pokemon-alerts"
    assert calls == [("https://discord.com/api/v10/channels/42", {"Authorization": "Bot token"})]


def test_describe_channel_falls_back_on_errors(monkeypatch):
    monkeypatch.setattr(
        discord_api.requests,
        "get",
        lambda url, headers=None, timeout=None: _StubRequestsResponse({}, status=403),
    )
    assert discord_api.describe_channel("42", "token") == "channel 42"

    def unreachable(url, headers=None, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(discord_api.requests, "get", unreachable)
    assert discord_api.describe_channel("42", "token") == "channel 42"
