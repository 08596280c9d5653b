"""
tests/test_audio_unlock.py
Audio unlock state machine: stored permission, queued alerts, interaction
unlock with probe fallback, and replay of the pending alert.
"""

import pytest

from alerts.audio_unlock import AudioState, AudioUnlocker
from alerts.events import INTERACTION_KINDS, EventHub
from conftest import BrokenSink, FakeAudioBackend, MemorySettings, settle


def _unlocker(backend, settings=None, sink=None, hub=None):
    return AudioUnlocker(
        backend,
        settings=settings if settings is not None else MemorySettings(),
        sink=sink,
        interactions=hub or EventHub(),
        replay_delay_ms=0,
        grant_replay_delay_ms=0,
    )


@pytest.mark.asyncio
async def test_initialize_without_permission_arms_listeners(sink):
    hub = EventHub()
    unlocker = _unlocker(FakeAudioBackend(), sink=sink, hub=hub)
    assert await unlocker.initialize() is AudioState.LOCKED
    assert unlocker.armed
    assert hub.listener_count() == len(INTERACTION_KINDS)


@pytest.mark.asyncio
async def test_initialize_trusts_permission_only_when_device_is_active():
    settings = MemorySettings(audioPermission=True)
    unlocker = _unlocker(FakeAudioBackend(active=True), settings=settings)
    assert await unlocker.initialize() is AudioState.UNLOCKED
    assert not unlocker.armed
    assert settings.values["audioPermission"] is True


@pytest.mark.asyncio
async def test_stale_permission_is_cleared():
    settings = MemorySettings(audioPermission=True)
    unlocker = _unlocker(FakeAudioBackend(active=False), settings=settings)
    assert await unlocker.initialize() is AudioState.LOCKED
    assert settings.values["audioPermission"] is False
    assert unlocker.armed


@pytest.mark.asyncio
async def test_verification_error_counts_as_inactive():
    settings = MemorySettings(audioPermission=True)
    unlocker = _unlocker(FakeAudioBackend(active=OSError("no device")), settings=settings)
    assert await unlocker.initialize() is AudioState.LOCKED
    assert settings.values["audioPermission"] is False


@pytest.mark.asyncio
async def test_blocked_alert_is_queued_not_raised(sink):
    backend = FakeAudioBackend(asset=False)
    settings = MemorySettings()
    unlocker = _unlocker(backend, settings=settings, sink=sink)

    assert await unlocker.play_alert() is False
    assert unlocker.state is AudioState.LOCKED
    assert unlocker.pending_alert
    assert unlocker.armed
    assert sink.kinds() == ["ALERT_QUEUED"]
    # The tone fallback is only used once sound is known to work.
    assert backend.count("tone") == 0
    assert settings.values["audioPermission"] is False


@pytest.mark.asyncio
async def test_alert_exception_is_treated_as_failure(sink):
    unlocker = _unlocker(FakeAudioBackend(asset=RuntimeError("autoplay blocked")), sink=sink)
    assert await unlocker.play_alert() is False
    assert unlocker.pending_alert
    assert "autoplay blocked" in unlocker.last_error


@pytest.mark.asyncio
async def test_successful_alert_unlocks_and_persists(sink):
    settings = MemorySettings()
    unlocker = _unlocker(FakeAudioBackend(asset=True), settings=settings, sink=sink)
    await unlocker.initialize()

    assert await unlocker.play_alert() is True
    assert unlocker.state is AudioState.UNLOCKED
    assert not unlocker.armed
    assert settings.values["audioPermission"] is True
    assert sink.payloads("ALERT_PLAYED") == [{"success": True}]


@pytest.mark.asyncio
async def test_interaction_unlocks_and_replays_pending_alert_once(sink):
    hub = EventHub()
    backend = FakeAudioBackend(asset=[False, True], tone=True)
    settings = MemorySettings()
    unlocker = _unlocker(backend, settings=settings, sink=sink, hub=hub)
    await unlocker.initialize()
    await unlocker.play_alert()
    assert unlocker.pending_alert

    hub.dispatch("keypress")
    # Every one-shot listener is torn down by the first interaction.
    assert hub.listener_count() == 0
    assert unlocker.state is AudioState.UNLOCKING

    await settle(unlocker)
    assert unlocker.state is AudioState.UNLOCKED
    assert not unlocker.pending_alert
    assert settings.values["audioPermission"] is True
    assert backend.count("asset", volume=0.7) == 2
    assert sink.payloads("ALERT_PLAYED") == [{"success": True}]

    hub.dispatch("click")
    await settle(unlocker)
    assert backend.count("asset", volume=0.7) == 2


@pytest.mark.asyncio
async def test_unlock_without_pending_alert_plays_nothing(sink):
    hub = EventHub()
    backend = FakeAudioBackend(asset=True, tone=True)
    unlocker = _unlocker(backend, sink=sink, hub=hub)
    await unlocker.initialize()

    hub.dispatch("toast_activated")
    await settle(unlocker)
    assert unlocker.unlocked
    assert backend.count("asset", volume=0.7) == 0
    assert "ALERT_PLAYED" not in sink.kinds()


@pytest.mark.asyncio
async def test_secondary_probe_is_tried_when_tone_fails():
    hub = EventHub()
    backend = FakeAudioBackend(asset=[False, True], tone=False)
    unlocker = _unlocker(backend, hub=hub)
    await unlocker.initialize()
    await unlocker.play_alert()

    hub.dispatch("click")
    await settle(unlocker)
    assert unlocker.unlocked
    assert backend.count("tone", volume=0.01) == 1
    assert backend.count("asset", volume=0.1) == 1


@pytest.mark.asyncio
async def test_failed_unlock_keeps_alert_pending_and_rearms():
    hub = EventHub()
    backend = FakeAudioBackend(asset=False, tone=False)
    unlocker = _unlocker(backend, hub=hub)
    await unlocker.initialize()
    await unlocker.play_alert()

    hub.dispatch("keypress")
    await settle(unlocker)
    assert unlocker.state is AudioState.LOCKED
    assert unlocker.pending_alert
    assert hub.listener_count() == len(INTERACTION_KINDS)

    # Next interaction succeeds and the deferred alert finally plays.
    backend.results.update(asset=True, tone=True)
    hub.dispatch("keypress")
    await settle(unlocker)
    assert unlocker.unlocked
    assert not unlocker.pending_alert


@pytest.mark.asyncio
async def test_unlocked_alert_falls_back_to_tone(sink):
    backend = FakeAudioBackend(asset=False, tone=True, active=True)
    unlocker = _unlocker(backend, settings=MemorySettings(audioPermission=True), sink=sink)
    await unlocker.initialize()

    assert await unlocker.play_alert() is True
    played = sink.payloads("ALERT_PLAYED")
    assert played[0]["success"] is False
    assert played[0]["fallback"] == "tone"
    assert not unlocker.pending_alert


@pytest.mark.asyncio
async def test_grant_permission_replays_pending_alert(sink):
    backend = FakeAudioBackend(asset=[False, True])
    settings = MemorySettings()
    unlocker = _unlocker(backend, settings=settings, sink=sink)
    await unlocker.initialize()
    await unlocker.play_alert()

    settings.subscribe(unlocker.on_settings_changed)
    settings.set("audioPermission", True)
    await settle(unlocker)
    assert unlocker.unlocked
    assert not unlocker.pending_alert
    assert backend.count("asset", volume=0.7) == 2


@pytest.mark.asyncio
async def test_broken_sink_does_not_break_alerts():
    unlocker = _unlocker(FakeAudioBackend(asset=False), sink=BrokenSink())
    assert await unlocker.play_alert() is False
    assert unlocker.pending_alert


@pytest.mark.asyncio
async def test_close_cancels_listeners_and_tasks():
    hub = EventHub()
    unlocker = _unlocker(FakeAudioBackend(), hub=hub)
    await unlocker.initialize()
    unlocker.request_alert()
    await unlocker.close()
    assert hub.listener_count() == 0
    assert not unlocker._tasks


@pytest.mark.asyncio
async def test_only_a_real_boolean_counts_as_permission():
    settings = MemorySettings(audioPermission="true")
    unlocker = _unlocker(FakeAudioBackend(active=True), settings=settings)
    assert await unlocker.initialize() is AudioState.LOCKED
    assert unlocker.armed

    settings.subscribe(unlocker.on_settings_changed)
    settings.set("audioPermission", "yes")
    await settle(unlocker)
    assert not unlocker.unlocked
    await unlocker.close()
