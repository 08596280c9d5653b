"""Main runtime for the QueueKeeper watcher service.

Loads config and settings, builds the message source, sinks and audio
unlocker, and keeps the surveillance loop following the `enabled` setting
until the process is stopped.
"""

import asyncio
import logging
import sys
import threading
from pathlib import Path

import requests

from alerts.audio import DEFAULT_ALERT_PATH, build_audio_backend
from alerts.audio_unlock import AudioUnlocker
from alerts.cli import build_cli_parser, handle_settings_cli
from alerts.config import (
    CONFIG_FILENAME,
    SETTINGS_FILENAME,
    TOKEN_ENV_VAR,
    load_config,
    read_token,
    resolve_data_dir,
)
from alerts.events import EventHub, SubscriptionGroup
from alerts.logging_utils import LOGGER_NAME, configure_rotating_logger, resolve_log_file, tail_logs
from alerts.notify import FanoutSink, LoggingSink
from alerts.settings import JsonSettingsStore
from alerts.surveillance import SurveillanceController
from feed.discord import DiscordChannelSource
from feed.discord_api import describe_channel, get_channel
from feed.source import JsonFileMessageSource

FALLBACK_LOG_FILE = Path(__file__).resolve().parent / "logs" / "queuekeeper.log"


def start_keyboard_listener(interactions: EventHub, loop: asyncio.AbstractEventLoop):
    """Report every line typed on the console as a key press.

    Runs on a daemon thread so a blocked stdin read never holds up shutdown.
    """
    if not sys.stdin or not sys.stdin.isatty():
        return None

    def read_lines():
        for _ in sys.stdin:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(interactions.dispatch, "keypress")

    reader = threading.Thread(target=read_lines, name="queuekeeper-keyboard", daemon=True)
    reader.start()
    return reader


def build_toast_sink(interactions: EventHub, logger: logging.Logger):
    if sys.platform != "win32":
        return None
    from alerts.toasts import ToastSink

    return ToastSink(interactions, logger)


async def build_source(cli_args, config, logger: logging.Logger):
    if cli_args.replay is not None:
        logger.info("Replaying messages from %s", cli_args.replay)
        return JsonFileMessageSource(cli_args.replay)

    token = read_token()
    if not token:
        logger.error("Set %s to watch a live channel (or use --replay FILE).", TOKEN_ENV_VAR)
        return None
    if not config.channel_id:
        logger.error("No channel_id configured.")
        return None

    label = config.channel_label
    if not label:
        label = await asyncio.to_thread(describe_channel, config.channel_id, token, config.token_type)
    return DiscordChannelSource(
        config.channel_id,
        token,
        token_type=config.token_type,
        limit=config.message_limit,
        label=label,
    )


def check_channel(config, token: str) -> int:
    """One REST lookup of the configured channel; non-zero when it fails."""
    try:
        channel = get_channel(config.channel_id, token, config.token_type)
    except requests.RequestException as exc:
        print(f"Channel check failed for {config.channel_id}: {exc}")
        return 1
    except ValueError:
        print(f"Channel check failed for {config.channel_id}: Discord sent a non-JSON reply")
        return 1
    name = channel.get("name") if isinstance(channel, dict) else None
    print(f"#{name}" if name else f"channel {config.channel_id}")
    return 0


async def main_async(cli_args, config, store: JsonSettingsStore, logger: logging.Logger) -> int:
    """Wire the watcher together and run until cancelled."""
    source = await build_source(cli_args, config, logger)
    if source is None:
        return 2

    interactions = EventHub()
    sink = FanoutSink(LoggingSink(logger), logger=logger)
    toast_sink = build_toast_sink(interactions, logger)
    if toast_sink is not None:
        sink.add(toast_sink)
        toast_sink.start()

    audio_path = Path(config.alert_sound) if config.alert_sound else DEFAULT_ALERT_PATH
    audio = AudioUnlocker(
        build_audio_backend(audio_path),
        settings=store,
        sink=sink,
        interactions=interactions,
        replay_delay_ms=config.replay_delay_ms,
    )
    controller = SurveillanceController(source, config, audio, sink=sink)

    subscriptions = SubscriptionGroup()
    subscriptions.add(store.subscribe(audio.on_settings_changed))
    store.watch()
    start_keyboard_listener(interactions, asyncio.get_running_loop())

    await audio.initialize()
    controller.bind(store)

    # Keep the async process alive indefinitely.
    try:
        await asyncio.Event().wait()
    finally:
        subscriptions.cancel_all()
        await controller.shutdown()
        await audio.close()
        await store.stop_watching()
        if toast_sink is not None:
            await toast_sink.stop()
        await source.close()
    return 0


def main(argv=None) -> int:
    """Program entry point for running the watcher event loop."""
    cli_args = build_cli_parser().parse_args(argv)

    # Rather than run the watcher, tail (display) the log file.
    # Most useful when a separate process is already running it.
    if cli_args.tail_logs:
        return tail_logs(
            log_file=resolve_log_file(),
            lines=cli_args.tail_lines,
            follow=not cli_args.no_follow,
        )

    logger, log_file = configure_rotating_logger(
        logger_name=LOGGER_NAME,
        preferred_log_file=resolve_log_file(),
        fallback_log_file=FALLBACK_LOG_FILE,
        level=logging.DEBUG if cli_args.debug else logging.INFO,
    )

    data_dir = resolve_data_dir()
    store = JsonSettingsStore(cli_args.settings or data_dir / SETTINGS_FILENAME)
    settings_result = handle_settings_cli(cli_args, store)
    if settings_result is not None:
        return settings_result

    try:
        config = load_config(cli_args.config or data_dir / CONFIG_FILENAME)
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}")
        return 2

    if cli_args.check_channel:
        token = read_token()
        if not token or not config.channel_id:
            print(f"--check-channel needs {TOKEN_ENV_VAR} and a configured channel_id")
            return 2
        return check_channel(config, token)

    logger.info("Starting QueueKeeper. Log file: %s", log_file)
    try:
        return asyncio.run(main_async(cli_args, config, store, logger))
    except KeyboardInterrupt:
        logger.info("QueueKeeper stopped.")
        return 0


def run() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    run()
