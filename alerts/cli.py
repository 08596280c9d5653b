import argparse
from pathlib import Path

from alerts.settings import JsonSettingsStore


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="QueueKeeper channel watcher.")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.json (default: config.json in the data directory).",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="Path to settings.json (default: settings.json in the data directory).",
    )
    parser.add_argument(
        "--replay",
        type=Path,
        default=None,
        help="Watch a local JSON file of Discord-shaped messages instead of a live channel.",
    )
    parser.add_argument(
        "--enable",
        action="store_true",
        help="Turn the watcher on (a running watcher picks this up) and exit.",
    )
    parser.add_argument(
        "--disable",
        action="store_true",
        help="Turn the watcher off (a running watcher picks this up) and exit.",
    )
    parser.add_argument(
        "--grant-audio",
        action="store_true",
        help="Mark audio as allowed so a running watcher plays any pending alert, then exit.",
    )
    parser.add_argument(
        "--check-channel",
        action="store_true",
        help="Look up the configured channel with the DISCORD_TOKEN and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level.",
    )
    parser.add_argument(
        "--tail-logs",
        action="store_true",
        help="Tail the log file instead of starting the watcher.",
    )
    parser.add_argument(
        "--tail-lines",
        type=int,
        default=100,
        help="How many recent lines to print before following logs (default: 100).",
    )
    parser.add_argument(
        "--no-follow",
        action="store_true",
        help="When used with --tail-logs, print lines and exit without follow mode.",
    )
    return parser


def handle_settings_cli(cli_args, store: JsonSettingsStore) -> int | None:
    """Apply one-shot settings flags. Returns an exit code, or None to keep going."""
    if cli_args.enable and cli_args.disable:
        print("Choose only one of --enable and --disable")
        return 2

    handled = False
    if cli_args.enable or cli_args.disable:
        store.set("enabled", bool(cli_args.enable))
        print(f"Watcher {'enabled' if cli_args.enable else 'disabled'} ({store.settings_path})")
        handled = True
    if cli_args.grant_audio:
        store.set("audioPermission", True)
        print(f"Audio permission granted ({store.settings_path})")
        handled = True
    return 0 if handled else None
