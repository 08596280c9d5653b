"""Alerts package for QueueKeeper channel surveillance.

This module group classifies new channel messages into queue announcements,
gates them through the grace period and debounce window, and plays the alert
sound, holding it back until the user has interacted when audio is blocked.
It also contains the settings store, configuration loading, notification
sinks (log and Windows toast), logging support and the CLI entry point used
by `alerts.runtime`.
"""
