"""Watcher configuration: timings, queue rules and the channel to watch."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from alerts.classifier import DEFAULT_RULES, ClassifierConfig, QueueRule

CONFIG_FILENAME = "config.json"
SETTINGS_FILENAME = "settings.json"
TOKEN_ENV_VAR = "DISCORD_TOKEN"


def resolve_data_dir() -> Path:
    override_dir = os.getenv("QUEUEKEEPER_HOME")
    if override_dir:
        return Path(override_dir)

    programdata = os.getenv("ProgramData")
    if programdata:
        return Path(programdata) / "QueueKeeper"

    return Path(__file__).resolve().parent / "data"


@dataclass
class WatchConfig:
    check_interval_ms: int = 5000
    grace_period_ms: int = 20000
    debounce_ms: int = 30000
    verbose_logging_ms: int = 60000
    pulse_interval_ms: int = 300000
    replay_delay_ms: int = 200
    debounce_scope: str = "global"
    auto_open: bool = False
    skip_strings: list = field(default_factory=list)
    rules: list = field(default_factory=lambda: list(DEFAULT_RULES))
    channel_id: Optional[str] = None
    channel_label: Optional[str] = None
    token_type: str = "bot"
    message_limit: int = 50
    alert_sound: Optional[str] = None

    def __post_init__(self):
        for name in ("check_interval_ms", "grace_period_ms", "debounce_ms",
                     "verbose_logging_ms", "pulse_interval_ms", "replay_delay_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer (got {value!r}).")
        if self.check_interval_ms == 0:
            raise ValueError("check_interval_ms must be greater than zero.")
        if self.debounce_scope not in ("global", "classification"):
            raise ValueError("debounce_scope must be 'global' or 'classification'.")
        if self.token_type not in ("bot", "user"):
            raise ValueError("token_type must be 'bot' or 'user'.")
        self.rules = [rule if isinstance(rule, QueueRule) else QueueRule.from_dict(rule) for rule in self.rules]
        self.skip_strings = [str(s) for s in self.skip_strings if s]
        if self.channel_id is not None:
            self.channel_id = str(self.channel_id)

    def classifier_config(self) -> ClassifierConfig:
        return ClassifierConfig(rules=tuple(self.rules), skip_strings=tuple(self.skip_strings))

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["rules"] = [rule.to_dict() for rule in self.rules]
        return data

    @classmethod
    def from_dict(cls, raw: dict) -> "WatchConfig":
        if not isinstance(raw, dict):
            raise ValueError("Config JSON must be an object.")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**raw)


def create_config_template(config_path: Path) -> None:
    if config_path.exists():
        return
    config_path.parent.mkdir(parents=True, exist_ok=True)
    template = WatchConfig(skip_strings=["plush is up at target"]).to_dict()
    template["channel_id"] = ""
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(template, f, indent=2)
    print(f"Created config template at {config_path}")


def load_config(config_path: Path) -> WatchConfig:
    """Load the config file, writing a template the first time."""
    config_path = Path(config_path)
    if not config_path.exists():
        create_config_template(config_path)

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Config file {config_path} is not valid JSON: {exc}") from exc

    if raw is None:
        return WatchConfig()
    if isinstance(raw, dict) and raw.get("channel_id") == "":
        raw = dict(raw, channel_id=None)
    return WatchConfig.from_dict(raw)


def read_token() -> Optional[str]:
    token = os.getenv(TOKEN_ENV_VAR, "").strip()
    return token or None
