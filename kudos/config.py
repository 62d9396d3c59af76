"""
kudos.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for **infrastructure-only** settings (service
identity, API port, scheduler cadence, notification sink).  All economy
tuning values (rewards, caps, level curve, loan collection) live in the
``settings`` database table and are read through :class:`ConfigCache`.

Usage::

    from kudos.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.service_name)      # "Kudos Dev"
    print(cfg.api_port)          # 8000
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

VALID_NOTIFIERS = ("outbox", "log")


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# Economy tuning lives in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KudosConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    service_name: str

    # HTTP
    api_port: int

    # Seconds between loan-default sweeps; 0 disables the loop
    default_sweep_interval: int = 300

    # Where notification payloads go: "outbox" (notifications table) or "log"
    notifier: str = "outbox"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> KudosConfig:
    """Read *path* and return a :class:`KudosConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If ``notifier`` names an unknown sink.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    notifier = str(raw.get("notifier", "outbox")).lower()
    if notifier not in VALID_NOTIFIERS:
        raise ValueError(
            f"Unknown notifier '{notifier}'. Must be one of: {', '.join(VALID_NOTIFIERS)}"
        )

    return KudosConfig(
        service_name=raw["service_name"],
        api_port=int(raw["api_port"]),
        default_sweep_interval=int(raw.get("default_sweep_interval", 300)),
        notifier=notifier,
    )
