from __future__ import annotations

"""Environment-driven settings with safe fallbacks."""

import os
from dataclasses import dataclass
from pathlib import Path

from .paths import packaged_catalog_dir, tracker_home


DEFAULT_MEDITATION_MINUTES = 11
MAX_MEDITATION_MINUTES = 24 * 60
FALSY_FLAGS = {"0", "false", "no", "off"}


def _env_int(name: str, fallback: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value < minimum or value > maximum:
        return fallback
    return value


def _env_flag(name: str, fallback: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return fallback
    return raw not in FALSY_FLAGS


def _env_dir(name: str, fallback: Path) -> Path:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_dir():
        return fallback
    return candidate


@dataclass(frozen=True)
class TrackerConfig:
    """Resolved runtime settings for one tracker session."""

    home: Path
    strict_order: bool = True
    meditation_minutes: int = DEFAULT_MEDITATION_MINUTES
    catalog_dir: Path = packaged_catalog_dir()

    @classmethod
    def from_env(cls) -> "TrackerConfig":
        return cls(
            home=tracker_home(),
            strict_order=_env_flag("JAGARANA_STRICT_ORDER", True),
            meditation_minutes=_env_int(
                "JAGARANA_MEDITATION_MINUTES",
                DEFAULT_MEDITATION_MINUTES,
                minimum=1,
                maximum=MAX_MEDITATION_MINUTES,
            ),
            catalog_dir=_env_dir("JAGARANA_CATALOG_DIR", packaged_catalog_dir()),
        )
