from __future__ import annotations

"""Canonical progress record, defaults, and per-field sanitization of stored data."""

import math
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any, Callable


STATE_SCHEMA_VERSION = 2
TOTAL_BEADS = 108
ROUND_TARGET = 4
MAX_TOTAL_TAPS = 1_000_000
MAX_ELAPSED_SECONDS = 24 * 60 * 60
MAX_TRACKED_IDS = 200


def now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _fresh_beads() -> list[bool]:
    return [False] * TOTAL_BEADS


@dataclass
class ProgressRecord:
    """The single progress document shared by every component of a session."""

    schema_version: int = STATE_SCHEMA_VERSION
    beads: list[bool] = field(default_factory=_fresh_beads)
    round_count: int = 0
    total_taps: int = 0
    reflections_seen: list[str] = field(default_factory=list)
    quiz_attempted: bool = False
    quiz_answered: list[str] = field(default_factory=list)
    meditation_done: bool = False
    meditation_elapsed: int = 0
    midnight_done: bool = False
    midnight_triggered: bool = False
    last_saved_at: str = field(default_factory=now_iso)
    sound_enabled: bool = False

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ProgressRecord":
        """Build a record from a document that has already been through `sanitize`."""

        return cls(**{name: document[name] for name in FIELD_RULES})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            payload[item.name] = list(value) if isinstance(value, list) else value
        return payload

    def copy(self) -> "ProgressRecord":
        return ProgressRecord.from_document(self.to_dict())

    def replace_with(self, other: "ProgressRecord") -> None:
        # Components hold this object by reference, so reset/reload mutate in place.
        for item in fields(self):
            value = getattr(other, item.name)
            setattr(self, item.name, list(value) if isinstance(value, list) else value)

    @property
    def tapped_count(self) -> int:
        return sum(1 for bead in self.beads if bead)

    def has_progress(self) -> bool:
        return self.round_count > 0 or self.total_taps > 0


@dataclass(frozen=True)
class FieldRule:
    """Validation rule for one stored field: accept predicate, default factory, normalizer."""

    accept: Callable[[Any], bool]
    default: Callable[[], Any]
    normalize: Callable[[Any], Any] = lambda value: value


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _int_in_range(minimum: int, maximum: int) -> Callable[[Any], bool]:
    def _accept(value: Any) -> bool:
        if not _is_number(value):
            return False
        return minimum <= math.floor(value) <= maximum

    return _accept


def _to_int(value: Any) -> int:
    return int(math.floor(value))


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_bead_sequence(value: Any) -> bool:
    return isinstance(value, list) and len(value) == TOTAL_BEADS and all(isinstance(item, bool) for item in value)


def _is_list(value: Any) -> bool:
    return isinstance(value, list)


def _id_list(value: list[Any]) -> list[str]:
    ids: list[str] = []
    seen: set[str] = set()
    for item in value:
        if not isinstance(item, str) or not item or item in seen:
            continue
        ids.append(item)
        seen.add(item)
        if len(ids) >= MAX_TRACKED_IDS:
            break
    return ids


def _is_current_version(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value == STATE_SCHEMA_VERSION


FIELD_RULES: dict[str, FieldRule] = {
    "schema_version": FieldRule(_is_current_version, lambda: STATE_SCHEMA_VERSION),
    "beads": FieldRule(_is_bead_sequence, _fresh_beads, list),
    "round_count": FieldRule(_int_in_range(0, ROUND_TARGET), lambda: 0, _to_int),
    "total_taps": FieldRule(_int_in_range(0, MAX_TOTAL_TAPS), lambda: 0, _to_int),
    "reflections_seen": FieldRule(_is_list, list, _id_list),
    "quiz_attempted": FieldRule(_is_bool, lambda: False),
    "quiz_answered": FieldRule(_is_list, list, _id_list),
    "meditation_done": FieldRule(_is_bool, lambda: False),
    "meditation_elapsed": FieldRule(_int_in_range(0, MAX_ELAPSED_SECONDS), lambda: 0, _to_int),
    "midnight_done": FieldRule(_is_bool, lambda: False),
    "midnight_triggered": FieldRule(_is_bool, lambda: False),
    "last_saved_at": FieldRule(lambda value: isinstance(value, str), now_iso),
    "sound_enabled": FieldRule(_is_bool, lambda: False),
}


def sanitize_with_report(raw: Any) -> tuple[dict[str, Any], list[str]]:
    """Return a canonical document plus the names of present-but-invalid fields that were defaulted."""

    if not isinstance(raw, dict):
        return {name: rule.default() for name, rule in FIELD_RULES.items()}, []

    document: dict[str, Any] = {}
    defaulted: list[str] = []
    for name, rule in FIELD_RULES.items():
        if name not in raw:
            document[name] = rule.default()
            continue
        value = raw[name]
        if rule.accept(value):
            document[name] = rule.normalize(value)
        else:
            document[name] = rule.default()
            defaulted.append(name)
    return document, defaulted


def sanitize(raw: Any) -> dict[str, Any]:
    """Validate every field independently; a bad field falls back to its own default only."""

    document, _ = sanitize_with_report(raw)
    return document
