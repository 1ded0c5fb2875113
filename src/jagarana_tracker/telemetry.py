from __future__ import annotations

"""Telemetry event sanitization, persistence, and local summary helpers."""

import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "session.started",
    "state.discarded",
    "storage.unavailable",
    "round.completed",
    "round.reset",
    "milestone.reached",
    "timer.started",
    "timer.paused",
    "timer.completed",
    "timer.reset",
    "midnight.triggered",
    "midnight.started",
    "midnight.completed",
    "midnight.dismissed",
    "reflection.shown",
    "quiz.answered",
    "certificate.unlocked",
    "certificate.issued",
    "progress.reset",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _utc_now_rfc3339() -> str:
    return _utc_now().replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


@dataclass(frozen=True)
class BuildInfo:
    """Static build/runtime metadata attached to every telemetry event."""

    tracker_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "tracker_version": self.tracker_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


def _sanitize_text(value: str) -> tuple[str, bool]:
    cleaned = _strip_control_chars(value).strip()
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", True
    return cleaned, False


def sanitize_event_data(data: Any) -> tuple[Any, int]:
    """Recursively strip control characters and truncate long strings; returns the truncation count."""

    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        truncated = 0
        for key, value in data.items():
            key_text, key_cut = _sanitize_text(str(key))
            value_sanitized, value_cut = sanitize_event_data(value)
            sanitized[key_text] = value_sanitized
            truncated += int(key_cut) + value_cut
        return sanitized, truncated
    if isinstance(data, (list, tuple)):
        items: list[Any] = []
        truncated = 0
        for item in data:
            item_sanitized, item_cut = sanitize_event_data(item)
            items.append(item_sanitized)
            truncated += item_cut
        return items, truncated
    if data is None or isinstance(data, (int, float, bool)):
        return data, 0
    text, cut = _sanitize_text(str(data))
    return text, int(cut)


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    unit = match.group(2)
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if unit == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_tracker_version() -> str:
    """Resolve installed package version with local fallback."""

    try:
        return package_version("jagarana")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Append-only telemetry logger for one tracker session."""

    def __init__(self, events_path: Path, *, session_id: str | None = None) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.session_id = session_id or str(uuid.uuid4())
        self.build = BuildInfo(
            tracker_version=detect_tracker_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _normalize_source(self, source: str) -> str:
        if source in VALID_SOURCES:
            return source
        return "cli"

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def _base_event(self, *, event_type: str, source: str, data: dict[str, Any], trace_id: str | None) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            data = {"reason": "invalid_event_type", "invalid_event_type": event_type[:MAX_STRING_LENGTH]}
            event_type = "risk.flagged"
        event = {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _utc_now_rfc3339(),
            "event_type": event_type,
            "source": self._normalize_source(source),
            "session_id": self.session_id,
            "build": self.build.to_dict(),
            "data": data,
        }
        if trace_id:
            event["trace_id"] = trace_id
        return event

    def log_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        trace_id: str | None = None,
    ) -> None:
        """Write one sanitized event; failures are reported on stderr and never raised."""

        try:
            sanitized_data, truncated = sanitize_event_data(data)
            if truncated:
                sanitized_data["_truncated_fields"] = truncated
            self._append_jsonl(
                self._base_event(event_type=event_type, source=source, data=sanitized_data, trace_id=trace_id)
            )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def count_events(self) -> int:
        if not self.events_path.exists():
            return 0
        count = 0
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if line.strip():
                    count += 1
        return count

    def status(self) -> dict[str, Any]:
        return {
            "events_path": str(self.events_path),
            "events_count": self.count_events(),
            "session_id": self.session_id,
            "build": self.build.to_dict(),
        }

    def export_summary(self, *, range_value: str, session_id: str | None = None) -> dict[str, Any]:
        """Count windowed events by type, optionally restricted to one session."""

        window = parse_range(range_value)
        end = _utc_now()
        start = end - window
        in_window: list[dict[str, Any]] = []
        for event in self.iter_events():
            parsed_ts = _parse_ts(event.get("ts"))
            if parsed_ts is None or not (start <= parsed_ts <= end):
                continue
            if session_id is not None and event.get("session_id") != session_id:
                continue
            in_window.append(event)

        by_type = Counter(str(event.get("event_type", "unknown")) for event in in_window)
        sessions = {str(event.get("session_id")) for event in in_window if event.get("session_id")}
        return {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _utc_now_rfc3339(),
            "range": range_value,
            "session_id_filter": session_id,
            "window_start": start.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "window_end": end.replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "events_considered": len(in_window),
            "sessions": len(sessions),
            "events_by_type": dict(sorted(by_type.items())),
            "rounds_completed": by_type.get("round.completed", 0),
            "quiz_answers": by_type.get("quiz.answered", 0),
            "meditations_completed": by_type.get("timer.completed", 0),
            "risk_flags_count": by_type.get("risk.flagged", 0),
        }


def sanitize_trace_id(value: str) -> str:
    """Return a control-free, length-bounded trace id, or an empty string."""

    cleaned, _ = _sanitize_text(value)
    return cleaned[:MAX_STRING_LENGTH]
