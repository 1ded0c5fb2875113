from __future__ import annotations

from datetime import datetime
from typing import Any

from jagarana_tracker.midnight import MIDNIGHT_COUNTDOWN_SECONDS, MidnightWatcher, in_midnight_window
from jagarana_tracker.state import ProgressRecord
from jagarana_tracker.storage import MemorySlot, PersistedStore
from jagarana_tracker.timers import TimerState


def _watcher(clock, scheduler, local_time, record: ProgressRecord | None = None):  # type: ignore[no-untyped-def]
    store = PersistedStore(MemorySlot(), record)
    events: list[tuple[str, dict[str, Any]]] = []
    watcher = MidnightWatcher(
        store,
        scheduler,
        clock=clock,
        local_now=local_time,
        on_event=lambda kind, data: events.append((kind, data)),
    )
    return watcher, store, events


def test_window_bounds() -> None:
    assert in_midnight_window(datetime(2026, 10, 20, 0, 0)) is True
    assert in_midnight_window(datetime(2026, 10, 20, 0, 14, 59)) is True
    assert in_midnight_window(datetime(2026, 10, 20, 0, 15)) is False
    assert in_midnight_window(datetime(2026, 10, 19, 23, 59)) is False
    assert in_midnight_window(datetime(2026, 10, 20, 12, 5)) is False


def test_fires_once_despite_repeated_polls(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, store, events = _watcher(clock, scheduler, local_time)
    assert watcher.arm() is True
    assert watcher.armed is True
    assert watcher.triggered is False

    scheduler.advance(120)
    assert events == []

    local_time.value = datetime(2026, 10, 20, 0, 2)
    scheduler.advance(30)
    assert watcher.triggered is True
    assert store.record.midnight_triggered is True
    assert watcher.armed is False

    scheduler.advance(600)
    assert watcher.poll() is False
    assert [kind for kind, _ in events] == ["midnight.triggered"]
    assert events[0][1] == {"local_time": "00:02"}


def test_arm_inside_window_fires_immediately(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    local_time.value = datetime(2026, 10, 20, 0, 10)
    watcher, _, events = _watcher(clock, scheduler, local_time)
    assert watcher.arm() is True
    assert watcher.triggered is True
    assert scheduler.active_count == 0
    assert len(events) == 1


def test_arm_is_noop_once_triggered(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, _, _ = _watcher(clock, scheduler, local_time, ProgressRecord(midnight_triggered=True))
    assert watcher.arm() is False
    assert scheduler.active_count == 0


def test_start_requires_trigger(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, _, _ = _watcher(clock, scheduler, local_time)
    assert watcher.start() is False
    assert watcher.state is TimerState.IDLE


def test_countdown_completion_satisfies_meditation(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, store, events = _watcher(clock, scheduler, local_time, ProgressRecord(midnight_triggered=True))
    assert watcher.start() is True
    assert watcher.start() is False
    scheduler.advance(MIDNIGHT_COUNTDOWN_SECONDS - 1)
    assert watcher.state is TimerState.RUNNING
    assert watcher.remaining_seconds == 1

    scheduler.advance(1)
    assert watcher.state is TimerState.COMPLETED
    assert store.record.midnight_done is True
    assert store.record.meditation_done is True
    assert [kind for kind, _ in events] == ["midnight.started", "midnight.completed"]


def test_dismiss_marks_nothing_and_restart_begins_from_zero(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, store, events = _watcher(clock, scheduler, local_time, ProgressRecord(midnight_triggered=True))
    watcher.start()
    scheduler.advance(100)
    assert watcher.dismiss() is True
    assert watcher.state is TimerState.IDLE
    assert store.record.midnight_done is False
    assert events[-1] == ("midnight.dismissed", {"elapsed_seconds": 100})
    assert watcher.dismiss() is False

    watcher.start()
    assert watcher.remaining_seconds == MIDNIGHT_COUNTDOWN_SECONDS


def test_shutdown_cancels_polling_and_countdown(clock, scheduler, local_time) -> None:  # type: ignore[no-untyped-def]
    watcher, _, _ = _watcher(clock, scheduler, local_time)
    watcher.arm()
    watcher.shutdown()
    assert watcher.armed is False
    assert scheduler.active_count == 0
