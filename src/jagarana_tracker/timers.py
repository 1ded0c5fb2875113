from __future__ import annotations

"""Tick scheduling, wall-clock countdowns, and the meditation timer."""

import asyncio
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from .beads import EventSink, _ignore_event
from .config import MAX_MEDITATION_MINUTES
from .errors import TrackerError
from .state import ProgressRecord
from .storage import PersistedStore


Clock = Callable[[], float]

CHECKPOINT_SECONDS = 10
TICK_SECONDS = 1.0


class TickHandle:
    """Cancellable registration of a repeating tick; a cancelled handle never fires again."""

    def __init__(self) -> None:
        self.active = True
        self._on_cancel: Callable[[], None] | None = None

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None


class Scheduler(Protocol):
    def every(self, interval: float, callback: Callable[[], None]) -> TickHandle: ...


class AsyncioScheduler:
    """Repeating ticks on the running asyncio loop (single thread, cooperative)."""

    def every(self, interval: float, callback: Callable[[], None]) -> TickHandle:
        loop = asyncio.get_running_loop()
        handle = TickHandle()
        pending: dict[str, asyncio.TimerHandle] = {}

        def _fire() -> None:
            if not handle.active:
                return
            callback()
            if handle.active:
                pending["timer"] = loop.call_later(interval, _fire)

        pending["timer"] = loop.call_later(interval, _fire)
        handle._on_cancel = lambda: pending["timer"].cancel()
        return handle


class Countdown:
    """Countdown whose remaining time is derived from the wall clock, not from tick counts."""

    def __init__(self, duration_seconds: int, clock: Clock) -> None:
        self.duration = duration_seconds
        self.clock = clock
        self._consumed = 0.0
        self._started_at: float | None = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    def _consumed_now(self) -> float:
        if self._started_at is None:
            return self._consumed
        return self._consumed + max(self.clock() - self._started_at, 0.0)

    @property
    def elapsed(self) -> int:
        return min(math.floor(self._consumed_now()), self.duration)

    @property
    def remaining(self) -> int:
        return max(self.duration - math.floor(self._consumed_now()), 0)

    def start(self) -> None:
        if self.remaining <= 0:
            self._consumed = 0.0
        self._started_at = self.clock()

    def stop(self) -> int:
        if self._started_at is not None:
            self._consumed += max(self.clock() - self._started_at, 0.0)
            self._started_at = None
        return self.remaining

    def restore(self, elapsed_seconds: int) -> None:
        self._started_at = None
        self._consumed = float(min(max(elapsed_seconds, 0), self.duration))

    def finish(self) -> None:
        self._started_at = None
        self._consumed = float(self.duration)

    def reset(self, duration_seconds: int | None = None) -> None:
        if duration_seconds is not None:
            self.duration = duration_seconds
        self._started_at = None
        self._consumed = 0.0


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


TIMER_TRANSITIONS: dict[TimerState, set[TimerState]] = {
    TimerState.IDLE: {TimerState.IDLE, TimerState.RUNNING},
    TimerState.RUNNING: {TimerState.IDLE, TimerState.PAUSED, TimerState.COMPLETED},
    TimerState.PAUSED: {TimerState.IDLE, TimerState.RUNNING, TimerState.COMPLETED},
    TimerState.COMPLETED: {TimerState.IDLE, TimerState.RUNNING},
}


@dataclass(frozen=True)
class BreathPhase:
    name: str
    label: str
    seconds: int


BREATH_CYCLE = (
    BreathPhase("inhale", "Breathe in...", 4),
    BreathPhase("hold", "Hold...", 4),
    BreathPhase("exhale", "Breathe out...", 6),
)
BREATH_CYCLE_SECONDS = sum(phase.seconds for phase in BREATH_CYCLE)


def breath_phase_at(offset_seconds: float) -> BreathPhase:
    position = max(offset_seconds, 0.0) % BREATH_CYCLE_SECONDS
    for phase in BREATH_CYCLE:
        if position < phase.seconds:
            return phase
        position -= phase.seconds
    return BREATH_CYCLE[-1]


class MeditationTimer:
    """Meditation countdown with 10-second persistence checkpoints and a breath cycle.

    The breath cycle only exists while running and restarts at inhale on every
    transition into `running`; it never touches elapsed-time accounting.
    """

    def __init__(
        self,
        store: PersistedStore,
        scheduler: Scheduler,
        *,
        minutes: int,
        clock: Clock = time.time,
        on_event: EventSink | None = None,
        on_breath: Callable[[BreathPhase], None] | None = None,
        tick_seconds: float = TICK_SECONDS,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.clock = clock
        self.on_event = on_event or _ignore_event
        self.on_breath = on_breath
        self.tick_seconds = tick_seconds
        self.countdown = Countdown(_minutes_to_seconds(minutes), clock)
        self.state = TimerState.IDLE
        self._handle: TickHandle | None = None
        self._generation = 0
        self._breath_epoch: float | None = None
        self._breath_name: str | None = None
        self._last_remaining = self.countdown.remaining
        self._checkpoint_bucket = 0
        self.restore()

    @property
    def record(self) -> ProgressRecord:
        return self.store.record

    @property
    def duration_seconds(self) -> int:
        return self.countdown.duration

    @property
    def remaining_seconds(self) -> int:
        return self.countdown.remaining

    @property
    def elapsed_seconds(self) -> int:
        return self.countdown.elapsed

    @property
    def breath_phase(self) -> BreathPhase | None:
        if self.state is not TimerState.RUNNING or self._breath_epoch is None:
            return None
        return breath_phase_at(self.clock() - self._breath_epoch)

    def restore(self) -> None:
        """Resume from the persisted checkpoint, e.g. after a reload or a progress reset."""

        self._stop_ticks()
        self._breath_epoch = None
        record = self.record
        if record.meditation_done:
            self.countdown.finish()
            self.state = TimerState.COMPLETED
        elif 0 < record.meditation_elapsed < self.countdown.duration:
            self.countdown.restore(record.meditation_elapsed)
            self.state = TimerState.PAUSED
        else:
            self.countdown.reset()
            self.state = TimerState.IDLE
        self._last_remaining = self.countdown.remaining

    def _transition(self, target: TimerState) -> None:
        if target not in TIMER_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal timer transition {self.state.value} -> {target.value}")
        self.state = target

    def _stop_ticks(self) -> None:
        # Invalidate first so a tick already queued for this generation is ignored.
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _tick_callback(self) -> Callable[[], None]:
        generation = self._generation

        def _on_tick() -> None:
            if generation == self._generation:
                self.tick()

        return _on_tick

    def set_duration(self, minutes: int) -> bool:
        """Select a new duration; rejected while running, otherwise starts a fresh session."""

        if self.state is TimerState.RUNNING:
            return False
        seconds = _minutes_to_seconds(minutes)
        self._stop_ticks()
        self.countdown.reset(seconds)
        self._transition(TimerState.IDLE)
        self._last_remaining = self.countdown.remaining
        self.record.meditation_done = False
        self.record.meditation_elapsed = 0
        self.store.save()
        return True

    def start(self) -> bool:
        if self.state is TimerState.RUNNING:
            return False
        if self.state is TimerState.COMPLETED:
            self.countdown.reset()
        self._transition(TimerState.RUNNING)
        self.countdown.start()
        self._last_remaining = self.countdown.remaining
        self._checkpoint_bucket = self.countdown.elapsed // CHECKPOINT_SECONDS
        self._breath_epoch = self.clock()
        self._breath_name = None
        self._generation += 1
        self._handle = self.scheduler.every(self.tick_seconds, self._tick_callback())
        self._emit_breath()
        self.on_event(
            "timer.started",
            {"duration_seconds": self.countdown.duration, "remaining_seconds": self.countdown.remaining},
        )
        return True

    def tick(self) -> None:
        """Recompute remaining time from the clock; checkpoint on 10-second boundaries."""

        if self.state is not TimerState.RUNNING:
            return
        self._emit_breath()
        remaining = self.countdown.remaining
        if remaining == self._last_remaining:
            return
        self._last_remaining = remaining
        elapsed = self.countdown.elapsed
        self.record.meditation_elapsed = elapsed
        if remaining <= 0:
            self._complete()
            return
        bucket = elapsed // CHECKPOINT_SECONDS
        if bucket > self._checkpoint_bucket:
            self._checkpoint_bucket = bucket
            self.store.save()

    def pause(self) -> bool:
        if self.state is not TimerState.RUNNING:
            return False
        self._stop_ticks()
        remaining = self.countdown.stop()
        if remaining <= 0:
            self._complete()
            return True
        self._transition(TimerState.PAUSED)
        self._breath_epoch = None
        self._last_remaining = remaining
        self.record.meditation_elapsed = self.countdown.elapsed
        self.store.save()
        self.on_event("timer.paused", {"elapsed_seconds": self.countdown.elapsed, "remaining_seconds": remaining})
        return True

    def reset(self) -> None:
        self._stop_ticks()
        self.countdown.reset()
        self._transition(TimerState.IDLE)
        self._breath_epoch = None
        self._last_remaining = self.countdown.remaining
        self.record.meditation_elapsed = 0
        self.record.meditation_done = False
        self.store.save()
        self.on_event("timer.reset", {"duration_seconds": self.countdown.duration})

    def _complete(self) -> None:
        self._stop_ticks()
        self.countdown.finish()
        self._transition(TimerState.COMPLETED)
        self._breath_epoch = None
        self._last_remaining = 0
        self.record.meditation_done = True
        self.record.meditation_elapsed = self.countdown.duration
        self.store.save()
        self.on_event("timer.completed", {"duration_seconds": self.countdown.duration})

    def shutdown(self) -> None:
        self._stop_ticks()

    def _emit_breath(self) -> None:
        phase = self.breath_phase
        if phase is None or phase.name == self._breath_name:
            return
        self._breath_name = phase.name
        if self.on_breath is not None:
            self.on_breath(phase)

    def describe(self) -> dict[str, Any]:
        phase = self.breath_phase
        return {
            "state": self.state.value,
            "duration_seconds": self.duration_seconds,
            "remaining_seconds": self.remaining_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "breath_phase": phase.name if phase else None,
            "breath_label": phase.label if phase else None,
        }


def _minutes_to_seconds(minutes: Any) -> int:
    if isinstance(minutes, bool) or not isinstance(minutes, int) or not 1 <= minutes <= MAX_MEDITATION_MINUTES:
        raise TrackerError(
            "INVALID_DURATION",
            f"Meditation duration must be a whole number of minutes between 1 and {MAX_MEDITATION_MINUTES}.",
            minutes=minutes if isinstance(minutes, int) else None,
        )
    return minutes * 60


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(seconds, 0), 60)
    return f"{minutes}:{secs:02d}"
