from __future__ import annotations

"""Nightly-window watcher and its fixed five-minute stillness countdown."""

import time
from datetime import datetime
from typing import Any, Callable

from .beads import EventSink, _ignore_event
from .state import ProgressRecord
from .storage import PersistedStore
from .timers import TICK_SECONDS, Clock, Countdown, Scheduler, TickHandle, TimerState


MIDNIGHT_POLL_SECONDS = 30.0
MIDNIGHT_WINDOW_HOUR = 0
MIDNIGHT_WINDOW_MINUTES = 15
MIDNIGHT_COUNTDOWN_SECONDS = 300


def in_midnight_window(moment: datetime) -> bool:
    return moment.hour == MIDNIGHT_WINDOW_HOUR and moment.minute < MIDNIGHT_WINDOW_MINUTES


class MidnightWatcher:
    """Polls for the nightly window, fires once, then offers its own countdown.

    Completing the countdown satisfies the meditation requirement as well.
    Dismissing it marks nothing; a later start begins again from zero.
    """

    def __init__(
        self,
        store: PersistedStore,
        scheduler: Scheduler,
        *,
        clock: Clock = time.time,
        local_now: Callable[[], datetime] = datetime.now,
        on_event: EventSink | None = None,
        poll_seconds: float = MIDNIGHT_POLL_SECONDS,
        tick_seconds: float = TICK_SECONDS,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.local_now = local_now
        self.on_event = on_event or _ignore_event
        self.poll_seconds = poll_seconds
        self.tick_seconds = tick_seconds
        self.countdown = Countdown(MIDNIGHT_COUNTDOWN_SECONDS, clock)
        self.state = TimerState.COMPLETED if store.record.midnight_done else TimerState.IDLE
        self._poll_handle: TickHandle | None = None
        self._tick_handle: TickHandle | None = None
        self._generation = 0

    @property
    def record(self) -> ProgressRecord:
        return self.store.record

    @property
    def triggered(self) -> bool:
        return self.record.midnight_triggered

    @property
    def armed(self) -> bool:
        return self._poll_handle is not None

    @property
    def remaining_seconds(self) -> int:
        return self.countdown.remaining

    def arm(self) -> bool:
        """Start polling the wall clock; a no-op once triggered or already armed."""

        if self.triggered or self._poll_handle is not None:
            return False
        self._poll_handle = self.scheduler.every(self.poll_seconds, self.poll)
        self.poll()
        return True

    def _disarm(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

    def poll(self) -> bool:
        """Check the window once; returns True only on the single firing."""

        if self.triggered:
            self._disarm()
            return False
        moment = self.local_now()
        if not in_midnight_window(moment):
            return False
        self.record.midnight_triggered = True
        self.store.save()
        self._disarm()
        self.on_event("midnight.triggered", {"local_time": moment.strftime("%H:%M")})
        return True

    def _stop_ticks(self) -> None:
        self._generation += 1
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _tick_callback(self) -> Callable[[], None]:
        generation = self._generation

        def _on_tick() -> None:
            if generation == self._generation:
                self.tick()

        return _on_tick

    def start(self) -> bool:
        if not self.triggered or self.state is TimerState.RUNNING:
            return False
        self.countdown.reset()
        self.countdown.start()
        self.state = TimerState.RUNNING
        self._generation += 1
        self._tick_handle = self.scheduler.every(self.tick_seconds, self._tick_callback())
        self.on_event("midnight.started", {"duration_seconds": self.countdown.duration})
        return True

    def tick(self) -> None:
        if self.state is not TimerState.RUNNING:
            return
        if self.countdown.remaining <= 0:
            self._complete()

    def _complete(self) -> None:
        self._stop_ticks()
        self.countdown.finish()
        self.state = TimerState.COMPLETED
        self.record.midnight_done = True
        self.record.meditation_done = True
        self.store.save()
        self.on_event("midnight.completed", {"duration_seconds": self.countdown.duration})

    def dismiss(self) -> bool:
        if self.state is not TimerState.RUNNING:
            return False
        self._stop_ticks()
        elapsed = self.countdown.elapsed
        self.countdown.reset()
        self.state = TimerState.COMPLETED if self.record.midnight_done else TimerState.IDLE
        self.on_event("midnight.dismissed", {"elapsed_seconds": elapsed})
        return True

    def restore(self) -> None:
        self._stop_ticks()
        self.countdown.reset()
        self.state = TimerState.COMPLETED if self.record.midnight_done else TimerState.IDLE

    def shutdown(self) -> None:
        self._disarm()
        self._stop_ticks()

    def describe(self) -> dict[str, Any]:
        return {
            "triggered": self.triggered,
            "done": self.record.midnight_done,
            "armed": self.armed,
            "state": self.state.value,
            "remaining_seconds": self.remaining_seconds,
        }
