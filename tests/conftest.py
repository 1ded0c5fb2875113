from __future__ import annotations

import random
from datetime import datetime
from pathlib import Path
from typing import Callable

import pytest

from jagarana_tracker.config import TrackerConfig
from jagarana_tracker.service import TrackerService
from jagarana_tracker.storage import MemorySlot
from jagarana_tracker.timers import TickHandle


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualScheduler:
    """Deterministic stand-in for the asyncio scheduler, driven by `advance`."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.callbacks: list[Callable[[], None]] = []
        self._entries: list[dict] = []

    def every(self, interval: float, callback: Callable[[], None]) -> TickHandle:
        handle = TickHandle()
        entry = {"handle": handle, "interval": interval, "due": self.clock.now + interval, "callback": callback}
        self._entries.append(entry)
        self.callbacks.append(callback)
        handle._on_cancel = lambda: self._entries.remove(entry)
        return handle

    @property
    def active_count(self) -> int:
        return sum(1 for entry in self._entries if entry["handle"].active)

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [entry for entry in self._entries if entry["handle"].active and entry["due"] <= target]
            if not due:
                break
            entry = min(due, key=lambda item: item["due"])
            self.clock.now = max(self.clock.now, entry["due"])
            entry["due"] += entry["interval"]
            entry["callback"]()
        self.clock.now = target


class LocalTime:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def local_time() -> LocalTime:
    return LocalTime(datetime(2026, 10, 19, 21, 30))


@pytest.fixture
def slot() -> MemorySlot:
    return MemorySlot()


@pytest.fixture
def make_service(
    tmp_path: Path,
    clock: FakeClock,
    scheduler: ManualScheduler,
    local_time: LocalTime,
    slot: MemorySlot,
) -> Callable[..., TrackerService]:
    def _make(**overrides) -> TrackerService:  # type: ignore[no-untyped-def]
        config = TrackerConfig(home=tmp_path / "home", meditation_minutes=overrides.pop("minutes", 1))
        return TrackerService.create(
            config,
            slot=overrides.pop("slot", slot),
            scheduler=scheduler,
            clock=clock,
            local_now=local_time,
            rng=random.Random(7),
            **overrides,
        )

    return _make
