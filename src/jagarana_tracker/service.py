from __future__ import annotations

"""Session facade: owns the progress record, its components, and telemetry."""

import random
import time
from datetime import date, datetime
from typing import Any, Callable

from .beads import BeadProgression, TapResult
from .certificate import issue_certificate
from .config import TrackerConfig
from .content import ContentSelector, QuizBook, QuizResult, load_quiz, load_reflections
from .errors import TrackerError
from .gate import certificate_checklist, is_certificate_unlocked
from .midnight import MidnightWatcher
from .paths import ensure_home_dirs
from .state import ROUND_TARGET, TOTAL_BEADS, ProgressRecord
from .storage import FileSlot, LoadOutcome, PersistedStore, Slot
from .telemetry import TelemetryLogger
from .timers import AsyncioScheduler, BreathPhase, Clock, MeditationTimer, Scheduler


class TrackerService:
    """One participant session. Every mutation runs on a single thread.

    Components receive the shared store by reference; the service re-evaluates
    the certificate gate after every mutation and reports storage loss once.
    """

    def __init__(
        self,
        config: TrackerConfig,
        store: PersistedStore,
        telemetry: TelemetryLogger,
        *,
        scheduler: Scheduler,
        clock: Clock = time.time,
        local_now: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
        source: str = "cli",
        on_breath: Callable[[BreathPhase], None] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.telemetry = telemetry
        self.source = source
        self.rng = rng or random.Random()
        self.trace_id: str | None = None
        self._storage_warned = False
        self._midnight_watch_requested = False
        self._unlocked = is_certificate_unlocked(store.record)

        self.beads = BeadProgression(store, strict_order=config.strict_order, on_event=self._on_component_event)
        self.meditation = MeditationTimer(
            store,
            scheduler,
            minutes=config.meditation_minutes,
            clock=clock,
            on_event=self._on_component_event,
            on_breath=on_breath,
        )
        self.midnight = MidnightWatcher(
            store,
            scheduler,
            clock=clock,
            local_now=local_now,
            on_event=self._on_component_event,
        )
        self.reflections = ContentSelector(load_reflections(config.catalog_dir), store, "reflections_seen", rng=self.rng)
        self.quiz = QuizBook(load_quiz(config.catalog_dir), store, rng=self.rng, on_event=self._on_component_event)

    @classmethod
    def create(
        cls,
        config: TrackerConfig | None = None,
        *,
        slot: Slot | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = time.time,
        local_now: Callable[[], datetime] = datetime.now,
        rng: random.Random | None = None,
        source: str = "cli",
        on_breath: Callable[[BreathPhase], None] | None = None,
    ) -> "TrackerService":
        """Load persisted progress and build a ready session."""

        config = config or TrackerConfig.from_env()
        dirs = ensure_home_dirs(config.home)
        telemetry = TelemetryLogger(dirs["telemetry"] / "events.jsonl")
        store = PersistedStore(slot if slot is not None else FileSlot(dirs["state"]))
        outcome = store.load()
        service = cls(
            config,
            store,
            telemetry,
            scheduler=scheduler or AsyncioScheduler(),
            clock=clock,
            local_now=local_now,
            rng=rng,
            source=source,
            on_breath=on_breath,
        )
        service._log("session.started", {"load_outcome": outcome.value, "storage_available": store.storage_available})
        if outcome is LoadOutcome.DISCARDED:
            service._log("state.discarded", {"reason": "unreadable_or_incompatible"})
        if store.defaulted_fields:
            service._log("risk.flagged", {"reason": "state_fields_defaulted", "fields": store.defaulted_fields})
        dropped = service.reflections.prune_unknown() + service.quiz.selector.prune_unknown()
        if dropped:
            service._log("risk.flagged", {"reason": "unknown_content_ids_dropped", "count": len(dropped)})
        service._after_mutation()
        return service

    @property
    def record(self) -> ProgressRecord:
        return self.store.record

    @property
    def storage_available(self) -> bool:
        return self.store.storage_available

    def _log(self, event_type: str, data: dict[str, Any]) -> None:
        self.telemetry.log_event(event_type, source=self.source, data=data, trace_id=self.trace_id)

    def _on_component_event(self, event_type: str, data: dict[str, Any]) -> None:
        self._log(event_type, data)
        self._after_mutation()

    def _after_mutation(self) -> None:
        if not self.store.storage_available and not self._storage_warned:
            self._storage_warned = True
            self._log("storage.unavailable", {"message": "Progress will not persist for this session."})
        unlocked = is_certificate_unlocked(self.record)
        if unlocked and not self._unlocked:
            self._log("certificate.unlocked", {"round_count": self.record.round_count})
        self._unlocked = unlocked

    # Read side

    def get_state(self) -> ProgressRecord:
        """Detached copy of the record; mutating it has no effect on the session."""

        return self.record.copy()

    def is_certificate_unlocked(self) -> bool:
        return is_certificate_unlocked(self.record)

    def certificate_status(self) -> dict[str, Any]:
        return {"unlocked": self.is_certificate_unlocked(), "checklist": certificate_checklist(self.record)}

    def snapshot(self) -> dict[str, Any]:
        record = self.record
        return {
            "record": record.to_dict(),
            "beads": {
                "total": TOTAL_BEADS,
                "tapped_count": record.tapped_count,
                "round_count": record.round_count,
                "round_target": ROUND_TARGET,
                "strict_order": self.beads.strict_order,
                "next_expected": self.beads.next_expected,
                "all_rounds_complete": self.beads.all_rounds_complete,
            },
            "meditation": self.meditation.describe(),
            "midnight": self.midnight.describe(),
            "reflections": {"seen": len(record.reflections_seen), "total": len(self.reflections.catalog)},
            "quiz": {"answered": len(record.quiz_answered), "total": len(self.quiz.catalog)},
            "certificate": self.certificate_status(),
            "has_progress": record.has_progress(),
            "storage_available": self.storage_available,
        }

    # Beads

    def tap_bead(self, index: Any) -> TapResult:
        result = self.beads.tap(index)
        if result.accepted:
            self._after_mutation()
        return result

    def set_strict_order(self, enabled: bool) -> bool:
        self.beads.set_strict_order(enabled)
        return self.beads.strict_order

    def reset_round(self, *, confirm: bool) -> bool:
        _require_confirmation(confirm, "Resetting the current round")
        changed = self.beads.reset_round()
        self._after_mutation()
        return changed

    # Meditation

    def set_timer_duration(self, minutes: int) -> bool:
        changed = self.meditation.set_duration(minutes)
        self._after_mutation()
        return changed

    def start_timer(self, minutes: int | None = None) -> bool:
        """Start (or resume) meditation; a different duration is applied only while not running."""

        if minutes is not None and minutes * 60 != self.meditation.duration_seconds:
            if not self.set_timer_duration(minutes):
                return False
        return self.meditation.start()

    def pause_timer(self) -> bool:
        return self.meditation.pause()

    def reset_timer(self) -> None:
        self.meditation.reset()

    # Midnight

    def arm_midnight(self) -> bool:
        self._midnight_watch_requested = True
        return self.midnight.arm()

    def poll_midnight(self) -> bool:
        return self.midnight.poll()

    def start_midnight(self) -> bool:
        return self.midnight.start()

    def dismiss_midnight(self) -> bool:
        return self.midnight.dismiss()

    # Content

    def next_reflection(self) -> dict[str, Any]:
        item = self.reflections.pick_next()
        seen = len(self.record.reflections_seen)
        self._log("reflection.shown", {"reflection_id": item["id"], "seen_count": seen})
        return {"reflection": dict(item), "seen_count": seen, "total": len(self.reflections.catalog)}

    def next_question(self) -> dict[str, Any]:
        return self.quiz.next_question()

    def answer_quiz(self, question_id: str, selected_index: int) -> QuizResult:
        return self.quiz.answer(question_id, selected_index)

    # Certificate and settings

    def issue_certificate(self, name: Any, lineage: Any = "", *, today: date | None = None) -> dict[str, Any]:
        certificate = issue_certificate(self.record, name, lineage, today=today, rng=self.rng)
        self._log("certificate.issued", {"certificate_id": certificate["certificate_id"]})
        return certificate

    def set_sound(self, enabled: bool) -> bool:
        self.record.sound_enabled = bool(enabled)
        self.store.save()
        self._after_mutation()
        return self.record.sound_enabled

    def reset_all_progress(self, *, confirm: bool) -> dict[str, Any]:
        """Replace all progress with defaults. Running countdowns are cancelled first."""

        _require_confirmation(confirm, "Resetting all progress")
        had_progress = self.record.has_progress()
        self.meditation.shutdown()
        self.midnight.dismiss()
        self.store.reset()
        self.meditation.restore()
        self.midnight.restore()
        # A fresh record clears midnight_triggered, so the nightly watch starts over.
        if self._midnight_watch_requested:
            self.midnight.arm()
        self._log("progress.reset", {"had_progress": had_progress})
        self._after_mutation()
        return self.snapshot()

    # Telemetry

    def telemetry_status(self) -> dict[str, Any]:
        return self.telemetry.status()

    def telemetry_summary(self, range_value: str = "7d", *, session_only: bool = False) -> dict[str, Any]:
        return self.telemetry.export_summary(
            range_value=range_value,
            session_id=self.telemetry.session_id if session_only else None,
        )

    def shutdown(self) -> None:
        self.meditation.shutdown()
        self.midnight.shutdown()


def _require_confirmation(confirm: bool, action: str) -> None:
    if confirm is not True:
        raise TrackerError(
            "CONFIRMATION_REQUIRED",
            f"{action} requires explicit confirmation.",
            hint="Pass confirm=true once the participant has agreed.",
        )
