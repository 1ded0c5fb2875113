from __future__ import annotations

"""Bead-tap progression over a fixed 108-bead round."""

from dataclasses import asdict, dataclass
from typing import Any, Callable

from .state import MAX_TOTAL_TAPS, ROUND_TARGET, TOTAL_BEADS, ProgressRecord
from .storage import PersistedStore


EventSink = Callable[[str, dict[str, Any]], None]

MILESTONES = {
    27: "Quarter done, breathe.",
    54: "Halfway, stay present.",
    81: "Three quarters, almost there.",
    108: "108, mala complete.",
}
BELL_EVERY = 27


def _ignore_event(event_type: str, data: dict[str, Any]) -> None:
    return None


@dataclass(frozen=True)
class TapResult:
    """Outcome of one tap; rejected taps carry a reason and never change state."""

    accepted: bool
    index: int | None
    tapped_count: int
    round_count: int
    reason: str | None = None
    hint: str | None = None
    milestone: str | None = None
    bell: bool = False
    round_completed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class BeadProgression:
    def __init__(self, store: PersistedStore, *, strict_order: bool = True, on_event: EventSink | None = None) -> None:
        self.store = store
        self.strict_order = strict_order
        self.on_event = on_event or _ignore_event

    @property
    def record(self) -> ProgressRecord:
        return self.store.record

    @property
    def all_rounds_complete(self) -> bool:
        return self.record.round_count >= ROUND_TARGET

    @property
    def first_untapped(self) -> int:
        beads = self.record.beads
        return beads.index(False) if False in beads else 0

    @property
    def next_expected(self) -> int | None:
        """Index the participant should tap next in strict mode, else None.

        This is the lowest untapped bead, which equals the tapped count while the
        round has no gaps. Gaps left by free-order taps are filled first.
        """

        if not self.strict_order or self.all_rounds_complete:
            return None
        return self.first_untapped

    def set_strict_order(self, enabled: bool) -> None:
        self.strict_order = bool(enabled)

    def _reject(self, index: int | None, reason: str, hint: str | None = None) -> TapResult:
        return TapResult(
            accepted=False,
            index=index,
            tapped_count=self.record.tapped_count,
            round_count=self.record.round_count,
            reason=reason,
            hint=hint,
        )

    def tap(self, index: Any) -> TapResult:
        """Apply one tap, rolling a full round into `round_count` in the same step."""

        record = self.record
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < TOTAL_BEADS:
            return self._reject(None, "out_of_range")
        if self.all_rounds_complete:
            return self._reject(index, "all_rounds_complete")
        if record.beads[index]:
            return self._reject(index, "already_tapped")

        tapped = record.tapped_count
        expected = self.next_expected
        if expected is not None and index != expected:
            return self._reject(index, "out_of_order", hint=f"Tap bead #{expected + 1} next")

        new_count = tapped + 1
        round_completed = new_count == TOTAL_BEADS
        record.total_taps = min(record.total_taps + 1, MAX_TOTAL_TAPS)
        if round_completed:
            record.round_count += 1
            record.beads = [False] * TOTAL_BEADS
        else:
            record.beads[index] = True
        self.store.save()

        milestone = MILESTONES.get(new_count)
        result = TapResult(
            accepted=True,
            index=index,
            tapped_count=0 if round_completed else new_count,
            round_count=record.round_count,
            milestone=milestone,
            bell=new_count % BELL_EVERY == 0,
            round_completed=round_completed,
        )
        if milestone:
            self.on_event("milestone.reached", {"tapped_count": new_count, "round": record.round_count})
        if round_completed:
            self.on_event(
                "round.completed",
                {"round_count": record.round_count, "total_taps": record.total_taps, "round_target": ROUND_TARGET},
            )
        return result

    def reset_round(self) -> bool:
        """Clear the active round's beads; completed rounds and lifetime taps stay."""

        if self.record.tapped_count == 0:
            return False
        cleared = self.record.tapped_count
        self.record.beads = [False] * TOTAL_BEADS
        self.store.save()
        self.on_event("round.reset", {"cleared_beads": cleared, "round_count": self.record.round_count})
        return True
