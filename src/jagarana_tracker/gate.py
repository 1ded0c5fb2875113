from __future__ import annotations

"""Certificate eligibility: a pure predicate over the progress record."""

from .state import ROUND_TARGET, ProgressRecord


def certificate_checklist(record: ProgressRecord, round_target: int = ROUND_TARGET) -> dict[str, bool]:
    return {
        "rounds": record.round_count >= round_target,
        "quiz": record.quiz_attempted,
        "meditation": record.meditation_done or record.midnight_done,
    }


def is_certificate_unlocked(record: ProgressRecord, round_target: int = ROUND_TARGET) -> bool:
    return all(certificate_checklist(record, round_target).values())
