from __future__ import annotations

"""Certificate issuance data. Rendering (PDF/print) belongs to the caller."""

import random
import re
from datetime import date
from typing import Any

from .errors import TrackerError
from .gate import certificate_checklist, is_certificate_unlocked
from .state import ROUND_TARGET, TOTAL_BEADS, ProgressRecord


CERTIFICATE_ID_PREFIX = "JSV"
MIN_NAME_CHARS = 2
MAX_NAME_CHARS = 50
MAX_LINEAGE_CHARS = 30

_BREAKS = re.compile(r"[\r\n\t]+")
_SPACES = re.compile(r"\s+")
_ANGLES = re.compile(r"[<>]")


def sanitize_line(value: Any, max_chars: int) -> str:
    if not isinstance(value, str):
        return ""
    text = _BREAKS.sub(" ", value)
    text = _SPACES.sub(" ", text)
    text = _ANGLES.sub("", text)
    return text.strip()[:max_chars]


def certificate_id(today: date, rng: random.Random) -> str:
    return f"{CERTIFICATE_ID_PREFIX}-{today:%Y%m%d}-{rng.getrandbits(24):06X}"


def stats_line(record: ProgressRecord) -> str:
    meditation = "Midnight stillness complete" if record.midnight_done else "Meditation complete"
    return (
        f"{TOTAL_BEADS} x {ROUND_TARGET} = {TOTAL_BEADS * ROUND_TARGET} beads | "
        f"{len(record.reflections_seen)} reflections | {meditation}"
    )


def issue_certificate(
    record: ProgressRecord,
    name: Any,
    lineage: Any = "",
    *,
    today: date | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Build the certificate fields for an unlocked record."""

    if not is_certificate_unlocked(record):
        missing = [key for key, done in certificate_checklist(record).items() if not done]
        raise TrackerError(
            "CERTIFICATE_LOCKED",
            "Certificate is not unlocked yet.",
            hint="Complete all rounds, attempt the quiz, and finish a meditation.",
            missing=missing,
        )
    clean_name = sanitize_line(name, MAX_NAME_CHARS)
    if len(clean_name) < MIN_NAME_CHARS:
        raise TrackerError("INVALID_NAME", f"Please enter a name of at least {MIN_NAME_CHARS} characters.")
    clean_lineage = sanitize_line(lineage, MAX_LINEAGE_CHARS)
    issued_on = today or date.today()
    return {
        "certificate_id": certificate_id(issued_on, rng or random.Random()),
        "name": clean_name,
        "lineage": clean_lineage,
        "lineage_line": f" of {clean_lineage}" if clean_lineage else "",
        "date": f"{issued_on.day} {issued_on:%B %Y}",
        "stats": stats_line(record),
    }
