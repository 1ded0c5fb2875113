from __future__ import annotations

"""Static content catalogs and the unseen-first selection over them."""

import json
import random
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .beads import EventSink, _ignore_event
from .state import MAX_TRACKED_IDS
from .storage import PersistedStore


REFLECTIONS_FILE = "reflections.yaml"
QUIZ_FILE = "quiz.yaml"


@dataclass(frozen=True)
class Catalog:
    """Read-only list of content items keyed by `id`."""

    name: str
    items: tuple[dict[str, Any], ...]

    def ids(self) -> list[str]:
        return [item["id"] for item in self.items]

    def get(self, item_id: str) -> dict[str, Any] | None:
        for item in self.items:
            if item["id"] == item_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self.items)


def _schema_dir() -> Path:
    return Path(__file__).resolve().parent / "catalogs" / "schema"


def _load_schema(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ValueError(f"Catalog schema file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Catalog schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError(f"Catalog schema must be a JSON object: {path}")
    return payload


def load_catalog(path: Path, schema_path: Path, *, items_key: str) -> Catalog:
    """Load one YAML catalog and validate it against its JSON schema."""

    if not path.exists():
        raise ValueError(f"Catalog file not found: {path}")
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Catalog file must be a mapping: {path}")
    validator = Draft202012Validator(_load_schema(schema_path))
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Catalog schema validation failed for {path} at {where}: {first.message}")

    items: list[dict[str, Any]] = []
    seen: set[str] = set()
    for item in payload[items_key]:
        item_id = item["id"]
        if item_id in seen:
            raise ValueError(f"Duplicate catalog id detected in {path}: {item_id}")
        seen.add(item_id)
        items.append(dict(item))
    return Catalog(name=items_key, items=tuple(items))


def load_reflections(catalog_dir: Path) -> Catalog:
    return load_catalog(
        catalog_dir / REFLECTIONS_FILE,
        _schema_dir() / "reflections.schema.json",
        items_key="reflections",
    )


def load_quiz(catalog_dir: Path) -> Catalog:
    catalog = load_catalog(catalog_dir / QUIZ_FILE, _schema_dir() / "quiz.schema.json", items_key="questions")
    for question in catalog.items:
        if question["correct"] >= len(question["options"]):
            raise ValueError(f"Quiz question {question['id']} marks a correct option that does not exist.")
    return catalog


class ContentSelector:
    """Picks uniformly among unseen items, or among the whole catalog once all are seen."""

    def __init__(
        self,
        catalog: Catalog,
        store: PersistedStore,
        seen_field: str,
        *,
        rng: random.Random | None = None,
        cap: int = MAX_TRACKED_IDS,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.seen_field = seen_field
        self.rng = rng or random.Random()
        self.cap = cap

    @property
    def seen(self) -> list[str]:
        return getattr(self.store.record, self.seen_field)

    def unseen(self) -> list[dict[str, Any]]:
        seen = set(self.seen)
        return [item for item in self.catalog.items if item["id"] not in seen]

    def choose(self) -> dict[str, Any]:
        pool = self.unseen() or list(self.catalog.items)
        return self.rng.choice(pool)

    def mark(self, item_id: str, *, save: bool = True) -> bool:
        seen = self.seen
        if item_id in seen or len(seen) >= self.cap:
            return False
        seen.append(item_id)
        if save:
            self.store.save()
        return True

    def pick_next(self) -> dict[str, Any]:
        item = self.choose()
        self.mark(item["id"])
        return item

    def prune_unknown(self) -> list[str]:
        """Drop stored ids that are not part of this catalog."""

        known = set(self.catalog.ids())
        seen = self.seen
        dropped = [item_id for item_id in seen if item_id not in known]
        if dropped:
            seen[:] = [item_id for item_id in seen if item_id in known]
            self.store.save()
        return dropped


@dataclass(frozen=True)
class QuizResult:
    question_id: str
    selected_index: int
    correct: bool
    correct_index: int
    insight: str
    first_answer: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QuizBook:
    def __init__(
        self,
        catalog: Catalog,
        store: PersistedStore,
        *,
        rng: random.Random | None = None,
        on_event: EventSink | None = None,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.selector = ContentSelector(catalog, store, "quiz_answered", rng=rng)
        self.on_event = on_event or _ignore_event

    def public_question(self, question: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": question["id"],
            "question": question["question"],
            "options": list(question["options"]),
            "answered": question["id"] in self.selector.seen,
            "position": self.catalog.ids().index(question["id"]) + 1,
            "total": len(self.catalog),
        }

    def next_question(self) -> dict[str, Any]:
        """Offer a random unanswered question without marking it."""

        return self.public_question(self.selector.choose())

    def answer(self, question_id: str, selected_index: int) -> QuizResult:
        question = self.catalog.get(question_id)
        if question is None:
            raise KeyError(f"Unknown quiz question: {question_id}")
        options = question["options"]
        if isinstance(selected_index, bool) or not isinstance(selected_index, int):
            raise ValueError("selected_index must be an integer.")
        if not 0 <= selected_index < len(options):
            raise ValueError(f"selected_index must be between 0 and {len(options) - 1}.")

        correct = selected_index == question["correct"]
        first_answer = self.selector.mark(question_id, save=False)
        self.store.record.quiz_attempted = True
        self.store.save()
        self.on_event(
            "quiz.answered",
            {"question_id": question_id, "correct": correct, "answered_count": len(self.selector.seen)},
        )
        return QuizResult(
            question_id=question_id,
            selected_index=selected_index,
            correct=correct,
            correct_index=question["correct"],
            insight=question["insight"],
            first_answer=first_answer,
        )
