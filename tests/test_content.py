from __future__ import annotations

import random
from pathlib import Path
from typing import Any

import pytest

from jagarana_tracker.content import ContentSelector, QuizBook, load_quiz, load_reflections
from jagarana_tracker.paths import packaged_catalog_dir
from jagarana_tracker.storage import MemorySlot, PersistedStore


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text.strip() + "\n", encoding="utf-8")


def _store() -> PersistedStore:
    store = PersistedStore(MemorySlot())
    store.load()
    return store


def test_packaged_catalogs_load() -> None:
    reflections = load_reflections(packaged_catalog_dir())
    quiz = load_quiz(packaged_catalog_dir())
    assert len(reflections) >= 20
    assert len(quiz) >= 10
    assert len(set(reflections.ids())) == len(reflections)
    for question in quiz.items:
        assert 0 <= question["correct"] < len(question["options"])


def test_selector_shows_every_item_before_repeating() -> None:
    store = _store()
    catalog = load_reflections(packaged_catalog_dir())
    selector = ContentSelector(catalog, store, "reflections_seen", rng=random.Random(3))
    picked = [selector.pick_next()["id"] for _ in range(len(catalog))]
    assert sorted(picked) == sorted(catalog.ids())
    assert selector.unseen() == []

    replay = selector.pick_next()
    assert replay["id"] in catalog.ids()
    assert len(store.record.reflections_seen) == len(catalog)


def test_selector_respects_tracking_cap() -> None:
    store = _store()
    catalog = load_reflections(packaged_catalog_dir())
    selector = ContentSelector(catalog, store, "reflections_seen", rng=random.Random(3), cap=2)
    for _ in range(5):
        selector.pick_next()
    assert len(store.record.reflections_seen) == 2


def test_prune_unknown_drops_stale_ids() -> None:
    store = _store()
    store.record.reflections_seen = ["r01", "retired", "r02"]
    selector = ContentSelector(load_reflections(packaged_catalog_dir()), store, "reflections_seen")
    assert selector.prune_unknown() == ["retired"]
    assert store.record.reflections_seen == ["r01", "r02"]


def test_quiz_next_question_does_not_mark() -> None:
    store = _store()
    book = QuizBook(load_quiz(packaged_catalog_dir()), store, rng=random.Random(1))
    question = book.next_question()
    assert "correct" not in question
    assert "insight" not in question
    assert question["answered"] is False
    assert store.record.quiz_answered == []
    assert store.record.quiz_attempted is False


def test_quiz_answer_records_attempt_and_reports_correctness() -> None:
    store = _store()
    events: list[tuple[str, dict[str, Any]]] = []
    catalog = load_quiz(packaged_catalog_dir())
    book = QuizBook(catalog, store, on_event=lambda kind, data: events.append((kind, data)))
    question = catalog.items[0]
    wrong = (question["correct"] + 1) % len(question["options"])

    result = book.answer(question["id"], wrong)
    assert result.correct is False
    assert result.correct_index == question["correct"]
    assert result.first_answer is True
    assert store.record.quiz_attempted is True
    assert store.record.quiz_answered == [question["id"]]

    again = book.answer(question["id"], question["correct"])
    assert again.correct is True
    assert again.first_answer is False
    assert store.record.quiz_answered == [question["id"]]
    assert [kind for kind, _ in events] == ["quiz.answered", "quiz.answered"]


def test_quiz_answer_rejects_unknown_question_and_bad_index() -> None:
    store = _store()
    catalog = load_quiz(packaged_catalog_dir())
    book = QuizBook(catalog, store)
    with pytest.raises(KeyError):
        book.answer("q.missing", 0)
    with pytest.raises(ValueError):
        book.answer(catalog.items[0]["id"], 99)
    with pytest.raises(ValueError):
        book.answer(catalog.items[0]["id"], True)
    assert store.record.quiz_attempted is False


def test_catalog_with_duplicate_ids_is_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path / "reflections.yaml",
        """
schema_version: "0.1"
reflections:
  - id: r01
    prompt: "First"
    meaning: "One"
    source: "Test"
  - id: r01
    prompt: "Second"
    meaning: "Two"
    source: "Test"
""",
    )
    with pytest.raises(ValueError, match="Duplicate catalog id"):
        load_reflections(tmp_path)


def test_catalog_schema_violation_is_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path / "quiz.yaml",
        """
schema_version: "0.1"
questions:
  - id: q01
    question: "Only one option?"
    options: ["Yes"]
    correct: 0
    insight: "Needs two."
""",
    )
    with pytest.raises(ValueError, match="schema validation failed"):
        load_quiz(tmp_path)


def test_quiz_correct_index_must_exist(tmp_path: Path) -> None:
    _write(
        tmp_path / "quiz.yaml",
        """
schema_version: "0.1"
questions:
  - id: q01
    question: "Which?"
    options: ["A", "B"]
    correct: 4
    insight: "Out of range."
""",
    )
    with pytest.raises(ValueError, match="does not exist"):
        load_quiz(tmp_path)


def test_missing_catalog_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="not found"):
        load_reflections(tmp_path)
