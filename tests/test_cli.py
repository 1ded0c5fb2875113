from __future__ import annotations

import json
import sys
from pathlib import Path

from jagarana_tracker import cli
from jagarana_tracker.beads import TapResult


class _DummyService:
    def __init__(self) -> None:
        self.trace_id: str | None = None
        self.storage_available = True
        self.taps: list[int] = []
        self.closed = False

    def tap_bead(self, index: int) -> TapResult:
        self.taps.append(index)
        return TapResult(accepted=True, index=index, tapped_count=len(self.taps), round_count=0)

    def shutdown(self) -> None:
        self.closed = True


def test_cli_generates_trace_id_for_taps(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    service = _DummyService()
    monkeypatch.setattr(cli, "_service", lambda: service)
    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "3", "--count", "2"])
    assert cli.main() == 0
    assert service.taps == [3, 4]
    assert isinstance(service.trace_id, str)
    assert service.trace_id.startswith("cli:")
    assert service.closed is True


def test_cli_status_and_tap_use_local_home(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "tap"])
    assert cli.main() == 0
    first = json.loads(capsys.readouterr().out)
    assert first["accepted"] is True
    assert first["index"] == 0

    monkeypatch.setattr(sys, "argv", ["jagarana", "status"])
    assert cli.main() == 0
    status = json.loads(capsys.readouterr().out)
    assert status["beads"]["tapped_count"] == 1
    assert (tmp_path / "home" / "state" / "jagarana_v1.json").exists()


def test_cli_rejected_tap_returns_nonzero(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "9"])
    assert cli.main() == 1
    assert json.loads(capsys.readouterr().out)["reason"] == "out_of_order"


def test_cli_reset_requires_yes(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "reset"])
    assert cli.main() == 2
    assert json.loads(capsys.readouterr().out)["code"] == "CONFIRMATION_REQUIRED"

    monkeypatch.setattr(sys, "argv", ["jagarana", "reset", "--yes"])
    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out)["has_progress"] is False


def test_cli_certificate_checklist_and_locked_issue(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "certificate"])
    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out)["unlocked"] is False

    monkeypatch.setattr(sys, "argv", ["jagarana", "certificate", "--name", "Meera"])
    assert cli.main() == 2
    assert json.loads(capsys.readouterr().out)["code"] == "CERTIFICATE_LOCKED"


def test_cli_quiz_answer_unknown_question(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "quiz", "answer", "q.none", "0"])
    assert cli.main() == 1
    assert "Unknown quiz question" in capsys.readouterr().err


def test_cli_sound_toggle(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "sound", "on"])
    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out) == {"sound_enabled": True}


def test_cli_default_tap_follows_strict_order_after_free_taps(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "5", "--free-order"])
    assert cli.main() == 0
    capsys.readouterr()

    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "--count", "6"])
    assert cli.main() == 0
    results = json.loads(capsys.readouterr().out)
    assert [result["index"] for result in results] == [0, 1, 2, 3, 4, 6]
    assert all(result["accepted"] for result in results)


def test_cli_default_tap_in_free_order_uses_first_untapped(monkeypatch, tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "0", "--free-order"])
    assert cli.main() == 0
    capsys.readouterr()

    monkeypatch.setattr(sys, "argv", ["jagarana", "tap", "--free-order"])
    assert cli.main() == 0
    assert json.loads(capsys.readouterr().out)["index"] == 1
