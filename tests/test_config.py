from __future__ import annotations

from pathlib import Path

from jagarana_tracker.config import DEFAULT_MEDITATION_MINUTES, TrackerConfig
from jagarana_tracker.paths import ensure_home_dirs, packaged_catalog_dir


def test_defaults_without_environment(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_HOME", str(tmp_path / "home"))
    for name in ("JAGARANA_STRICT_ORDER", "JAGARANA_MEDITATION_MINUTES", "JAGARANA_CATALOG_DIR"):
        monkeypatch.delenv(name, raising=False)
    config = TrackerConfig.from_env()
    assert config.home == (tmp_path / "home").resolve()
    assert config.strict_order is True
    assert config.meditation_minutes == DEFAULT_MEDITATION_MINUTES
    assert config.catalog_dir == packaged_catalog_dir()


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    catalogs = tmp_path / "catalogs"
    catalogs.mkdir()
    monkeypatch.setenv("JAGARANA_STRICT_ORDER", "off")
    monkeypatch.setenv("JAGARANA_MEDITATION_MINUTES", "21")
    monkeypatch.setenv("JAGARANA_CATALOG_DIR", str(catalogs))
    config = TrackerConfig.from_env()
    assert config.strict_order is False
    assert config.meditation_minutes == 21
    assert config.catalog_dir == catalogs.resolve()


def test_invalid_values_fall_back(monkeypatch, tmp_path: Path) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setenv("JAGARANA_MEDITATION_MINUTES", "0")
    monkeypatch.setenv("JAGARANA_CATALOG_DIR", str(tmp_path / "missing"))
    config = TrackerConfig.from_env()
    assert config.meditation_minutes == DEFAULT_MEDITATION_MINUTES
    assert config.catalog_dir == packaged_catalog_dir()

    monkeypatch.setenv("JAGARANA_MEDITATION_MINUTES", "eleven")
    assert TrackerConfig.from_env().meditation_minutes == DEFAULT_MEDITATION_MINUTES


def test_ensure_home_dirs_creates_layout(tmp_path: Path) -> None:
    dirs = ensure_home_dirs(tmp_path / "home")
    assert dirs["state"].is_dir()
    assert dirs["telemetry"].is_dir()
