from __future__ import annotations

import os
from pathlib import Path


def tracker_home() -> Path:
    configured = os.environ.get("JAGARANA_HOME")
    if configured:
        return Path(configured).expanduser().resolve()
    return Path.home() / ".jagarana"


def ensure_home_dirs(base: Path) -> dict[str, Path]:
    state = base / "state"
    telemetry = base / "telemetry"
    for path in (base, state, telemetry):
        path.mkdir(parents=True, exist_ok=True)
    return {"base": base, "state": state, "telemetry": telemetry}


def packaged_catalog_dir() -> Path:
    return Path(__file__).resolve().parent / "catalogs"
