# common/config.py
from __future__ import annotations
import copy, os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel

from common.schemas import Marker, Participant

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG = REPO_ROOT / "config" / "config.yaml"

_DEFAULTS: Dict[str, Any] = {
    "runtime": {
        "log_level": "INFO",
        "log_dir": "logs",
        "redis_url": "redis://127.0.0.1:6379/0",
        "stream_played": "track.frames",
        "publish_frames": False,
    },
    "telemetry": {
        "base_url": "https://api.openf1.org/v1",
        "session_key": 9149,
        "window": {
            "start": "2023-08-27T12:58:56.200",
            "end": "2023-08-27T13:20:54.300",
        },
        "timeout_sec": 30,
        "batch_size": 3,
        "per_participant_limit": 120,
    },
    "playback": {
        "tick_ms": 10,
        "blink_ms": 100,
        "refill_delay_ms": 334,
    },
    "api": {"host": "0.0.0.0", "port": 9191},
    "participants": [],
    "track": {"markers_file": "config/track.yaml"},
}


class TelemetrySettings(BaseModel):
    base_url: str
    session_key: int
    window_start: str
    window_end: str
    timeout_sec: float = 30
    batch_size: int = 3
    per_participant_limit: int = 120


class PlaybackSettings(BaseModel):
    tick_ms: int = 10
    blink_ms: int = 100
    refill_delay_ms: int = 334


def _merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (over or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config(config_path: str | Path | None = None) -> Dict[str, Any]:
    """
    Read the YAML config and lay it over the built-in defaults.
    REPLAY_CONFIG picks the file when no path is passed; LOG_LEVEL and
    REPLAY_REDIS_URL override the runtime section.
    """
    path = Path(config_path or os.getenv("REPLAY_CONFIG") or DEFAULT_CONFIG)
    raw: Dict[str, Any] = {}
    if path.exists():
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = _merge(_DEFAULTS, raw)

    rt = cfg["runtime"]
    if os.getenv("LOG_LEVEL"):
        rt["log_level"] = os.environ["LOG_LEVEL"]
    if os.getenv("REPLAY_REDIS_URL"):
        rt["redis_url"] = os.environ["REPLAY_REDIS_URL"]
    cfg["_path"] = str(path)
    return cfg


def telemetry_settings(cfg: Dict[str, Any]) -> TelemetrySettings:
    t = cfg.get("telemetry", {}) or {}
    window = t.get("window", {}) or {}
    return TelemetrySettings(
        base_url=str(t.get("base_url")).rstrip("/"),
        session_key=int(t.get("session_key")),
        window_start=str(window.get("start")),
        window_end=str(window.get("end")),
        timeout_sec=float(t.get("timeout_sec", 30)),
        batch_size=int(t.get("batch_size", 3)),
        per_participant_limit=int(t.get("per_participant_limit", 120)),
    )


def playback_settings(cfg: Dict[str, Any]) -> PlaybackSettings:
    return PlaybackSettings(**(cfg.get("playback", {}) or {}))


def load_participants(cfg: Dict[str, Any]) -> List[Participant]:
    out = [Participant(**p) for p in (cfg.get("participants") or [])]
    ids = [p.id for p in out]
    if len(set(ids)) != len(ids):
        raise ValueError("participants: duplicate id")
    return out


def load_markers(path: str | Path) -> List[Marker]:
    """
    Marker table is a YAML list of {id, x, y}; a top-level `markers:` key is
    also accepted. Relative paths resolve against the repo root.
    """
    p = Path(path)
    if not p.is_absolute():
        p = REPO_ROOT / p
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or []
    if isinstance(data, dict):
        data = data.get("markers", []) or []
    return [Marker(id=int(m["id"]), position=(float(m["x"]), float(m["y"]))) for m in data]
