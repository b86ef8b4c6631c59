import pytest

from common.config import (
    load_config, load_markers, load_participants, playback_settings, telemetry_settings,
)


def test_repo_config_loads():
    cfg = load_config()
    tele = telemetry_settings(cfg)
    assert tele.session_key == 9149
    assert tele.window_start == "2023-08-27T12:58:56.200"
    assert (tele.batch_size, tele.per_participant_limit) == (3, 120)
    pb = playback_settings(cfg)
    assert (pb.tick_ms, pb.blink_ms, pb.refill_delay_ms) == (10, 100, 334)
    assert len(load_participants(cfg)) == 20
    assert len(load_markers(cfg["track"]["markers_file"])) == 24


def test_missing_file_falls_back_to_defaults(tmp_path):
    cfg = load_config(tmp_path / "absent.yaml")
    assert cfg["telemetry"]["base_url"] == "https://api.openf1.org/v1"
    assert cfg["participants"] == []


def test_partial_file_merges_over_defaults(tmp_path, monkeypatch):
    p = tmp_path / "c.yaml"
    p.write_text("playback:\n  blink_ms: 250\nruntime:\n  log_level: DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("REPLAY_REDIS_URL", "redis://cache:6379/2")
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    cfg = load_config(p)
    assert cfg["playback"] == {"tick_ms": 10, "blink_ms": 250, "refill_delay_ms": 334}
    assert cfg["runtime"]["log_level"] == "DEBUG"
    assert cfg["runtime"]["redis_url"] == "redis://cache:6379/2"


def test_participants_validated():
    with pytest.raises(ValueError):
        load_participants({"participants": [{"id": 1, "color": [0, 0, 0]}, {"id": 1, "color": [1, 1, 1]}]})
    with pytest.raises(ValueError):
        load_participants({"participants": [{"id": 1, "color": [0, 0, 300]}]})


def test_marker_list_without_wrapper(tmp_path):
    p = tmp_path / "t.yaml"
    p.write_text("- {id: 4, x: 1.5, y: -2}\n- {id: 9, x: 0, y: 0}\n", encoding="utf-8")
    markers = load_markers(p)
    assert [(m.id, m.position) for m in markers] == [(4, (1.5, -2.0)), (9, (0.0, 0.0))]
