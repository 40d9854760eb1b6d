#!/usr/bin/env python3
"""Test station configuration loading, settings and event fan-out."""

import json
import sys
from dataclasses import FrozenInstanceError
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from loopcast.events import LogBook, PipelineEvents, Severity
from loopcast.models import NowPlayingMode, OverlayPosition, PipelineState, StationConfig
from loopcast.settings import Settings
from loopcast.store import JsonStationStore, MemoryStationStore


def test_from_dict_defaults():
    config = StationConfig.from_dict({"id": 7})
    assert config.station_id == "7"
    assert config.slug == "7"
    assert (config.video.width, config.video.height, config.video.fps) == (1920, 1080, 30)
    assert config.video.bitrate == "4000k"
    assert (config.audio.bitrate, config.audio.sample_rate) == ("192k", 44100)
    assert config.overlay.position is OverlayPosition.BOTTOM_LEFT
    assert config.overlay.font_size == 28
    assert config.now_playing.mode is NowPlayingMode.AZURACAST
    assert config.now_playing.poll_interval == 5.0
    assert config.restart.auto_restart
    assert (config.restart.base_delay, config.restart.max_attempts) == (5.0, 10)
    assert config.playlist == ()


def test_config_snapshot_is_immutable():
    config = StationConfig.from_dict({"id": "a", "playlist": [{"filename": "x.mp4"}]})
    with pytest.raises(FrozenInstanceError):
        config.slug = "other"
    assert isinstance(config.playlist, tuple)


def test_json_store():
    with TemporaryDirectory() as tmpdir:
        directory = Path(tmpdir) / "config"
        store = JsonStationStore(directory)
        (directory / "st1.json").write_text(json.dumps({
            "slug": "morning",
            "overlay": {"position": "top-center", "label": "LIVE"},
            "now_playing": {"mode": "icecast", "url": "http://ice/status-json.xsl"},
            "destinations": [{"url": "rtmp://a/live", "stream_key": "k"}],
        }))

        config = store.get("st1")
        assert config.station_id == "st1"
        assert config.overlay.position is OverlayPosition.TOP_CENTER
        assert config.now_playing.mode is NowPlayingMode.ICECAST
        assert config.destinations[0].full_url == "rtmp://a/live/k"
        assert store.get_slug("st1") == "morning"
        assert store.ids() == ["st1"]

        assert store.get("missing") is None
        assert store.get("../../etc/passwd") is None


def test_memory_store():
    store = MemoryStationStore()
    store.put(StationConfig.from_dict({"id": "b", "slug": "bee"}))
    assert store.get_slug("b") == "bee"
    store.remove("b")
    assert store.get("b") is None


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("LOOPCAST_DATA_DIR", "/var/lib/loopcast")
    monkeypatch.setenv("LOOPCAST_PIPELINE_MODE", "split")
    monkeypatch.setenv("LOOPCAST_BACKOFF_CAP", "30")
    monkeypatch.setenv("LOOPCAST_PORT", "9000")
    settings = Settings.load()
    assert settings.data_dir == Path("/var/lib/loopcast")
    assert settings.config_dir == Path("/var/lib/loopcast/config")
    assert settings.pipeline_mode == "split"
    assert settings.backoff_cap == 30.0
    assert settings.backoff_factor == 1.5
    assert settings.port == 9000

    with pytest.raises(ValueError):
        Settings(pipeline_mode="parallel")


def test_failing_listener_does_not_block_others():
    events = PipelineEvents()
    received = []

    def broken(station_id, state):
        raise RuntimeError("listener bug")

    events.on_status_change(broken)
    unsubscribe = events.on_status_change(lambda station_id, state: received.append((station_id, state)))
    events.emit_status("st1", PipelineState.RUNNING)
    assert received == [("st1", PipelineState.RUNNING)]

    unsubscribe()
    events.emit_status("st1", PipelineState.STOPPED)
    assert len(received) == 1


def test_logbook_keeps_recent_events():
    events = PipelineEvents()
    book = LogBook(limit=3)
    book.attach(events)
    for number in range(5):
        events.emit_log("st1", Severity.INFO, "app", f"line {number}")
    events.emit_log("st2", Severity.ERROR, "ffmpeg", "other")

    assert [event.message for event in book.recent("st1")] == ["line 2", "line 3", "line 4"]
    assert [event.message for event in book.recent("st1", limit=1)] == ["line 4"]
    assert book.recent("st2")[0].to_dict()["level"] == "error"
    book.forget("st1")
    assert book.recent("st1") == []


def test_logbook_filters_by_level():
    events = PipelineEvents()
    book = LogBook()
    book.attach(events)
    events.emit_log("st1", Severity.INFO, "app", "starting")
    events.emit_log("st1", Severity.ERROR, "ffmpeg", "Connection refused")
    events.emit_log("st1", Severity.DEBUG, "ffmpeg", "frame=1")
    events.emit_log("st1", Severity.ERROR, "app", "ffmpeg exited with code 1")

    errors = book.recent("st1", severity=Severity.ERROR)
    assert [event.message for event in errors] == ["Connection refused", "ffmpeg exited with code 1"]
    # the limit applies after filtering
    assert [event.message for event in book.recent("st1", limit=1, severity=Severity.ERROR)] == [
        "ffmpeg exited with code 1"
    ]
    assert book.recent("st1", severity=Severity.WARNING) == []
    book.forget("st1")
    assert book.recent("st1") == []


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
