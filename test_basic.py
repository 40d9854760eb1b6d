#!/usr/bin/env python3
"""Basic smoke test for loopcast package imports."""

import sys
from pathlib import Path


def test_imports():
    """Test that all modules can be imported."""
    from loopcast import StationSupervisor, Settings, MemoryStationStore
    from loopcast.cli import cli
    from loopcast.diagnostics import check_audio_source, check_destination
    from loopcast.launch import build_single_plan, build_split_plan
    from loopcast.nowplaying import NowPlayingPoller
    from loopcast.overlay import build_overlay_filters
    from loopcast.pipeline import StationPipeline
    from loopcast.playlist import PlaylistMaterializer
    from loopcast.process import ProcessGroup
    from loopcast.server import create_app
    from loopcast.snapshot import SnapshotRenderer

    assert callable(cli)
    assert callable(create_app)


def test_basic_creation():
    """Test that basic objects can be created."""
    from loopcast import MemoryStationStore, PipelineState, Settings, StationSupervisor

    settings = Settings(data_dir=Path("/tmp/loopcast-data"), uploads_dir=Path("/tmp/loopcast-uploads"))
    supervisor = StationSupervisor(MemoryStationStore(), settings)
    assert supervisor.get_all_statuses() == {}
    status = supervisor.get_status("nothing")
    assert status.state is PipelineState.STOPPED
    assert status.restart_count == 0


if __name__ == "__main__":
    import pytest

    sys.exit(pytest.main([__file__, "-v"]))
