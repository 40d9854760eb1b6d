#!/usr/bin/env python3
"""Test now-playing parsing, publishing and polling."""

import asyncio
import sys
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from aiohttp import web
from aiohttp import test_utils

from loopcast.diagnostics import check_audio_source
from loopcast.events import PipelineEvents
from loopcast.models import NowPlayingMode, NowPlayingSource, TrackInfo
from loopcast.nowplaying import (
    PLACEHOLDER,
    NowPlayingPoller,
    parse_combined,
    probe_now_playing,
    source_url,
    track_from_azuracast,
    track_from_icecast,
)
from loopcast.storage import StationPaths


def test_parse_combined():
    assert parse_combined("Daft Punk - One More Time") == TrackInfo("Daft Punk", "One More Time")
    # only the first separator splits
    assert parse_combined("A - B - C") == TrackInfo("A", "B - C")
    assert parse_combined("Station Jingle") == TrackInfo("", "Station Jingle")
    assert parse_combined("  ") == TrackInfo()
    assert parse_combined(None).is_empty


def test_track_combined_text():
    assert TrackInfo("Artist", "Title").combined == "Artist - Title"
    assert TrackInfo("", "Title").combined == "Title"
    assert TrackInfo("Artist", "").combined == "Artist"


def test_azuracast_payload():
    data = {"now_playing": {"song": {"artist": "Boards of Canada", "title": "Dayvan Cowboy"}}}
    assert track_from_azuracast(data) == TrackInfo("Boards of Canada", "Dayvan Cowboy")

    data = {"now_playing": {"song": {"artist": "", "title": "", "text": "Air - La femme d'argent"}}}
    assert track_from_azuracast(data) == TrackInfo("Air", "La femme d'argent")

    assert track_from_azuracast({"now_playing": None}).is_empty
    assert track_from_azuracast([]).is_empty


def test_icecast_payload():
    data = {"icestats": {"source": [{"title": "Moby - Porcelain"}, {"title": "other"}]}}
    assert track_from_icecast(data) == TrackInfo("Moby", "Porcelain")

    data = {"icestats": {"source": {"artist": "Moby", "title": "Porcelain"}}}
    assert track_from_icecast(data) == TrackInfo("Moby", "Porcelain")

    assert track_from_icecast({"icestats": {}}).is_empty


def test_source_url():
    source = NowPlayingSource(url="https://radio.example/", station="main")
    assert source_url(source) == "https://radio.example/api/nowplaying/main"
    icecast = NowPlayingSource(mode=NowPlayingMode.ICECAST, url="http://ice:8000/status-json.xsl")
    assert source_url(icecast) == "http://ice:8000/status-json.xsl"


def test_publish_only_on_change():
    with TemporaryDirectory() as tmpdir:
        files = StationPaths(Path(tmpdir)).ensure().now_playing_files()
        events = PipelineEvents()
        published = []
        events.on_now_playing(lambda station_id, track: published.append((station_id, track)))
        poller = NowPlayingPoller("st1", NowPlayingSource(), files, events)

        poller.seed()
        assert files.combined.read_text() == PLACEHOLDER
        assert files.artist.read_text() == ""

        assert poller.publish(TrackInfo("Artist", "Song"))
        assert not poller.publish(TrackInfo("Artist", "Song"))
        assert files.combined.read_text() == "Artist - Song"
        assert files.artist.read_text() == "Artist"
        assert files.title.read_text() == "Song"

        assert poller.publish(TrackInfo())
        assert files.combined.read_text() == "No track info"
        assert files.title.read_text() == "No track info"
        assert files.artist.read_text() == ""
        assert published == [("st1", "Artist - Song"), ("st1", "No track info")]


def _radio_app(state: dict) -> web.Application:
    async def nowplaying(request):
        if state.get("fail"):
            return web.Response(status=500, text="boom")
        return web.json_response({"now_playing": {"song": {"artist": state["artist"], "title": state["title"]}}})

    async def stream(request):
        return web.Response(body=b"", content_type="audio/mpeg")

    app = web.Application()
    app.router.add_get("/api/nowplaying/main", nowplaying)
    app.router.add_get("/radio.mp3", stream)
    return app


def test_probe_and_poll():
    async def scenario(tmp: Path):
        state = {"artist": "Caribou", "title": "Sun"}
        server = test_utils.TestServer(_radio_app(state))
        await server.start_server()
        try:
            base = str(server.make_url("/"))
            source = NowPlayingSource(url=base, station="main", poll_interval=0.05)

            probe = await probe_now_playing(source)
            assert probe.success
            assert probe.track == TrackInfo("Caribou", "Sun")
            assert probe.raw["now_playing"]["song"]["title"] == "Sun"

            files = StationPaths(tmp).ensure().now_playing_files()
            events = PipelineEvents()
            logged = []
            events.on_log(lambda event: logged.append(event))
            poller = NowPlayingPoller("st1", source, files, events, timeout=2.0)
            poller.seed()
            await poller.start()
            try:
                for _ in range(100):
                    if files.combined.read_text() == "Caribou - Sun":
                        break
                    await asyncio.sleep(0.02)
                assert files.combined.read_text() == "Caribou - Sun"

                state["title"] = "Odessa"
                for _ in range(100):
                    if files.title.read_text() == "Odessa":
                        break
                    await asyncio.sleep(0.02)
                assert files.combined.read_text() == "Caribou - Odessa"

                state["fail"] = True
                for _ in range(100):
                    if logged:
                        break
                    await asyncio.sleep(0.02)
                assert logged[0].severity.value == "warn"
                assert logged[0].source == "nowplaying"
                # the last good track stays on screen
                assert files.combined.read_text() == "Caribou - Odessa"
            finally:
                await poller.stop()
            assert not poller.running

            failed = await probe_now_playing(source)
            assert not failed.success
            assert failed.error

            reachable = await check_audio_source(base + "radio.mp3")
            assert reachable.reachable
            assert reachable.error is None
            missing = await check_audio_source(base + "missing.mp3")
            assert not missing.reachable
            assert missing.error == "HTTP 404"
        finally:
            await server.close()

    with TemporaryDirectory() as tmpdir:
        asyncio.run(scenario(Path(tmpdir)))


def test_probe_without_url():
    probe = asyncio.run(probe_now_playing(NowPlayingSource()))
    assert not probe.success
    assert probe.error == "No now-playing URL configured"


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
