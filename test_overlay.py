#!/usr/bin/env python3
"""Test drawtext overlay construction."""

import asyncio
import os
import sys
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

import fake_ffmpeg
from loopcast.models import OverlayPosition, OverlayStyle
from loopcast.overlay import DrawtextSupport, build_overlay_filters, escape_path, escape_text
from loopcast.storage import StationPaths

FILES = StationPaths(Path("/srv/data/stations/demo")).now_playing_files()


def _option(clause: str, name: str) -> str:
    for part in clause.split(":"):
        if part.startswith(name + "="):
            return part[len(name) + 1:]
    raise AssertionError(f"{name} missing from {clause}")


def test_escape_text():
    assert escape_text("AC/DC: Live") == "AC/DC\\: Live"
    assert escape_text("Don't Stop") == "Don'\\''t Stop"
    assert escape_text("back\\slash") == "back\\\\slash"
    assert escape_text("plain") == "plain"


def test_escape_path():
    assert escape_path("/data/it's.txt") == "/data/it'\\\\''s.txt"
    assert escape_path("C:/fonts/a.ttf") == "C\\\\:/fonts/a.ttf"


def _unescape_level(value: str) -> str:
    out = []
    chars = iter(value)
    for char in chars:
        out.append(next(chars, "") if char == "\\" else char)
    return "".join(out)


def _unescape_text(value: str) -> str:
    return _unescape_level(value.replace("'\\''", "'"))


def _unescape_path(value: str) -> str:
    return _unescape_level(_unescape_level(value.replace("'\\\\''", "'")))


def _between(clause: str, start: str, end: str) -> str:
    head = clause.index(start) + len(start)
    return clause[head:clause.index(end, head)]


def test_escaping_round_trip():
    label = "Jazz: Late 'n' Live"
    files = StationPaths(Path("/srv/st:1/o'clock")).now_playing_files()
    label_clause, artist_clause, _ = build_overlay_filters(OverlayStyle(label=label), files)

    assert _unescape_text(_between(label_clause, "text='", "':expansion=none")) == label
    assert _unescape_path(_between(artist_clause, "textfile='", "':reload=1")) == str(files.artist)


def test_bottom_stack_order_and_offsets():
    style = OverlayStyle(label="ON AIR")
    clauses = build_overlay_filters(style, FILES)
    assert len(clauses) == 3
    label, artist, title = clauses

    assert label.startswith("drawtext=text='ON AIR':expansion=none")
    assert "nowplaying_artist.txt" in artist
    assert "nowplaying_title.txt" in title

    # title sits on the margin, artist and label stack upwards
    assert _option(title, "y") == "h-th-20"
    assert _option(artist, "y") == "h-th-20-36"
    assert _option(label, "y") == "h-th-20-72"
    assert _option(label, "fontsize") == "22"
    assert _option(label, "fontcolor") == "yellow"
    assert _option(title, "x") == "20"
    assert "box=1" in title and "boxcolor=black@0.6" in title


def test_top_anchor_grows_downwards():
    style = OverlayStyle(position=OverlayPosition.TOP_RIGHT, label="Live", margin_x=10, margin_y=15)
    label, artist, title = build_overlay_filters(style, FILES)
    assert _option(label, "y") == "15"
    assert _option(artist, "y") == "15+30"
    assert _option(title, "y") == "15+66"
    assert _option(title, "x") == "w-tw-10"


def test_unstacked_uses_combined_file():
    style = OverlayStyle(position=OverlayPosition.BOTTOM_CENTER, stacked=False, bg_color="")
    clauses = build_overlay_filters(style, FILES)
    assert len(clauses) == 1
    assert "nowplaying.txt'" in clauses[0]
    assert "reload=1" in clauses[0]
    assert _option(clauses[0], "x") == "(w-tw)/2"
    assert "box=1" not in clauses[0]


def test_font_file_wins_over_family():
    style = OverlayStyle(font_family="DejaVu Sans", font_file="/fonts/brand.ttf")
    clause = build_overlay_filters(style, FILES, label="")[0]
    assert "fontfile='/fonts/brand.ttf'" in clause
    assert "font='" not in clause

    clause = build_overlay_filters(OverlayStyle(font_family="DejaVu Sans"), FILES)[0]
    assert "font='DejaVu Sans'" in clause


def test_disabled_overlay_is_empty():
    assert build_overlay_filters(OverlayStyle(enabled=False), FILES) == []
    assert build_overlay_filters(OverlayStyle(), FILES, drawtext_available=False) == []


def test_drawtext_detection():
    async def scenario(tmp: Path):
        ffmpeg = fake_ffmpeg.install(tmp)
        support = DrawtextSupport(str(ffmpeg))
        assert await support.available()
        assert await support.available()
        # probing is not a pipeline run
        assert fake_ffmpeg.runs(tmp) == []

        missing = DrawtextSupport(str(tmp / "no-such-ffmpeg"))
        assert not await missing.available()

    with TemporaryDirectory() as tmpdir:
        asyncio.run(scenario(Path(tmpdir)))


def test_hanging_drawtext_probe_times_out():
    async def scenario(tmp: Path):
        hanging = tmp / "ffmpeg"
        hanging.write_text("#!/bin/sh\nexec sleep 30\n")
        os.chmod(hanging, 0o755)

        support = DrawtextSupport(str(hanging), timeout=0.2)
        assert not await asyncio.wait_for(support.available(), timeout=5)

        # a timeout is not remembered; a working binary is detected afterwards
        fake_ffmpeg.install(tmp)
        assert await asyncio.wait_for(support.available(), timeout=5)

    with TemporaryDirectory() as tmpdir:
        asyncio.run(scenario(Path(tmpdir)))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
