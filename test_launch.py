#!/usr/bin/env python3
"""Test ffmpeg argument construction."""

import sys
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

import fake_ffmpeg
from loopcast.launch import (
    NoAudioSourceError,
    NoDestinationError,
    PlaylistMissingError,
    build_single_plan,
    build_snapshot_args,
    build_split_plan,
    double_bitrate,
    output_args,
    select_audio_source,
)
from loopcast.models import Destination
from loopcast.playlist import quote_entry

OVERLAY = ["drawtext=text='X':x=20:y=h-th-20"]


def _value(args, flag):
    return args[args.index(flag) + 1]


def _manifest(directory: Path, *names: str) -> Path:
    manifest = directory / "playlist.txt"
    manifest.write_text("".join(quote_entry(directory / name) + "\n" for name in names))
    return manifest


def test_audio_source_priority():
    config = fake_ffmpeg.station(
        audio_sources=[
            {"url": "http://backup/stream", "priority": 1},
            {"url": "http://disabled/stream", "priority": 0, "enabled": False},
            {"url": "http://main/stream", "priority": 0},
        ]
    )
    assert select_audio_source(config).url == "http://main/stream"

    with pytest.raises(NoAudioSourceError, match="No enabled audio source"):
        select_audio_source(fake_ffmpeg.station(audio_sources=[{"url": "http://x", "enabled": False}]))


def test_output_args():
    single = output_args([Destination("rtmp://a.example/live", "key1")])
    assert single == ["-f", "flv", "-flvflags", "no_duration_filesize", "rtmp://a.example/live/key1"]

    tee = output_args([Destination("rtmp://a.example/live", "key1"), Destination("rtmp://b.example/app/")])
    assert tee[:2] == ["-f", "tee"]
    assert tee[2] == (
        "[f=flv:flvflags=no_duration_filesize:onfail=ignore]rtmp://a.example/live/key1"
        "|[f=flv:flvflags=no_duration_filesize:onfail=ignore]rtmp://b.example/app/"
    )


def test_double_bitrate():
    assert double_bitrate("4000k") == "8000k"
    assert double_bitrate("1.5M") == "3M"
    assert double_bitrate("weird") == "weird"


def test_single_plan():
    with TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        config = fake_ffmpeg.station(
            video={"width": 1280, "height": 720, "fps": 25, "bitrate": "2500k"},
            destinations=[
                {"url": "rtmp://a/live", "stream_key": "k"},
                {"url": "rtmp://off/live", "enabled": False},
            ],
        )
        plan = build_single_plan(config, _manifest(tmp, "a.mp4"), OVERLAY, ffmpeg="/usr/bin/ffmpeg")
        args = list(plan.primary.args)

        assert plan.primary.argv[0] == "/usr/bin/ffmpeg"
        assert plan.feeder is None
        assert [dest.url for dest in plan.destinations] == ["rtmp://a/live"]
        assert _value(args, "-f") == "concat"
        assert _value(args, "-safe") == "0"
        assert args.index("-re") < args.index(str(tmp / "playlist.txt"))
        assert _value(args, "-vf") == (
            "fps=25,scale=1280:720:force_original_aspect_ratio=decrease,"
            "pad=1280:720:(ow-iw)/2:(oh-ih)/2,setsar=1," + OVERLAY[0]
        )
        assert _value(args, "-fps_mode") == "cfr"
        assert _value(args, "-g") == "50"
        assert _value(args, "-bufsize") == "5000k"
        assert _value(args, "-ar") == "44100"
        assert args[-1] == "rtmp://a/live/k"


def test_missing_inputs():
    with TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        config = fake_ffmpeg.station()
        with pytest.raises(PlaylistMissingError, match="not found"):
            build_single_plan(config, tmp / "playlist.txt", [])
        with pytest.raises(NoDestinationError):
            build_single_plan(fake_ffmpeg.station(destinations=[]), _manifest(tmp, "a.mp4"), [])


def test_split_plan():
    with TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        plan = build_split_plan(fake_ffmpeg.station(), _manifest(tmp, "a.mp4", "b.mp4"), OVERLAY)

        primary = list(plan.primary.args)
        assert _value(primary, "-i") == "pipe:0"
        assert _value(primary, "-vf") == OVERLAY[0]
        assert "http://127.0.0.1:9/radio.mp3" in primary

        specs = list(plan.feeder.specs())
        assert [_value(list(spec.args), "-i") for spec in specs] == [str(tmp / "a.mp4"), str(tmp / "b.mp4")]
        feeder_args = list(specs[0].args)
        assert specs[0].tag == "feeder"
        assert feeder_args[-3:] == ["-f", "mpegts", "pipe:1"]
        assert _value(feeder_args, "-vf").startswith("fps=30,scale=1920:1080")


def test_split_plan_without_overlay():
    with TemporaryDirectory() as tmpdir:
        plan = build_split_plan(fake_ffmpeg.station(), _manifest(Path(tmpdir), "a.mp4"), [])
        assert "-vf" not in plan.primary.args


def test_snapshot_args():
    with TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        args = build_snapshot_args(fake_ffmpeg.station(), _manifest(tmp, "a.mp4"), [], tmp / "out.jpg")
        assert _value(args, "-frames:v") == "1"
        assert args[-1] == str(tmp / "out.jpg")


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
