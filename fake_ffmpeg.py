"""Shell-script stand-in for the ffmpeg binary, shared by the process tests."""

import os
from pathlib import Path

from loopcast.models import StationConfig
from loopcast.settings import Settings

# Behaviour is chosen by the contents of a "mode" file next to the script:
#   run    stay alive until terminated (default)
#   crash  report a refused connection and exit 1
# Every invocation except the drawtext probe appends its arguments to runs.log.
# A "-frames:v" invocation writes a fake image to its last argument.
SCRIPT = """#!/bin/sh
dir="$(dirname "$0")"
for arg in "$@"; do
  if [ "$arg" = "-filters" ]; then
    echo " T.C drawtext          V->V       Draw text on top of video frames"
    exit 0
  fi
done
echo "$*" >> "$dir/runs.log"
mode="run"
if [ -f "$dir/mode" ]; then
  mode="$(cat "$dir/mode")"
fi
if [ "$mode" = "crash" ]; then
  echo "rtmp://example: Connection refused" >&2
  exit 1
fi
last=""
snapshot=0
for arg in "$@"; do
  last="$arg"
  if [ "$arg" = "-frames:v" ]; then
    snapshot=1
  fi
done
if [ "$snapshot" = "1" ]; then
  printf 'JPEG' > "$last"
  exit 0
fi
echo "frame=  100 fps= 30 q=23.0 size=    1024kB time=00:00:03.33 bitrate=2500.0kbits/s speed=1.0x" >&2
exec sleep 30
"""


def install(directory: Path, mode: str = "run") -> Path:
    """Write the fake ffmpeg into ``directory`` and return its path."""
    script = directory / "ffmpeg"
    script.write_text(SCRIPT)
    os.chmod(script, 0o755)
    set_mode(directory, mode)
    return script


def set_mode(directory: Path, mode: str) -> None:
    (directory / "mode").write_text(mode)


def runs(directory: Path) -> list:
    log = directory / "runs.log"
    if not log.exists():
        return []
    return [line for line in log.read_text().splitlines() if line.strip()]


def settings_for(directory: Path, ffmpeg: Path, **overrides) -> Settings:
    values = dict(
        data_dir=directory / "data",
        uploads_dir=directory / "uploads",
        ffmpeg_path=str(ffmpeg),
        settle_delay=0.05,
        stop_grace=1.0,
    )
    values.update(overrides)
    return Settings(**values)


def station(station_id: str = "st1", **overrides) -> StationConfig:
    """A launchable station with two short items, one audio source and one destination."""
    data = {
        "id": station_id,
        "slug": f"{station_id}-slug",
        "name": "Test Station",
        "playlist": [
            {"filename": "intro.mp4", "duration": 60, "sort_order": 0},
            {"filename": "loop.mp4", "duration": 120, "sort_order": 1},
        ],
        "audio_sources": [{"url": "http://127.0.0.1:9/radio.mp3", "name": "main"}],
        "destinations": [{"url": "rtmp://127.0.0.1/live", "stream_key": "abc"}],
    }
    data.update(overrides)
    return StationConfig.from_dict(data)
