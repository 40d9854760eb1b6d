"""Turn a station configuration into ffmpeg process arguments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from .models import AudioSource, Destination, StationConfig
from .playlist import read_manifest


class PipelineError(RuntimeError):
    """Base class for pipeline failures."""


class PreconditionError(PipelineError):
    """The station cannot be launched until its configuration is fixed."""


class StationNotFoundError(PreconditionError):
    pass


class NoAudioSourceError(PreconditionError):
    pass


class NoDestinationError(PreconditionError):
    pass


class PlaylistMissingError(PreconditionError):
    pass


@dataclass(frozen=True)
class ProcessSpec:
    """One process to spawn."""

    executable: str
    args: Tuple[str, ...]
    tag: str = "ffmpeg"

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]


@dataclass(frozen=True)
class FeederPlan:
    """Decode stage of a split pipeline: one process per manifest entry."""

    executable: str
    inputs: Tuple[Path, ...]
    pre_input: Tuple[str, ...]
    post_input: Tuple[str, ...]
    tag: str = "feeder"

    def specs(self) -> Iterator[ProcessSpec]:
        for path in self.inputs:
            yield ProcessSpec(
                self.executable,
                (*self.pre_input, "-i", str(path), *self.post_input),
                tag=self.tag,
            )


@dataclass(frozen=True)
class LaunchPlan:
    primary: ProcessSpec
    feeder: Optional[FeederPlan] = None
    audio_source: Optional[AudioSource] = None
    destinations: Tuple[Destination, ...] = ()


def select_audio_source(config: StationConfig) -> AudioSource:
    """The enabled source with the lowest priority number."""
    enabled = [source for source in config.audio_sources if source.enabled]
    if not enabled:
        raise NoAudioSourceError("No enabled audio source")
    return min(enabled, key=lambda source: source.priority)


def select_destinations(config: StationConfig) -> List[Destination]:
    enabled = [dest for dest in config.destinations if dest.enabled]
    if not enabled:
        raise NoDestinationError("No enabled destinations")
    return enabled


def check_preconditions(config: StationConfig) -> Tuple[AudioSource, List[Destination]]:
    return select_audio_source(config), select_destinations(config)


def double_bitrate(bitrate: str) -> str:
    """``"4000k"`` -> ``"8000k"``; used for the rate-control buffer size."""
    match = re.match(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$", bitrate)
    if not match:
        return bitrate
    value = float(match.group(1)) * 2
    number = str(int(value)) if value.is_integer() else f"{value:g}"
    return f"{number}{match.group(2)}"


def normalize_filters(config: StationConfig) -> List[str]:
    """Frame-rate normalization followed by letterboxing to the target size."""
    video = config.video
    return [
        f"fps={video.fps}",
        f"scale={video.width}:{video.height}:force_original_aspect_ratio=decrease",
        f"pad={video.width}:{video.height}:(ow-iw)/2:(oh-ih)/2",
        "setsar=1",
    ]


def video_filter(config: StationConfig, overlay: Sequence[str]) -> str:
    return ",".join([*normalize_filters(config), *overlay])


def encoder_args(config: StationConfig) -> List[str]:
    video = config.video
    audio = config.audio
    return [
        "-fps_mode", "cfr",
        "-c:v", "libx264", "-preset", "veryfast", "-tune", "zerolatency",
        "-b:v", video.bitrate,
        "-maxrate", video.bitrate,
        "-bufsize", double_bitrate(video.bitrate),
        "-r", str(video.fps),
        # keyframe every two seconds, as livestream ingests expect
        "-g", str(video.fps * 2),
        "-keyint_min", str(video.fps),
        "-pix_fmt", "yuv420p",
        "-max_muxing_queue_size", "4096",
        "-c:a", "aac", "-b:a", audio.bitrate, "-ar", str(audio.sample_rate),
        "-flags", "+global_header",
    ]


def output_args(destinations: Sequence[Destination]) -> List[str]:
    """Direct FLV for one destination, a tee fan-out for several."""
    if len(destinations) == 1:
        return ["-f", "flv", "-flvflags", "no_duration_filesize", destinations[0].full_url]
    branches = "|".join(
        f"[f=flv:flvflags=no_duration_filesize:onfail=ignore]{dest.full_url}" for dest in destinations
    )
    return ["-f", "tee", branches]


def _require_manifest(manifest: Path) -> None:
    if not manifest.is_file():
        raise PlaylistMissingError(f"Playlist file not found: {manifest}")
    if manifest.stat().st_size == 0:
        raise PlaylistMissingError("Playlist is empty")


def build_single_plan(
    config: StationConfig,
    manifest: Path,
    overlay: Sequence[str],
    *,
    ffmpeg: str = "ffmpeg",
) -> LaunchPlan:
    """One ffmpeg reading the concat manifest and the live audio."""
    audio_source, destinations = check_preconditions(config)
    _require_manifest(manifest)

    args = [
        "-hide_banner", "-nostdin",
        "-fflags", "+genpts+discardcorrupt+igndts",
        "-probesize", "50M",
        "-analyzeduration", "10M",
        "-re",
        "-f", "concat", "-safe", "0", "-auto_convert", "1",
        "-i", str(manifest),
        "-thread_queue_size", "4096",
        "-i", audio_source.url,
        "-map", "0:v", "-map", "1:a",
        "-vf", video_filter(config, overlay),
        *encoder_args(config),
        *output_args(destinations),
    ]
    return LaunchPlan(
        primary=ProcessSpec(ffmpeg, tuple(args)),
        audio_source=audio_source,
        destinations=tuple(destinations),
    )


def build_split_plan(
    config: StationConfig,
    manifest: Path,
    overlay: Sequence[str],
    *,
    ffmpeg: str = "ffmpeg",
) -> LaunchPlan:
    """A per-item decode stage piped as MPEG-TS into a publishing encoder."""
    audio_source, destinations = check_preconditions(config)
    _require_manifest(manifest)
    inputs = read_manifest(manifest)
    if not inputs:
        raise PlaylistMissingError("Playlist is empty")

    feeder = FeederPlan(
        executable=ffmpeg,
        inputs=tuple(inputs),
        pre_input=("-hide_banner", "-nostdin", "-loglevel", "warning", "-re"),
        post_input=(
            "-map", "0:v:0", "-an",
            "-vf", ",".join(normalize_filters(config)),
            "-c:v", "libx264", "-preset", "ultrafast", "-crf", "18",
            "-f", "mpegts", "pipe:1",
        ),
    )

    args = [
        "-hide_banner",
        "-fflags", "+genpts+discardcorrupt+igndts",
        "-f", "mpegts",
        "-thread_queue_size", "4096",
        "-i", "pipe:0",
        "-thread_queue_size", "4096",
        "-i", audio_source.url,
        "-map", "0:v", "-map", "1:a",
    ]
    if overlay:
        args += ["-vf", ",".join(overlay)]
    args += [*encoder_args(config), *output_args(destinations)]

    return LaunchPlan(
        primary=ProcessSpec(ffmpeg, tuple(args)),
        feeder=feeder,
        audio_source=audio_source,
        destinations=tuple(destinations),
    )


def build_snapshot_args(
    config: StationConfig,
    manifest: Path,
    overlay: Sequence[str],
    output: Path,
) -> List[str]:
    """Arguments rendering one still frame of the station output."""
    _require_manifest(manifest)
    return [
        "-hide_banner", "-nostdin", "-y",
        "-f", "concat", "-safe", "0",
        "-i", str(manifest),
        "-vf", video_filter(config, overlay),
        "-frames:v", "1",
        "-update", "1",
        "-q:v", "2",
        str(output),
    ]


def build_destination_test_args(destination: Destination, *, duration: int = 10) -> List[str]:
    """Arguments pushing a short labelled test pattern to one destination."""
    banner = (
        "drawtext=text='TEST STREAM':fontsize=60:fontcolor=red:x=(w-tw)/2:y=(h-th)/2"
        ":box=1:boxcolor=black@0.7:boxborderw=10"
    )
    return [
        "-hide_banner", "-nostdin", "-y",
        "-f", "lavfi", "-i", f"testsrc2=duration={duration}:size=1280x720:rate=30",
        "-f", "lavfi", "-i", f"sine=frequency=440:duration={duration}",
        "-vf", banner,
        "-c:v", "libx264", "-preset", "ultrafast", "-b:v", "1000k",
        "-c:a", "aac", "-b:a", "128k",
        *output_args([destination]),
    ]
