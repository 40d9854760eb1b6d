"""Render a still frame of what a station would broadcast."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from .launch import PipelineError, build_snapshot_args
from .models import StationConfig
from .overlay import DrawtextSupport, build_overlay_filters
from .storage import StationPaths

logger = logging.getLogger(__name__)


class SnapshotError(PipelineError):
    """The one-off snapshot render failed."""


class SnapshotRenderer:
    """Runs a short-lived ffmpeg against the materialized playlist."""

    def __init__(self, ffmpeg_path: str, drawtext: DrawtextSupport, *, timeout: float = 30.0) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.drawtext = drawtext
        self.timeout = timeout

    async def render(self, config: StationConfig, paths: StationPaths) -> Path:
        files = paths.now_playing_files()
        have_text = all(path.exists() for path in (files.combined, files.artist, files.title))
        overlay = build_overlay_filters(
            config.overlay,
            files,
            drawtext_available=have_text and await self.drawtext.available(),
        )

        # one temp file per render so concurrent requests never share it;
        # the .jpg suffix tells ffmpeg which image muxer to use
        fd, tmp_name = tempfile.mkstemp(prefix=".snapshot.", suffix=".jpg", dir=paths.root)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            await self._run(config, build_snapshot_args(config, paths.playlist, overlay, tmp), tmp)
            os.replace(tmp, paths.snapshot)
        finally:
            tmp.unlink(missing_ok=True)
        return paths.snapshot

    async def _run(self, config: StationConfig, args, output: Path) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SnapshotError(f"Failed to start {self.ffmpeg_path}: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise SnapshotError(f"Snapshot timed out after {self.timeout:g}s")

        if process.returncode != 0 or not output.exists() or output.stat().st_size == 0:
            tail = stderr.decode(errors="replace").strip()[-500:]
            logger.error("Snapshot for %s failed (exit %s): %s", config.station_id, process.returncode, tail)
            raise SnapshotError(f"ffmpeg exited with code {process.returncode}: {tail}")
