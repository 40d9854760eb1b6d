"""Build drawtext filter clauses for the now-playing overlay."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .models import OverlayPosition, OverlayStyle
from .storage import NowPlayingFiles

logger = logging.getLogger(__name__)

# Vertical gap between stacked lines, in pixels.
LINE_GAP = 8


def escape_text(value: str) -> str:
    """Escape a literal string used as a quoted ``text=`` argument."""
    return value.replace("\\", "\\\\").replace("'", "'\\''").replace(":", "\\:")


def escape_path(path: Union[str, Path]) -> str:
    """Escape a file path used as a quoted ``textfile=``/``fontfile=`` argument."""
    return str(path).replace("\\", "\\\\\\\\").replace(":", "\\\\:").replace("'", "'\\\\''")


@dataclass(frozen=True)
class _Line:
    source: str  # complete text=/textfile= option
    font_size: int
    font_color: str
    offset: int


def _x_expr(position: OverlayPosition, margin_x: int) -> str:
    horizontal = position.horizontal
    if horizontal == "center":
        return "(w-tw)/2"
    if horizontal == "right":
        return f"w-tw-{margin_x}"
    return str(margin_x)


def _y_expr(position: OverlayPosition, margin_y: int, offset: int) -> str:
    if position.is_top:
        return f"{margin_y}+{offset}" if offset else str(margin_y)
    return f"h-th-{margin_y}-{offset}" if offset else f"h-th-{margin_y}"


def _font_options(style: OverlayStyle, size: int, color: str) -> List[str]:
    options = [f"fontsize={size}", f"fontcolor={color}"]
    if style.font_file:
        options.append(f"fontfile='{escape_path(style.font_file)}'")
    elif style.font_family:
        options.append(f"font='{escape_text(style.font_family)}'")
    options.append(f"shadowx={style.shadow_x}")
    options.append(f"shadowy={style.shadow_y}")
    options.append(f"borderw={style.outline_width}")
    if style.bg_color:
        options.extend(["box=1", f"boxcolor={style.bg_color}", "boxborderw=8"])
    return options


def _layout(style: OverlayStyle, files: NowPlayingFiles, label: str) -> List[_Line]:
    """Lines from top to bottom with their offset from the anchor."""
    track_step = style.font_size + LINE_GAP
    label_step = style.label_font_size + LINE_GAP

    if style.stacked:
        track_sources = [
            f"textfile='{escape_path(files.artist)}':reload=1",
            f"textfile='{escape_path(files.title)}':reload=1",
        ]
    else:
        track_sources = [f"textfile='{escape_path(files.combined)}':reload=1"]

    label_source = f"text='{escape_text(label)}':expansion=none" if label else None
    lines: List[_Line] = []

    if style.position.is_top:
        offset = 0
        if label_source:
            lines.append(_Line(label_source, style.label_font_size, style.label_font_color, offset))
            offset += label_step
        for source in track_sources:
            lines.append(_Line(source, style.font_size, style.font_color, offset))
            offset += track_step
        return lines

    # bottom anchors grow upwards from the last track line
    offset = track_step * (len(track_sources) - 1)
    if label_source:
        lines.append(_Line(label_source, style.label_font_size, style.label_font_color, offset + track_step))
    for source in track_sources:
        lines.append(_Line(source, style.font_size, style.font_color, offset))
        offset -= track_step
    return lines


def build_overlay_filters(
    style: OverlayStyle,
    files: NowPlayingFiles,
    label: Optional[str] = None,
    *,
    drawtext_available: bool = True,
) -> List[str]:
    """
    Build drawtext clauses for the overlay.

    Args:
        style: Overlay styling from the station configuration
        files: Live now-playing text files
        label: Static label; defaults to ``style.label``
        drawtext_available: Whether the ffmpeg build can draw text

    Returns:
        Filter clauses ordered from the topmost line down, or an empty list
    """
    if not style.enabled or not drawtext_available:
        return []

    label = style.label if label is None else label
    x = _x_expr(style.position, style.margin_x)
    clauses = []
    for line in _layout(style, files, label):
        y = _y_expr(style.position, style.margin_y, line.offset)
        options = [line.source, f"x={x}", f"y={y}", *_font_options(style, line.font_size, line.font_color)]
        clauses.append("drawtext=" + ":".join(options))
    return clauses


class DrawtextSupport:
    """Detects once whether the configured ffmpeg ships the drawtext filter."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", *, timeout: float = 10.0) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self._supported: Optional[bool] = None
        self._lock = asyncio.Lock()

    async def available(self) -> bool:
        if self._supported is not None:
            return self._supported
        async with self._lock:
            if self._supported is not None:
                return self._supported
            supported = await self._probe()
            # a probe that timed out is asked again next time
            if supported is not None:
                self._supported = supported
        return bool(supported)

    def invalidate(self) -> None:
        """Forget the cached answer, e.g. after ffmpeg was upgraded."""
        self._supported = None

    async def _probe(self) -> Optional[bool]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-hide_banner",
                "-filters",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("Could not run %s to list filters: %s", self.ffmpeg_path, exc)
            return False

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(
                "%s did not list its filters within %.1fs; overlays are skipped for now",
                self.ffmpeg_path,
                self.timeout,
            )
            return None

        supported = b"drawtext" in stdout
        if not supported:
            logger.warning(
                "ffmpeg has no drawtext filter; overlays are disabled. "
                "Build ffmpeg with --enable-libfreetype for overlay support."
            )
        return supported
