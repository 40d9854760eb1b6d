"""On-demand checks of a station's external dependencies."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp

from .launch import build_destination_test_args
from .models import Destination

logger = logging.getLogger(__name__)


@dataclass
class SourceCheck:
    reachable: bool
    latency_ms: int
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"reachable": self.reachable, "latency_ms": self.latency_ms, "error": self.error}


async def check_audio_source(url: str, timeout: float = 10.0) -> SourceCheck:
    """
    Probe an audio stream URL with a HEAD request.

    Args:
        url: Stream URL
        timeout: Seconds before the source counts as unreachable

    Returns:
        Reachability, latency and the failure reason if any
    """
    started = time.monotonic()
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.head(url, allow_redirects=False) as response:
                latency = int((time.monotonic() - started) * 1000)
                if response.status < 400:
                    return SourceCheck(reachable=True, latency_ms=latency)
                return SourceCheck(reachable=False, latency_ms=latency, error=f"HTTP {response.status}")
    except asyncio.TimeoutError:
        return SourceCheck(reachable=False, latency_ms=0, error=f"Timeout ({timeout:g}s)")
    except aiohttp.ClientError as exc:
        latency = int((time.monotonic() - started) * 1000)
        return SourceCheck(reachable=False, latency_ms=latency, error=str(exc) or exc.__class__.__name__)


@dataclass
class DestinationCheck:
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "error": self.error}


async def check_destination(
    destination: Destination,
    *,
    ffmpeg_path: str = "ffmpeg",
    duration: int = 10,
    timeout: float = 15.0,
) -> DestinationCheck:
    """
    Push a short test pattern to one destination.

    The check passes when ffmpeg exits cleanly, reports its muxing summary,
    or is still publishing when ``timeout`` runs out.

    Args:
        destination: Ingest to publish to
        ffmpeg_path: ffmpeg binary
        duration: Length of the test pattern in seconds
        timeout: Seconds to wait before the push counts as healthy

    Returns:
        Success flag and the tail of ffmpeg's output on failure
    """
    try:
        process = await asyncio.create_subprocess_exec(
            ffmpeg_path,
            *build_destination_test_args(destination, duration=duration),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return DestinationCheck(success=False, error=str(exc))

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.terminate()
        await process.wait()
        logger.info("Test push to %s still running after %.1fs; treating as healthy", destination.url, timeout)
        return DestinationCheck(success=True)

    output = stderr.decode(errors="replace")
    if process.returncode == 0 or "muxing overhead" in output:
        return DestinationCheck(success=True)
    return DestinationCheck(success=False, error=output.strip()[-500:])
