"""Spawn, wire, watch and tear down the processes of one pipeline."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import re
from typing import List, Optional, Set

from .events import PipelineEvents, Severity
from .launch import LaunchPlan, PipelineError, ProcessSpec

logger = logging.getLogger(__name__)

# Process-wide sink for failure lines reported by encoders.
diagnostics = logging.getLogger("loopcast.ffmpeg")

PROGRESS_RE = re.compile(
    r"^\s*frame=\s*\d+.*\b(fps|size|bitrate|speed)=|^\s*size=\s*\S+\s+time=.*bitrate=",
    re.IGNORECASE,
)
ERROR_RE = re.compile(
    r"error|failed|invalid|could not|cannot|unable to|not found|no such file|"
    r"connection refused|connection reset|broken pipe|timed out|end of file",
    re.IGNORECASE,
)
_LINE_SPLIT = re.compile(r"[\r\n]+")

READ_CHUNK = 4096


class SpawnError(PipelineError):
    """A pipeline process could not be started."""


def classify_line(line: str) -> Severity:
    """Severity of one diagnostic line from an encoding process."""
    if PROGRESS_RE.search(line):
        return Severity.DEBUG
    if ERROR_RE.search(line):
        return Severity.ERROR
    return Severity.INFO


class ProcessGroup:
    """
    The processes that make up one running pipeline.

    The primary process decides the pipeline's health. In a split pipeline a
    feeder loop spawns one decode process per manifest entry and writes into
    the primary's stdin through an OS pipe; feeder exits are only logged.
    """

    def __init__(self, station_id: str, events: PipelineEvents) -> None:
        self.station_id = station_id
        self.events = events
        self.primary: Optional[asyncio.subprocess.Process] = None
        self._feeders: Set[asyncio.subprocess.Process] = set()
        self._feed_task: Optional[asyncio.Task] = None
        self._pumps: Set[asyncio.Task] = set()
        self._stopping = False

    @property
    def pid(self) -> Optional[int]:
        return self.primary.pid if self.primary else None

    @classmethod
    async def spawn(cls, station_id: str, plan: LaunchPlan, events: PipelineEvents) -> "ProcessGroup":
        """
        Start every process described by ``plan``.

        Raises:
            SpawnError: If the primary process cannot be started
        """
        group = cls(station_id, events)
        if plan.feeder is None:
            group.primary = await group._exec(plan.primary, stdin=asyncio.subprocess.DEVNULL)
            return group

        read_fd, write_fd = os.pipe()
        try:
            group.primary = await group._exec(plan.primary, stdin=read_fd)
        except BaseException:
            os.close(write_fd)
            raise
        finally:
            os.close(read_fd)

        group._feed_task = asyncio.create_task(
            group._feed(plan, write_fd), name=f"loopcast-feed-{station_id}"
        )
        return group

    async def _exec(self, spec: ProcessSpec, *, stdin, stdout=asyncio.subprocess.PIPE) -> asyncio.subprocess.Process:
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=stdin,
                stdout=stdout,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {spec.executable}: {exc}") from exc

        if process.stdout is not None:
            self._pump(process.stdout, spec.tag)
        self._pump(process.stderr, spec.tag)
        return process

    def _pump(self, stream: Optional[asyncio.StreamReader], tag: str) -> None:
        if stream is None:
            return
        task = asyncio.create_task(self._read_lines(stream, tag))
        self._pumps.add(task)
        task.add_done_callback(self._pumps.discard)

    async def _read_lines(self, stream: asyncio.StreamReader, tag: str) -> None:
        # progress lines end in \r, so readline() is not enough
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            # a multi-byte character may straddle two chunks
            pending += decoder.decode(chunk)
            *lines, pending = _LINE_SPLIT.split(pending)
            for line in lines:
                self.route_line(tag, line)
        pending += decoder.decode(b"", final=True)
        self.route_line(tag, pending)

    def route_line(self, tag: str, line: str) -> None:
        line = line.strip()
        if not line:
            return
        severity = classify_line(line)
        if severity is Severity.ERROR:
            diagnostics.error("[%s/%s] %s", self.station_id, tag, line)
        self.events.emit_log(self.station_id, severity, tag, line)

    async def _feed(self, plan: LaunchPlan, write_fd: int) -> None:
        assert plan.feeder is not None
        try:
            for spec in plan.feeder.specs():
                if self._stopping:
                    break
                try:
                    process = await self._exec(spec, stdin=asyncio.subprocess.DEVNULL, stdout=write_fd)
                except SpawnError as exc:
                    self.events.emit_log(self.station_id, Severity.ERROR, spec.tag, str(exc))
                    break
                self._feeders.add(process)
                try:
                    code = await process.wait()
                finally:
                    self._feeders.discard(process)
                severity = Severity.INFO if code == 0 else Severity.WARNING
                self.events.emit_log(
                    self.station_id, severity, spec.tag, f"Feeder exited with code {code}"
                )
        finally:
            # closing our end lets the encoder see EOF
            os.close(write_fd)

    async def wait(self) -> int:
        """Wait for the primary process and return its exit code."""
        assert self.primary is not None
        code = await self.primary.wait()
        # feeders have nobody left to write to
        self._signal_all()
        if self._pumps:
            await asyncio.wait(set(self._pumps), timeout=1.0)
        return code

    def _live(self) -> List[asyncio.subprocess.Process]:
        processes = [self.primary, *self._feeders]
        return [p for p in processes if p is not None and p.returncode is None]

    def _signal_all(self) -> List[asyncio.subprocess.Process]:
        self._stopping = True
        processes = self._live()
        for process in processes:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        if self._feed_task is not None and not self._feed_task.done():
            self._feed_task.cancel()
        return processes

    def terminate(self, grace: float) -> asyncio.Task:
        """
        Ask every process to exit and force-kill stragglers after ``grace``.

        Returns immediately; the returned task finishes once all processes are gone.
        """
        processes = self._signal_all()
        return asyncio.create_task(self._reap(processes, grace), name=f"loopcast-reap-{self.station_id}")

    async def _reap(self, processes: List[asyncio.subprocess.Process], grace: float) -> None:
        if not processes:
            return
        waiters = [asyncio.ensure_future(p.wait()) for p in processes]
        _, pending = await asyncio.wait(waiters, timeout=grace)
        if pending:
            for process in processes:
                if process.returncode is None:
                    logger.warning(
                        "Process %s of station %s ignored SIGTERM for %.1fs; killing",
                        process.pid,
                        self.station_id,
                        grace,
                    )
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
            await asyncio.wait(waiters)
        if self._feed_task is not None:
            await asyncio.gather(self._feed_task, return_exceptions=True)
