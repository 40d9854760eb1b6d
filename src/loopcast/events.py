"""Typed event fan-out for pipeline logs, state changes and now-playing updates."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional, TypeVar

from .models import PipelineState

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class LogEvent:
    station_id: str
    severity: Severity
    source: str
    message: str
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "station_id": self.station_id,
            "level": self.severity.value,
            "source": self.source,
            "message": self.message,
            "timestamp": self.timestamp,
        }


LogListener = Callable[[LogEvent], None]
StatusListener = Callable[[str, PipelineState], None]
NowPlayingListener = Callable[[str, str], None]

_L = TypeVar("_L")


class PipelineEvents:
    """
    Registry of subscribers for the three supervisor event categories.

    Listeners are plain callables invoked synchronously on the event loop.
    A listener that raises is logged and skipped; the remaining listeners
    still receive the event.
    """

    def __init__(self) -> None:
        self._log_listeners: List[LogListener] = []
        self._status_listeners: List[StatusListener] = []
        self._now_playing_listeners: List[NowPlayingListener] = []

    def on_log(self, listener: LogListener) -> Callable[[], None]:
        return self._register(self._log_listeners, listener)

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        return self._register(self._status_listeners, listener)

    def on_now_playing(self, listener: NowPlayingListener) -> Callable[[], None]:
        return self._register(self._now_playing_listeners, listener)

    def emit_log(self, station_id: str, severity: Severity, source: str, message: str) -> None:
        event = LogEvent(station_id, severity, source, message, time.time())
        for listener in list(self._log_listeners):
            self._call(listener, event)

    def emit_status(self, station_id: str, state: PipelineState) -> None:
        for listener in list(self._status_listeners):
            self._call(listener, station_id, state)

    def emit_now_playing(self, station_id: str, track: str) -> None:
        for listener in list(self._now_playing_listeners):
            self._call(listener, station_id, track)

    @staticmethod
    def _register(listeners: List[_L], listener: _L) -> Callable[[], None]:
        listeners.append(listener)

        def unsubscribe() -> None:
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    @staticmethod
    def _call(listener: Callable[..., None], *args) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception("Event listener %r failed", listener)


class LogBook:
    """Keeps the most recent log events for each station in memory."""

    def __init__(self, limit: int = 1000) -> None:
        self.limit = limit
        self._entries: Dict[str, Deque[LogEvent]] = {}

    def attach(self, events: PipelineEvents) -> Callable[[], None]:
        return events.on_log(self.record)

    def record(self, event: LogEvent) -> None:
        entries = self._entries.get(event.station_id)
        if entries is None:
            entries = self._entries[event.station_id] = deque(maxlen=self.limit)
        entries.append(event)

    def recent(self, station_id: str, limit: int = 100, severity: Optional[Severity] = None) -> List[LogEvent]:
        """The last ``limit`` events of a station, oldest first, optionally of one severity."""
        entries = self._entries.get(station_id)
        if not entries:
            return []
        matching = [event for event in entries if severity is None or event.severity is severity]
        return matching[-limit:] if limit > 0 else []

    def forget(self, station_id: str) -> None:
        self._entries.pop(station_id, None)
