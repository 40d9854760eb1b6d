"""On-disk layout for station state and atomic file replacement."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


def write_text_atomic(path: Path, content: str) -> None:
    """
    Replace ``path`` with ``content`` so readers never see a partial file.

    The data goes to a temporary file in the same directory, is flushed to
    disk, and is then renamed over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


@dataclass(frozen=True)
class NowPlayingFiles:
    """Live text files the overlay re-reads while the encoder runs."""

    combined: Path
    artist: Path
    title: Path


@dataclass(frozen=True)
class StationPaths:
    """Files owned by one station, keyed by its slug."""

    root: Path

    @classmethod
    def for_slug(cls, data_dir: Path, slug: str) -> "StationPaths":
        return cls(root=data_dir / "stations" / slug)

    def ensure(self) -> "StationPaths":
        self.root.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def playlist(self) -> Path:
        return self.root / "playlist.txt"

    @property
    def repeats(self) -> Path:
        return self.root / "playlist.repeats"

    @property
    def now_playing(self) -> Path:
        return self.root / "nowplaying.txt"

    @property
    def now_playing_artist(self) -> Path:
        return self.root / "nowplaying_artist.txt"

    @property
    def now_playing_title(self) -> Path:
        return self.root / "nowplaying_title.txt"

    def now_playing_files(self) -> NowPlayingFiles:
        return NowPlayingFiles(
            combined=self.now_playing,
            artist=self.now_playing_artist,
            title=self.now_playing_title,
        )

    @property
    def snapshot(self) -> Path:
        return self.root / "snapshot.jpg"
