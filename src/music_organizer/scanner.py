from __future__ import annotations

import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .metadata import Metadata, is_image_file, is_song_file, read_metadata
from .models import Index, Song


DEFAULT_WORKERS = 8
DEFAULT_POLL_TIMEOUT = 0.05


class EntryKind(Enum):
    SONG = "song"
    IMAGE = "image"
    UNKNOWN = "unknown"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ScanEntry:
    kind: EntryKind
    path: Path
    metadata: Optional[Metadata] = None


def classify_file(path: Path) -> ScanEntry:
    if is_song_file(path):
        try:
            metadata = read_metadata(path)
        except Exception as exc:
            logger.warning(f"tag parsing failed: {path}: {exc}")
            return ScanEntry(EntryKind.UNKNOWN, path)
        if _is_complete(metadata):
            return ScanEntry(EntryKind.SONG, path, metadata)
        return ScanEntry(EntryKind.UNKNOWN, path)
    if is_image_file(path):
        return ScanEntry(EntryKind.IMAGE, path)
    return ScanEntry(EntryKind.IGNORED, path)


def _is_complete(metadata: Metadata) -> bool:
    return bool(
        metadata.release_artists_or_fallback()
        and metadata.song_artists_or_fallback()
        and metadata.release
        and metadata.title
    )


class _PendingCounter:
    """Number of directories queued or being listed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1

    def is_zero(self) -> bool:
        with self._lock:
            return self._count == 0


def _list_directory(
    directory: Path,
    dirs: queue.Queue[Path],
    pending: _PendingCounter,
    results: queue.Queue[Optional[ScanEntry]],
) -> None:
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                path = Path(entry.path)
                try:
                    if entry.is_dir(follow_symlinks=False):
                        pending.increment()
                        dirs.put(path)
                    elif entry.is_file():
                        results.put(classify_file(path))
                except OSError as exc:
                    logger.warning(f"entry skipped: {path}: {exc}")
    except OSError as exc:
        logger.warning(f"directory skipped: {directory}: {exc}")


def _worker(
    dirs: queue.Queue[Path],
    pending: _PendingCounter,
    results: queue.Queue[Optional[ScanEntry]],
    poll_timeout: float,
) -> None:
    try:
        while True:
            try:
                directory = dirs.get(timeout=poll_timeout)
            except queue.Empty:
                if pending.is_zero():
                    return
                continue
            try:
                _list_directory(directory, dirs, pending, results)
            finally:
                pending.decrement()
    finally:
        results.put(None)


def build_index(
    music_dir: Path,
    progress_callback: Callable[[Path], None] | None = None,
    workers: int = DEFAULT_WORKERS,
    poll_timeout: float = DEFAULT_POLL_TIMEOUT,
) -> Index:
    """Walk ``music_dir`` with a pool of worker threads and build the Index.

    Workers share a directory queue and only ever put immutable ``ScanEntry``
    results on the result queue; this thread is the single consumer. Each
    worker signals its exit with a ``None`` sentinel, and the scan is over
    once every worker has done so.
    """
    dirs: queue.Queue[Path] = queue.Queue()
    results: queue.Queue[Optional[ScanEntry]] = queue.Queue()
    pending = _PendingCounter()

    pending.increment()
    dirs.put(music_dir)

    threads = [
        threading.Thread(
            target=_worker,
            args=(dirs, pending, results, poll_timeout),
            name=f"indexer-{i}",
            daemon=True,
        )
        for i in range(max(1, workers))
    ]
    for thread in threads:
        thread.start()

    songs: list[tuple[Path, Metadata]] = []
    images: list[Path] = []
    unknown: list[Path] = []

    running = len(threads)
    while running:
        entry = results.get()
        if entry is None:
            running -= 1
            continue
        if progress_callback:
            progress_callback(entry.path)
        if entry.kind is EntryKind.SONG and entry.metadata is not None:
            songs.append((entry.path, entry.metadata))
        elif entry.kind is EntryKind.UNKNOWN:
            logger.debug(f"unrecognized: {entry.path}")
            unknown.append(entry.path)
        elif entry.kind is EntryKind.IMAGE:
            images.append(entry.path)

    for thread in threads:
        thread.join()

    songs.sort(key=lambda item: item[0])
    index = Index(
        music_dir=music_dir,
        songs=[_make_song(song_id, path, metadata) for song_id, (path, metadata) in enumerate(songs)],
        images=sorted(images),
        unknown=sorted(unknown),
    )
    logger.debug(f"indexed {len(index.songs)} songs, {len(index.images)} images, {len(index.unknown)} unknown")
    return index


def _make_song(song_id: int, path: Path, metadata: Metadata) -> Song:
    return Song(
        id=song_id,
        path=path,
        release_artists=list(metadata.release_artists_or_fallback()),
        artists=list(metadata.song_artists_or_fallback()),
        release=metadata.release or "",
        title=metadata.title or "",
        mode=metadata.mode,
        track_number=metadata.track_number,
        total_tracks=metadata.total_tracks,
        disc_number=metadata.disc_number,
        total_discs=metadata.total_discs,
        has_artwork=metadata.has_artwork,
    )
