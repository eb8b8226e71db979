from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from .models import DirCreation, FileOperation, Index, Song, SongOperation, SongOperations, TagUpdate


INVALID_CHARS = re.compile(r"[<>:\"/\\|?*\x00-\x1F]")
UNKNOWN_DIR_NAME = "unknown"
EMPTY_NAME = "Unknown"


def sanitize_dir_name(value: str) -> str:
    """Make ``value`` usable as a directory name.

    A leading or trailing period is replaced so the directory is neither
    hidden nor subject to trailing-dot stripping on some filesystems.
    """
    value = INVALID_CHARS.sub("", value)
    if value.startswith("."):
        value = "_" + value[1:]
    if value.endswith("."):
        value = value[:-1] + "_"
    return value if value.strip() else EMPTY_NAME


def sanitize_file_part(value: str) -> str:
    value = INVALID_CHARS.sub("", value).strip()
    return value if value else EMPTY_NAME


def song_file_name(
    artists: list[str],
    title: str,
    extension: str,
    track_number: Optional[int] = None,
    disc_number: Optional[int] = None,
    total_discs: Optional[int] = None,
) -> str:
    prefix = f"{disc_number or 0} " if (total_discs or 0) > 1 else ""
    artists_part = sanitize_file_part(", ".join(artists))
    title_part = sanitize_file_part(title)
    return f"{prefix}{track_number or 0:02} - {artists_part} - {title_part}{extension}"


def song_release_dir(output_dir: Path, release_artists: list[str], release: str) -> Path:
    return output_dir / sanitize_dir_name(", ".join(release_artists)) / sanitize_dir_name(release)


def _resolved(update: Optional[TagUpdate], attribute: str, current):
    if update is None:
        return current
    return getattr(update, attribute).resolve(current)


def target_path_for(song: Song, update: Optional[TagUpdate], output_dir: Path) -> Path:
    """Canonical location of ``song`` once ``update`` is applied.

    Update values win over the song's current tags; Remove and Unchanged both
    fall back to the current value.
    """
    release_dir = song_release_dir(
        output_dir,
        _resolved(update, "release_artists", song.release_artists),
        _resolved(update, "release", song.release),
    )
    file_name = song_file_name(
        artists=_resolved(update, "artists", song.artists),
        title=_resolved(update, "title", song.title),
        extension=song.path.suffix,
        track_number=_resolved(update, "track_number", song.track_number),
        disc_number=_resolved(update, "disc_number", song.disc_number),
        total_discs=_resolved(update, "total_discs", song.total_discs),
    )
    return release_dir / file_name


def _suffixed(path: Path, counter: int) -> Path:
    return path.with_name(f"{path.stem} ({counter}){path.suffix}")


class _TargetClaims:
    """Target paths already handed out during one planning pass."""

    def __init__(self) -> None:
        self._claimed: set[Path] = set()

    def claim(self, path: Path, avoid_existing: bool = False) -> Path:
        candidate = path
        counter = 1
        while candidate in self._claimed or (avoid_existing and candidate.exists()):
            candidate = _suffixed(path, counter)
            counter += 1
        if candidate != path:
            logger.warning(f"target collision: {path} -> {candidate}")
        self._claimed.add(candidate)
        return candidate


@dataclass
class Changes:
    index: Index
    output_dir: Path
    dir_creations: list[DirCreation] = field(default_factory=list)
    song_operations: list[SongOperation] = field(default_factory=list)
    file_operations: list[FileOperation] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.dir_creations or self.song_operations or self.file_operations)

    def new_song_path(self, song_id: int) -> Path:
        for operation in self.song_operations:
            if operation.song_id == song_id and operation.new_path is not None:
                return operation.new_path
        return self.index.song(song_id).path


class _Planner:
    def __init__(self, index: Index, operations: SongOperations, output_dir: Path) -> None:
        self.index = index
        self.operations = operations
        self.output_dir = output_dir
        self.dir_creations: list[DirCreation] = []
        self._scheduled_dirs: set[Path] = set()
        self.file_operations: list[FileOperation] = []
        self.claims = _TargetClaims()

    def dir_creation(self, path: Path) -> None:
        if path in self._scheduled_dirs or path.exists():
            return
        self._scheduled_dirs.add(path)
        self.dir_creations.append(DirCreation(path))

    def plan_songs(self) -> dict[int, Path]:
        targets = {
            song.id: target_path_for(song, self.operations.pending_tag_update(song.id), self.output_dir)
            for song in self.index.songs
        }

        # Songs already in place keep their path; everyone else queues behind them.
        in_place = [song for song in self.index.songs if targets[song.id] == song.path]
        moving = [song for song in self.index.songs if targets[song.id] != song.path]
        for song in in_place:
            self.claims.claim(song.path)

        final: dict[int, Path] = {song.id: song.path for song in in_place}
        for song in moving:
            target = self.claims.claim(targets[song.id])
            final[song.id] = target
            self.dir_creation(target.parent.parent)
            self.dir_creation(target.parent)
            if target != song.path:
                self.operations.for_song(song.id).new_path = target
                logger.debug(f"planned: {song.path} -> {target}")
        return final

    def plan_images(self, final: dict[int, Path]) -> None:
        songs_by_dir: dict[Path, list[int]] = defaultdict(list)
        for song in self.index.songs:
            songs_by_dir[song.path.parent].append(song.id)

        for image in self.index.images:
            current_dir = image.parent
            new_dirs = {final[song_id].parent for song_id in songs_by_dir.get(current_dir, [])}
            if len(new_dirs) != 1:
                continue
            new_dir = new_dirs.pop()
            if new_dir == current_dir:
                continue
            new_path = self.claims.claim(new_dir / image.name, avoid_existing=True)
            self.file_operations.append(FileOperation(old_path=image, new_path=new_path))

    def plan_unknown(self) -> None:
        if not self.index.unknown:
            return
        unknown_dir = self.output_dir / UNKNOWN_DIR_NAME
        self.dir_creation(unknown_dir)

        in_place = [path for path in self.index.unknown if path == unknown_dir / path.name]
        for path in in_place:
            self.claims.claim(path)
        for path in self.index.unknown:
            if path in in_place:
                continue
            new_path = self.claims.claim(unknown_dir / path.name, avoid_existing=True)
            self.file_operations.append(FileOperation(old_path=path, new_path=new_path))


def generate_changes(index: Index, operations: Optional[SongOperations], output_dir: Path) -> Changes:
    """Compute the plan that moves ``index`` into the canonical layout.

    Pure with respect to its inputs apart from checking which directories
    already exist. Pending operations are merged into, not replaced.
    """
    if operations is None:
        operations = SongOperations()

    planner = _Planner(index, operations, output_dir)
    planner.dir_creation(output_dir)
    final = planner.plan_songs()
    planner.plan_images(final)
    planner.plan_unknown()

    song_operations = [operation for operation in operations if not operation.is_empty()]
    return Changes(
        index=index,
        output_dir=output_dir,
        dir_creations=planner.dir_creations,
        song_operations=song_operations,
        file_operations=planner.file_operations,
    )
