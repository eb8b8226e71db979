from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Generic, Iterator, Optional, TypeVar


T = TypeVar("T")


class ValueKind(Enum):
    UPDATE = "update"
    REMOVE = "remove"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class Value(Generic[T]):
    """Edit descriptor for one tag field.

    ``Remove`` clears the field, ``Unchanged`` leaves it alone. The two must
    stay distinct, so this is not modelled as an ``Optional``.
    """

    kind: ValueKind = ValueKind.UNCHANGED
    payload: Optional[T] = None

    @classmethod
    def update(cls, value: T) -> Value[T]:
        return cls(ValueKind.UPDATE, value)

    @classmethod
    def remove(cls) -> Value[T]:
        return cls(ValueKind.REMOVE)

    @classmethod
    def unchanged(cls) -> Value[T]:
        return cls(ValueKind.UNCHANGED)

    def is_update(self) -> bool:
        return self.kind is ValueKind.UPDATE

    def is_remove(self) -> bool:
        return self.kind is ValueKind.REMOVE

    def is_unchanged(self) -> bool:
        return self.kind is ValueKind.UNCHANGED

    @property
    def value(self) -> Optional[T]:
        return self.payload if self.is_update() else None

    def resolve(self, current: T) -> T:
        if self.is_update():
            return self.payload  # type: ignore[return-value]
        return current


@dataclass
class TagUpdate:
    release_artists: Value[list[str]] = field(default_factory=Value)
    artists: Value[list[str]] = field(default_factory=Value)
    release: Value[str] = field(default_factory=Value)
    title: Value[str] = field(default_factory=Value)
    track_number: Value[int] = field(default_factory=Value)
    total_tracks: Value[int] = field(default_factory=Value)
    disc_number: Value[int] = field(default_factory=Value)
    total_discs: Value[int] = field(default_factory=Value)
    artwork: Value[bytes] = field(default_factory=Value)

    def is_empty(self) -> bool:
        return all(
            value.is_unchanged()
            for value in (
                self.release_artists,
                self.artists,
                self.release,
                self.title,
                self.track_number,
                self.total_tracks,
                self.disc_number,
                self.total_discs,
                self.artwork,
            )
        )


@dataclass(frozen=True)
class Mode:
    value: int

    def permissions(self) -> int:
        return self.value & 0o777

    def with_permissions(self, permissions: int) -> Mode:
        return Mode((self.value & ~0o777) | (permissions & 0o777))

    def __str__(self) -> str:
        chars = []
        for offset in (6, 3, 0):
            for bit, char in ((0o4, "r"), (0o2, "w"), (0o1, "x")):
                chars.append(char if self.value & (bit << offset) else "-")
        return "".join(chars)


@dataclass(frozen=True)
class Song:
    id: int
    path: Path
    release_artists: list[str]
    artists: list[str]
    release: str
    title: str
    mode: Optional[Mode] = None
    track_number: Optional[int] = None
    total_tracks: Optional[int] = None
    disc_number: Optional[int] = None
    total_discs: Optional[int] = None
    has_artwork: bool = False


@dataclass
class Index:
    music_dir: Path
    songs: list[Song] = field(default_factory=list)
    images: list[Path] = field(default_factory=list)
    unknown: list[Path] = field(default_factory=list)

    def song(self, song_id: int) -> Song:
        return self.songs[song_id]


@dataclass
class SongOperation:
    song_id: int
    tag_update: Optional[TagUpdate] = None
    mode_update: Optional[Mode] = None
    new_path: Optional[Path] = None

    def is_empty(self) -> bool:
        no_tags = self.tag_update is None or self.tag_update.is_empty()
        return no_tags and self.mode_update is None and self.new_path is None


class SongOperations:
    """Pending operations keyed by song id, at most one per song."""

    def __init__(self) -> None:
        self._by_song: dict[int, SongOperation] = {}

    def for_song(self, song_id: int) -> SongOperation:
        operation = self._by_song.get(song_id)
        if operation is None:
            operation = SongOperation(song_id=song_id)
            self._by_song[song_id] = operation
        return operation

    def tag_update_for(self, song_id: int) -> TagUpdate:
        operation = self.for_song(song_id)
        if operation.tag_update is None:
            operation.tag_update = TagUpdate()
        return operation.tag_update

    def get(self, song_id: int) -> Optional[SongOperation]:
        return self._by_song.get(song_id)

    def pending_tag_update(self, song_id: int) -> Optional[TagUpdate]:
        operation = self._by_song.get(song_id)
        return operation.tag_update if operation else None

    def __contains__(self, song_id: object) -> bool:
        return song_id in self._by_song

    def __len__(self) -> int:
        return len(self._by_song)

    def __iter__(self) -> Iterator[SongOperation]:
        for song_id in sorted(self._by_song):
            yield self._by_song[song_id]


class FileOpType(Enum):
    MOVE = "move"
    COPY = "copy"

    @classmethod
    def from_copy_flag(cls, copy: bool) -> FileOpType:
        return cls.COPY if copy else cls.MOVE


@dataclass(frozen=True)
class DirCreation:
    path: Path


@dataclass
class FileOperation:
    old_path: Path
    new_path: Path
    tag_update: Optional[TagUpdate] = None


@dataclass(frozen=True)
class DirDeletion:
    path: Path


@dataclass
class OperationOutcome:
    kind: str
    source: Path
    target: Optional[Path] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        where = f"{self.source} -> {self.target}" if self.target is not None else str(self.source)
        if self.ok:
            return f"{self.kind}: {where}"
        return f"{self.kind} failed: {where}: {self.error}"


@dataclass
class ExecutionResult:
    dirs_created: int = 0
    songs_written: int = 0
    files_written: int = 0
    failed: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class CleanupResult:
    deleted: int = 0
    failed: int = 0
    warnings: list[str] = field(default_factory=list)
