from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from loguru import logger

from .models import Index, Song, SongOperations, Value


CANONICAL_PERMISSIONS = 0o755


@dataclass
class Release:
    name: str
    song_ids: list[int] = field(default_factory=list)


@dataclass
class ReleaseArtists:
    names: list[str]
    releases: list[Release] = field(default_factory=list)

    def song_ids(self) -> list[int]:
        return [song_id for release in self.releases for song_id in release.song_ids]


Observed = list[tuple[list[int], Optional[int]]]


class ConflictResolver(Protocol):
    """Decides conflicts the checks cannot settle on their own."""

    def release_artists(self, index: Index, a: ReleaseArtists, b: ReleaseArtists) -> Value[list[str]]:
        ...

    def releases(self, index: Index, artists: ReleaseArtists, a: Release, b: Release) -> Value[str]:
        ...

    def total_tracks(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        ...

    def total_discs(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        ...


class UnchangedResolver:
    def release_artists(self, index: Index, a: ReleaseArtists, b: ReleaseArtists) -> Value[list[str]]:
        return Value.unchanged()

    def releases(self, index: Index, artists: ReleaseArtists, a: Release, b: Release) -> Value[str]:
        return Value.unchanged()

    def total_tracks(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        return Value.unchanged()

    def total_discs(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        return Value.unchanged()


def effective_release_artists(song: Song, operations: Optional[SongOperations]) -> list[str]:
    update = operations.pending_tag_update(song.id) if operations else None
    return update.release_artists.resolve(song.release_artists) if update else song.release_artists


def effective_release(song: Song, operations: Optional[SongOperations]) -> str:
    update = operations.pending_tag_update(song.id) if operations else None
    return update.release.resolve(song.release) if update else song.release


def group_songs(index: Index, operations: Optional[SongOperations] = None) -> list[ReleaseArtists]:
    """Cluster songs by (release artists, release).

    Pending tag updates are taken into account, so calling this again after a
    check has scheduled edits reflects them.
    """
    groups: list[ReleaseArtists] = []
    by_names: dict[tuple[str, ...], ReleaseArtists] = {}
    by_release: dict[tuple[tuple[str, ...], str], Release] = {}

    for song in index.songs:
        names = list(effective_release_artists(song, operations))
        release_name = effective_release(song, operations)
        key = tuple(names)

        artists = by_names.get(key)
        if artists is None:
            artists = ReleaseArtists(names=names)
            by_names[key] = artists
            groups.append(artists)

        release = by_release.get((key, release_name))
        if release is None:
            release = Release(name=release_name)
            by_release[(key, release_name)] = release
            artists.releases.append(release)
        release.song_ids.append(song.id)

    return groups


def names_match_ignoring_case(a: list[str], b: list[str]) -> bool:
    if len(a) != len(b):
        return False
    return all(x.casefold() == y.casefold() for x, y in zip(a, b))


def check_release_artists(index: Index, operations: SongOperations, resolver: ConflictResolver) -> int:
    groups = group_songs(index, operations)
    conflicts = 0

    for i, a in enumerate(groups):
        for b in groups[i + 1:]:
            if not names_match_ignoring_case(a.names, b.names):
                continue
            conflicts += 1
            decision = resolver.release_artists(index, a, b)
            if decision.is_update():
                names = list(decision.value or [])
                for group in (a, b):
                    if group.names != names:
                        for song_id in group.song_ids():
                            operations.tag_update_for(song_id).release_artists = Value.update(names)
            elif decision.is_remove():
                for group in (a, b):
                    for song_id in group.song_ids():
                        operations.tag_update_for(song_id).release_artists = Value.remove()

    return conflicts


def check_releases(index: Index, operations: SongOperations, resolver: ConflictResolver) -> int:
    conflicts = 0

    for artists in group_songs(index, operations):
        for i, a in enumerate(artists.releases):
            for b in artists.releases[i + 1:]:
                if a.name.casefold() != b.name.casefold():
                    continue
                conflicts += 1
                decision = resolver.releases(index, artists, a, b)
                if decision.is_update():
                    name = decision.value or ""
                    for release in (a, b):
                        if release.name != name:
                            for song_id in release.song_ids:
                                operations.tag_update_for(song_id).release = Value.update(name)
                elif decision.is_remove():
                    for release in (a, b):
                        for song_id in release.song_ids:
                            operations.tag_update_for(song_id).release = Value.remove()

    return conflicts


def _observed_values(index: Index, release: Release, attribute: str) -> Observed:
    observed: Observed = []
    for song_id in release.song_ids:
        value = getattr(index.song(song_id), attribute)
        for song_ids, seen in observed:
            if seen == value:
                song_ids.append(song_id)
                break
        else:
            observed.append(([song_id], value))
    return observed


def _check_release_totals(
    index: Index,
    operations: SongOperations,
    attribute: str,
    decide,
) -> int:
    conflicts = 0
    for artists in group_songs(index, operations):
        for release in artists.releases:
            observed = _observed_values(index, release, attribute)
            if len(observed) < 2:
                continue
            conflicts += 1
            decision = decide(index, artists, release, observed)
            if decision.is_unchanged():
                continue
            for song_id in release.song_ids:
                setattr(operations.tag_update_for(song_id), attribute, decision)
    return conflicts


def check_total_tracks(index: Index, operations: SongOperations, resolver: ConflictResolver) -> int:
    return _check_release_totals(index, operations, "total_tracks", resolver.total_tracks)


def check_total_discs(index: Index, operations: SongOperations, resolver: ConflictResolver) -> int:
    return _check_release_totals(index, operations, "total_discs", resolver.total_discs)


def check_permissions(index: Index, operations: SongOperations, permissions: int = CANONICAL_PERMISSIONS) -> int:
    scheduled = 0
    for song in index.songs:
        if song.mode is None or song.mode.permissions() == permissions:
            continue
        operations.for_song(song.id).mode_update = song.mode.with_permissions(permissions)
        scheduled += 1
    return scheduled


def check_artwork(index: Index, operations: SongOperations, keep_artwork: bool = False) -> int:
    if keep_artwork:
        return 0
    scheduled = 0
    for song in index.songs:
        if song.has_artwork:
            operations.tag_update_for(song.id).artwork = Value.remove()
            scheduled += 1
    return scheduled


def run_checks(
    index: Index,
    resolver: ConflictResolver,
    operations: Optional[SongOperations] = None,
    keep_artwork: bool = False,
    permissions: int = CANONICAL_PERMISSIONS,
) -> SongOperations:
    if operations is None:
        operations = SongOperations()

    artist_conflicts = check_release_artists(index, operations, resolver)
    release_conflicts = check_releases(index, operations, resolver)
    track_conflicts = check_total_tracks(index, operations, resolver)
    disc_conflicts = check_total_discs(index, operations, resolver)
    mode_updates = check_permissions(index, operations, permissions)
    artwork_removals = check_artwork(index, operations, keep_artwork)

    logger.debug(
        f"checks: {artist_conflicts} release artist conflicts, {release_conflicts} release conflicts, "
        f"{track_conflicts} total track conflicts, {disc_conflicts} total disc conflicts, "
        f"{mode_updates} permission updates, {artwork_removals} artwork removals"
    )
    return operations


