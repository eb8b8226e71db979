"""Tests for grouping and consistency checks."""

from pathlib import Path

from music_organizer.checks import (
    UnchangedResolver,
    check_artwork,
    check_permissions,
    check_release_artists,
    check_releases,
    check_total_discs,
    check_total_tracks,
    group_songs,
    run_checks,
)
from music_organizer.models import Index, Mode, SongOperations, Value

from conftest import make_song


class RecordingResolver(UnchangedResolver):
    """Resolver returning fixed decisions and recording what it was asked."""

    def __init__(self, artists=None, release=None, totals=None):
        self.artist_decision = artists or Value.unchanged()
        self.release_decision = release or Value.unchanged()
        self.total_decision = totals or Value.unchanged()
        self.artist_pairs = []
        self.release_pairs = []
        self.observed = []

    def release_artists(self, index, a, b):
        self.artist_pairs.append((tuple(a.names), tuple(b.names)))
        return self.artist_decision

    def releases(self, index, artists, a, b):
        self.release_pairs.append((a.name, b.name))
        return self.release_decision

    def total_tracks(self, index, artists, release, observed):
        self.observed.append(observed)
        return self.total_decision

    total_discs = total_tracks


def _index(*songs) -> Index:
    return Index(music_dir=Path("/music"), songs=list(songs))


def _case_variant_index() -> Index:
    return _index(
        make_song(0, Path("/music/a/1.mp3"), release_artists=["The Band"], title="One"),
        make_song(1, Path("/music/a/2.mp3"), release_artists=["The Band"], title="Two"),
        make_song(2, Path("/music/b/3.mp3"), release_artists=["the band"], title="Three"),
        make_song(3, Path("/music/c/4.mp3"), release_artists=["Other"], title="Four"),
    )


class TestGroupSongs:
    def test_groups_by_release_artists_and_release(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), release_artists=["A"], release="R1"),
            make_song(1, Path("/m/2.mp3"), release_artists=["A"], release="R2"),
            make_song(2, Path("/m/3.mp3"), release_artists=["A"], release="R1"),
            make_song(3, Path("/m/4.mp3"), release_artists=["B"], release="R1"),
        )

        groups = group_songs(index)

        assert [group.names for group in groups] == [["A"], ["B"]]
        assert [(r.name, r.song_ids) for r in groups[0].releases] == [("R1", [0, 2]), ("R2", [1])]
        assert groups[1].song_ids() == [3]

    def test_regrouping_reflects_pending_edits(self):
        index = _case_variant_index()
        operations = SongOperations()
        operations.tag_update_for(2).release_artists = Value.update(["The Band"])

        groups = group_songs(index, operations)

        assert [group.names for group in groups] == [["The Band"], ["Other"]]
        assert groups[0].song_ids() == [0, 1, 2]


class TestReleaseArtistsCheck:
    """Test case-insensitive near-duplicate detection."""

    def test_pair_visited_once(self):
        resolver = RecordingResolver()
        operations = SongOperations()

        conflicts = check_release_artists(_case_variant_index(), operations, resolver)

        assert conflicts == 1
        assert resolver.artist_pairs == [(("The Band",), ("the band",))]

    def test_unchanged_produces_no_edits(self):
        operations = SongOperations()
        check_release_artists(_case_variant_index(), operations, RecordingResolver())
        assert len(operations) == 0

    def test_update_only_touches_differing_group(self):
        operations = SongOperations()
        resolver = RecordingResolver(artists=Value.update(["The Band"]))

        check_release_artists(_case_variant_index(), operations, resolver)

        assert [operation.song_id for operation in operations] == [2]
        assert operations.get(2).tag_update.release_artists.value == ["The Band"]

    def test_update_to_new_name_touches_both(self):
        operations = SongOperations()
        resolver = RecordingResolver(artists=Value.update(["THE BAND"]))

        check_release_artists(_case_variant_index(), operations, resolver)

        assert [operation.song_id for operation in operations] == [0, 1, 2]

    def test_remove_clears_both_groups(self):
        operations = SongOperations()
        resolver = RecordingResolver(artists=Value.remove())

        check_release_artists(_case_variant_index(), operations, resolver)

        assert [operation.song_id for operation in operations] == [0, 1, 2]
        assert all(operation.tag_update.release_artists.is_remove() for operation in operations)

    def test_different_lengths_never_match(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), release_artists=["A"]),
            make_song(1, Path("/m/2.mp3"), release_artists=["a", "b"]),
        )
        resolver = RecordingResolver()
        assert check_release_artists(index, SongOperations(), resolver) == 0
        assert resolver.artist_pairs == []


class TestReleasesCheck:
    def test_case_variant_releases_within_artist(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), release="Live"),
            make_song(1, Path("/m/2.mp3"), release="LIVE"),
        )
        operations = SongOperations()
        resolver = RecordingResolver(release=Value.update("Live"))

        assert check_releases(index, operations, resolver) == 1
        assert [operation.song_id for operation in operations] == [1]
        assert operations.get(1).tag_update.release.value == "Live"


class TestTotalsChecks:
    def test_disagreeing_total_tracks(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), total_tracks=10),
            make_song(1, Path("/m/2.mp3"), total_tracks=10),
            make_song(2, Path("/m/3.mp3"), total_tracks=None),
        )
        operations = SongOperations()
        resolver = RecordingResolver(totals=Value.update(10))

        assert check_total_tracks(index, operations, resolver) == 1
        assert resolver.observed == [[([0, 1], 10), ([2], None)]]
        assert all(operation.tag_update.total_tracks.value == 10 for operation in operations)
        assert len(operations) == 3

    def test_agreeing_total_discs(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), total_discs=2),
            make_song(1, Path("/m/2.mp3"), total_discs=2),
        )
        assert check_total_discs(index, SongOperations(), RecordingResolver()) == 0


class TestPermissionAndArtworkChecks:
    def test_permission_drift(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), mode=Mode(0o100644)),
            make_song(1, Path("/m/2.mp3"), mode=Mode(0o100755)),
            make_song(2, Path("/m/3.mp3"), mode=None),
        )
        operations = SongOperations()

        assert check_permissions(index, operations) == 1
        assert operations.get(0).mode_update == Mode(0o100755)
        assert 1 not in operations

    def test_artwork_removed_unless_kept(self):
        index = _index(
            make_song(0, Path("/m/1.mp3"), has_artwork=True),
            make_song(1, Path("/m/2.mp3"), has_artwork=False),
        )
        operations = SongOperations()

        assert check_artwork(index, operations, keep_artwork=True) == 0
        assert check_artwork(index, operations) == 1
        assert operations.get(0).tag_update.artwork.is_remove()
        assert 1 not in operations


def test_run_checks_merges_into_one_operation_per_song():
    index = _index(make_song(0, Path("/m/1.mp3"), mode=Mode(0o100600), has_artwork=True))

    operations = run_checks(index, UnchangedResolver())

    assert len(operations) == 1
    operation = operations.get(0)
    assert operation.mode_update == Mode(0o100755)
    assert operation.tag_update.artwork.is_remove()
