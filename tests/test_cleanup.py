"""Tests for removing directories left empty."""

from music_organizer.cleanup import execute_cleanup, find_empty_dirs
from music_organizer.models import DirDeletion


class TestFindEmptyDirs:
    def test_file_blocks_every_ancestor(self, music_dir):
        leaf = music_dir / "D" / "E" / "F.mp3"
        leaf.parent.mkdir(parents=True)
        leaf.write_bytes(b"")

        assert find_empty_dirs(music_dir) == []

    def test_post_order_after_file_removed(self, music_dir):
        leaf = music_dir / "D" / "E" / "F.mp3"
        leaf.parent.mkdir(parents=True)
        leaf.write_bytes(b"")
        leaf.unlink()

        deletions = find_empty_dirs(music_dir)

        assert [d.path for d in deletions] == [music_dir / "D" / "E", music_dir / "D"]
        result = execute_cleanup(deletions)
        assert result.deleted == 2
        assert not (music_dir / "D").exists()
        assert music_dir.exists()

    def test_sibling_subtree_still_collected(self, music_dir):
        (music_dir / "a" / "empty").mkdir(parents=True)
        (music_dir / "a" / "full").mkdir(parents=True)
        (music_dir / "a" / "full" / "keep.txt").write_bytes(b"")

        deletions = find_empty_dirs(music_dir)

        assert [d.path for d in deletions] == [music_dir / "a" / "empty"]

    def test_hidden_file_blocks(self, music_dir):
        (music_dir / "a").mkdir()
        (music_dir / "a" / ".DS_Store").write_bytes(b"")
        assert find_empty_dirs(music_dir) == []

    def test_progress_visits_each_directory(self, music_dir):
        (music_dir / "a" / "b").mkdir(parents=True)
        (music_dir / "c").mkdir()
        seen = []

        find_empty_dirs(music_dir, progress_callback=seen.append)

        assert seen == [music_dir / "a", music_dir / "a" / "b", music_dir / "c"]


class TestExecuteCleanup:
    def test_failures_do_not_stop_others(self, music_dir):
        (music_dir / "ok").mkdir()
        (music_dir / "busy").mkdir()
        (music_dir / "busy" / "late.txt").write_bytes(b"")
        outcomes = []

        result = execute_cleanup(
            [DirDeletion(music_dir / "busy"), DirDeletion(music_dir / "missing"), DirDeletion(music_dir / "ok")],
            callback=outcomes.append,
        )

        assert [outcome.ok for outcome in outcomes] == [False, False, True]
        assert result.deleted == 1
        assert result.failed == 2
        assert len(result.warnings) == 2
        assert not (music_dir / "ok").exists()
