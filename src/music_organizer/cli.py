from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from .changes import Changes, generate_changes
from .checks import CANONICAL_PERMISSIONS, Observed, Release, ReleaseArtists, UnchangedResolver, run_checks
from .cleanup import execute_cleanup, find_empty_dirs
from .executor import execute_changes
from .models import FileOpType, Index, OperationOutcome, SongOperation, SongOperations, TagUpdate, Value
from .scanner import build_index


class LinePrinter:
    """Prints progress lines, redrawing a single line unless verbose."""

    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        self.is_tty = sys.stdout.isatty()
        self.last_len = 0

    def show(self, text: str) -> None:
        if self.verbose:
            print(text)
            return
        if not self.is_tty:
            return
        padding = " " * max(0, self.last_len - len(text))
        print(f"\r{text}{padding}", end="", flush=True)
        self.last_len = len(text)

    def reset(self) -> None:
        if not self.verbose and self.is_tty and self.last_len:
            print()
        self.last_len = 0


def _ask(prompt: str, options: list[str]) -> int:
    for i, option in enumerate(options):
        print(f"  [{i}] {option}")
    while True:
        answer = input(f"{prompt} ").strip()
        if answer.isdigit() and int(answer) < len(options):
            return int(answer)
        print("invalid input")


def confirm(prompt: str) -> bool:
    while True:
        answer = input(f"{prompt} [y/N]? ").strip().lower()
        if answer in {"", "n"}:
            return False
        if answer == "y":
            return True
        print("invalid input")


class PromptResolver:
    """Interactive conflict resolver reading decisions from stdin."""

    def _print_group(self, index: Index, artists: ReleaseArtists) -> None:
        print(f"{', '.join(artists.names)}:")
        for release in artists.releases[:10]:
            print(f"   {release.name}:")
            for song_id in release.song_ids[:3]:
                song = index.song(song_id)
                print(f"      {song.track_number or 0:02} - {', '.join(song.artists)} - {song.title}")

    def _choose_name(self, first: str, second: str) -> Optional[str]:
        choice = _ask(
            "choice:",
            ["don't do anything", f"use '{first}'", f"use '{second}'", "enter new name", "remove the tag"],
        )
        if choice == 0:
            return None
        if choice == 1:
            return first
        if choice == 2:
            return second
        if choice == 4:
            return ""
        while True:
            name = input("enter new name: ").strip()
            if name and confirm(f"new name: '{name}', ok"):
                return name

    def release_artists(self, index: Index, a: ReleaseArtists, b: ReleaseArtists) -> Value[list[str]]:
        print("These release artists are named similarly:")
        self._print_group(index, a)
        self._print_group(index, b)
        name = self._choose_name(", ".join(a.names), ", ".join(b.names))
        if name is None:
            return Value.unchanged()
        if name == "":
            return Value.remove()
        if name == ", ".join(a.names):
            return Value.update(list(a.names))
        if name == ", ".join(b.names):
            return Value.update(list(b.names))
        return Value.update([part.strip() for part in name.split(",") if part.strip()])

    def releases(self, index: Index, artists: ReleaseArtists, a: Release, b: Release) -> Value[str]:
        print(f"These releases of {', '.join(artists.names)} are named similarly:")
        print(f"   {a.name} ({len(a.song_ids)} songs)")
        print(f"   {b.name} ({len(b.song_ids)} songs)")
        name = self._choose_name(a.name, b.name)
        if name is None:
            return Value.unchanged()
        if name == "":
            return Value.remove()
        return Value.update(name)

    def _choose_total(self, label: str, release: Release, observed: Observed) -> Value[int]:
        print(f"The songs of {release.name} disagree on {label}:")
        for song_ids, value in observed:
            print(f"   {value if value is not None else 'none'}: {len(song_ids)} songs")
        choice = _ask("choice:", ["don't do anything", "enter a number", "remove the tag"])
        if choice == 0:
            return Value.unchanged()
        if choice == 2:
            return Value.remove()
        while True:
            answer = input(f"{label}: ").strip()
            if answer.isdigit() and int(answer) > 0:
                return Value.update(int(answer))
            print("invalid input")

    def total_tracks(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        return self._choose_total("total tracks", release, observed)

    def total_discs(self, index: Index, artists: ReleaseArtists, release: Release, observed: Observed) -> Value[int]:
        return self._choose_total("total discs", release, observed)


def setup_logging(verbosity: int, log_file: Optional[Path] = None) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbosity >= 2 else "WARNING", format="{level}: {message}")
    if log_file is not None:
        logger.add(
            log_file,
            rotation="10 MB",
            retention=5,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} | {message}",
        )


def _relative(path: Path, *roots: Path) -> str:
    for root in roots:
        try:
            return str(path.relative_to(root))
        except ValueError:
            continue
    return str(path)


def _describe_value(name: str, old: str, value: Value) -> Optional[str]:
    if value.is_update():
        new = value.value
        if isinstance(new, list):
            new = ", ".join(new)
        elif isinstance(new, bytes):
            new = f"{len(new)} bytes"
        return f"change {name}: {old} to {new}"
    if value.is_remove():
        return f"remove {name}: {old}"
    return None


def describe_tag_update(index: Index, song_id: int, update: TagUpdate) -> list[str]:
    song = index.song(song_id)
    fields = [
        ("release artists", ", ".join(song.release_artists), update.release_artists),
        ("artists", ", ".join(song.artists), update.artists),
        ("release", song.release, update.release),
        ("title", song.title, update.title),
        ("track number", str(song.track_number or ""), update.track_number),
        ("total tracks", str(song.total_tracks or ""), update.total_tracks),
        ("disc number", str(song.disc_number or ""), update.disc_number),
        ("total discs", str(song.total_discs or ""), update.total_discs),
        ("artwork", "embedded" if song.has_artwork else "", update.artwork),
    ]
    return [line for line in (_describe_value(*f) for f in fields) if line]


def describe_song_operation(changes: Changes, operation: SongOperation, action: str, music_dir: Path) -> str:
    song = changes.index.song(operation.song_id)
    new_path = changes.new_song_path(operation.song_id)
    lines = []
    if new_path != song.path:
        if new_path.parent == song.path.parent:
            lines.append(f"rename {_relative(song.path, music_dir)} to {new_path.name}")
        else:
            lines.append(f"{action} {_relative(song.path, music_dir)} to {_relative(new_path, changes.output_dir)}")
    else:
        lines.append(_relative(song.path, music_dir))
    if operation.tag_update is not None:
        lines.extend(f"    {line}" for line in describe_tag_update(changes.index, operation.song_id, operation.tag_update))
    if operation.mode_update is not None:
        old_mode = str(song.mode) if song.mode is not None else "?"
        lines.append(f"    change permissions: {old_mode} to {operation.mode_update}")
    return "\n".join(lines)


def print_changes(changes: Changes, op_type: FileOpType, music_dir: Path, verbosity: int) -> None:
    if verbosity >= 1:
        if changes.dir_creations:
            print("dirs:")
            for i, creation in enumerate(changes.dir_creations, start=1):
                print(f"{i} create {creation.path}")
            print()
        if changes.song_operations:
            print("songs:")
            for i, operation in enumerate(changes.song_operations, start=1):
                print(f"{i} {describe_song_operation(changes, operation, op_type.value, music_dir)}")
            print()
        if changes.file_operations:
            print("others:")
            for i, operation in enumerate(changes.file_operations, start=1):
                print(
                    f"{i} {op_type.value} {_relative(operation.old_path, music_dir)} "
                    f"to {_relative(operation.new_path, changes.output_dir)}"
                )
            print()

    file_count = len(changes.song_operations) + len(changes.file_operations)
    print(f"[changes] {len(changes.dir_creations)} dirs will be created")
    print(f"[changes] {file_count} files will be changed ({op_type.value})")


def _make_outcome_printer(printer: LinePrinter) -> Callable[[OperationOutcome], None]:
    counter = 0

    def _report(outcome: OperationOutcome) -> None:
        nonlocal counter
        counter += 1
        if outcome.ok:
            printer.show(f"{counter} {outcome.describe()}")
        else:
            printer.reset()
            print(f"{counter} error {outcome.describe()}")

    return _report


def _make_path_printer(printer: LinePrinter, root: Path) -> Callable[[Path], None]:
    counter = 0

    def _report(path: Path) -> None:
        nonlocal counter
        counter += 1
        printer.show(f"{counter} {_relative(path, root)}")

    return _report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="music-organizer",
        description="Moves/copies, renames and retags music files using their metadata.",
    )
    parser.add_argument("music_dir_arg", nargs="?", type=Path, metavar="music_dir", help="Directory to index")
    parser.add_argument("-m", "--music-dir", type=Path, default=None, help="Directory to index")
    parser.add_argument(
        "-o",
        "--output-dir",
        type=Path,
        default=None,
        help="Directory the organized library is written to (defaults to the music dir)",
    )
    parser.add_argument("-c", "--copy", action="store_true", help="Copy files instead of moving them")
    parser.add_argument("-n", "--nocheck", action="store_true", help="Don't check for inconsistencies")
    parser.add_argument("--nocleanup", action="store_true", help="Don't remove empty directories")
    parser.add_argument(
        "-y",
        "--assume-yes",
        action="store_true",
        help="Answer yes to confirmations and leave conflicts unchanged",
    )
    parser.add_argument("-d", "--dryrun", action="store_true", help="Only show planned changes")
    parser.add_argument(
        "-v",
        "--verbosity",
        type=int,
        choices=[0, 1, 2],
        default=1,
        help="Output verbosity, 0 is least and 2 is most verbose",
    )
    parser.add_argument("--keep-artwork", action="store_true", help="Keep embedded artwork")
    parser.add_argument(
        "--permissions",
        type=lambda value: int(value, 8),
        default=CANONICAL_PERMISSIONS,
        help="Permission bits songs should have, in octal (default: 755)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    raw_music_dir = args.music_dir or args.music_dir_arg
    if raw_music_dir is None:
        parser.error("a music directory is required")
    if args.copy and args.output_dir is None:
        parser.error("--copy requires --output-dir")
    if args.dryrun and args.assume_yes:
        parser.error("--dryrun cannot be combined with --assume-yes")

    music_dir: Path = raw_music_dir.expanduser().resolve()
    if not music_dir.exists() or not music_dir.is_dir():
        raise SystemExit(f"Music directory does not exist or is not a directory: {music_dir}")
    output_dir: Path = (args.output_dir or music_dir).expanduser().resolve()
    op_type = FileOpType.from_copy_flag(args.copy)
    verbose = args.verbosity >= 2

    setup_logging(args.verbosity, args.log_file)

    print(f"[index] scanning: {music_dir}")
    printer = LinePrinter(verbose)
    index = build_index(music_dir, progress_callback=_make_path_printer(printer, music_dir))
    printer.reset()
    print(f"[index] songs: {len(index.songs)}, images: {len(index.images)}, unknown: {len(index.unknown)}")

    operations = SongOperations()
    if not args.nocheck:
        print("[check] checking for inconsistencies")
        resolver = UnchangedResolver() if args.assume_yes else PromptResolver()
        run_checks(
            index,
            resolver,
            operations=operations,
            keep_artwork=args.keep_artwork,
            permissions=args.permissions,
        )

    changes = generate_changes(index, operations, output_dir)

    if changes.is_empty():
        print("[changes] nothing to do")
    else:
        print_changes(changes, op_type, music_dir, args.verbosity)
        if not args.assume_yes and not confirm("continue"):
            print("exiting...")
            return

        if args.dryrun:
            print("[write] skipped in dry-run mode")
        else:
            printer = LinePrinter(verbose)
            result = execute_changes(changes, op_type, callback=_make_outcome_printer(printer))
            printer.reset()
            print(f"[write] dirs created: {result.dirs_created}")
            print(f"[write] songs written: {result.songs_written}")
            print(f"[write] other files written: {result.files_written}")
            if result.warnings:
                print(f"[warn] failed operations: {result.failed}")

    if args.nocleanup:
        print("[done]")
        return

    print("[cleanup] looking for empty directories")
    printer = LinePrinter(verbose)
    deletions = find_empty_dirs(music_dir, progress_callback=_make_path_printer(printer, music_dir))
    printer.reset()

    if not deletions:
        print("[cleanup] nothing to clean up")
    else:
        if args.verbosity >= 1:
            print("dirs:")
            for i, deletion in enumerate(deletions, start=1):
                print(f"{i} delete {_relative(deletion.path, music_dir)}")
            print()
        print(f"[cleanup] {len(deletions)} dirs will be deleted")
        if not args.assume_yes and not confirm("continue"):
            print("exiting...")
            return
        if args.dryrun:
            print("[cleanup] skipped in dry-run mode")
        else:
            printer = LinePrinter(verbose)
            cleanup_result = execute_cleanup(deletions, callback=_make_outcome_printer(printer))
            printer.reset()
            print(f"[cleanup] dirs deleted: {cleanup_result.deleted}")
            if cleanup_result.warnings:
                print(f"[warn] failed deletions: {cleanup_result.failed}")

    print("[done]")


if __name__ == "__main__":
    main()
