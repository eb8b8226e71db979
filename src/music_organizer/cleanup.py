from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

from loguru import logger

from .models import CleanupResult, DirDeletion, OperationOutcome


def _collect_empty(directory: Path, deletions: list[DirDeletion], progress_callback: Callable[[Path], None] | None) -> bool:
    if progress_callback:
        progress_callback(directory)

    try:
        with os.scandir(directory) as entries:
            children = sorted(entries, key=lambda entry: entry.name)
    except OSError as exc:
        logger.warning(f"cleanup skipped: {directory}: {exc}")
        return False

    empty = True
    for entry in children:
        # Every child is visited, even after one has already blocked this directory.
        if entry.is_dir(follow_symlinks=False):
            if not _collect_empty(Path(entry.path), deletions, progress_callback):
                empty = False
        else:
            empty = False

    if empty:
        deletions.append(DirDeletion(directory))
    return empty


def find_empty_dirs(music_dir: Path, progress_callback: Callable[[Path], None] | None = None) -> list[DirDeletion]:
    """List directories below ``music_dir`` with no file anywhere beneath them.

    The list is in post-order, so deleting in order removes children before
    their parents. ``music_dir`` itself is never listed.
    """
    deletions: list[DirDeletion] = []
    try:
        with os.scandir(music_dir) as entries:
            children = [Path(entry.path) for entry in entries if entry.is_dir(follow_symlinks=False)]
    except OSError as exc:
        logger.warning(f"cleanup skipped: {music_dir}: {exc}")
        return deletions

    for child in sorted(children):
        _collect_empty(child, deletions, progress_callback)
    return deletions


def execute_cleanup(
    deletions: list[DirDeletion],
    callback: Callable[[OperationOutcome], None] | None = None,
) -> CleanupResult:
    result = CleanupResult()
    for deletion in deletions:
        outcome = OperationOutcome(kind="delete dir", source=deletion.path)
        try:
            deletion.path.rmdir()
            result.deleted += 1
            logger.debug(outcome.describe())
        except OSError as exc:
            outcome.error = exc
            result.failed += 1
            result.warnings.append(outcome.describe())
            logger.warning(outcome.describe())
        if callback:
            callback(outcome)
    return result
