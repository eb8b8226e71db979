from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable

from loguru import logger
from mutagen import MutagenError

from .changes import Changes
from .metadata import write_mode, write_tag_update
from .models import (
    DirCreation,
    ExecutionResult,
    FileOperation,
    FileOpType,
    OperationOutcome,
    SongOperation,
)


OutcomeCallback = Callable[[OperationOutcome], None]
OPERATION_ERRORS = (OSError, MutagenError)


def relocate(source: Path, target: Path, op_type: FileOpType) -> None:
    if target.exists():
        raise FileExistsError(f"target already exists: {target}")
    if op_type is FileOpType.COPY:
        shutil.copy2(source, target)
    else:
        shutil.move(str(source), str(target))


def apply_dir_creation(creation: DirCreation) -> None:
    creation.path.mkdir(parents=True, exist_ok=True)


def apply_song_operation(changes: Changes, operation: SongOperation, op_type: FileOpType) -> Path:
    song = changes.index.song(operation.song_id)
    path = song.path
    if operation.new_path is not None and operation.new_path != song.path:
        relocate(song.path, operation.new_path, op_type)
        path = operation.new_path
    if operation.tag_update is not None:
        write_tag_update(path, operation.tag_update)
    if operation.mode_update is not None:
        write_mode(path, operation.mode_update)
    return path


def apply_file_operation(operation: FileOperation, op_type: FileOpType) -> None:
    relocate(operation.old_path, operation.new_path, op_type)
    if operation.tag_update is not None:
        write_tag_update(operation.new_path, operation.tag_update)


def _report(
    outcome: OperationOutcome,
    result: ExecutionResult,
    callback: OutcomeCallback | None,
) -> None:
    if outcome.ok:
        logger.debug(outcome.describe())
    else:
        result.failed += 1
        result.warnings.append(outcome.describe())
        logger.warning(outcome.describe())
    if callback:
        callback(outcome)


def execute_dir_creations(
    changes: Changes,
    callback: OutcomeCallback | None = None,
    result: ExecutionResult | None = None,
) -> ExecutionResult:
    result = result or ExecutionResult()
    for creation in changes.dir_creations:
        outcome = OperationOutcome(kind="create dir", source=creation.path)
        try:
            apply_dir_creation(creation)
            result.dirs_created += 1
        except OSError as exc:
            outcome.error = exc
        _report(outcome, result, callback)
    return result


def execute_song_operations(
    changes: Changes,
    op_type: FileOpType,
    callback: OutcomeCallback | None = None,
    result: ExecutionResult | None = None,
) -> ExecutionResult:
    result = result or ExecutionResult()
    for operation in changes.song_operations:
        song = changes.index.song(operation.song_id)
        outcome = OperationOutcome(kind=f"{op_type.value} song", source=song.path, target=operation.new_path)
        try:
            apply_song_operation(changes, operation, op_type)
            result.songs_written += 1
        except OPERATION_ERRORS as exc:
            outcome.error = exc
        _report(outcome, result, callback)
    return result


def execute_file_operations(
    changes: Changes,
    op_type: FileOpType,
    callback: OutcomeCallback | None = None,
    result: ExecutionResult | None = None,
) -> ExecutionResult:
    result = result or ExecutionResult()
    for operation in changes.file_operations:
        outcome = OperationOutcome(kind=f"{op_type.value} file", source=operation.old_path, target=operation.new_path)
        try:
            apply_file_operation(operation, op_type)
            result.files_written += 1
        except OPERATION_ERRORS as exc:
            outcome.error = exc
        _report(outcome, result, callback)
    return result


def execute_changes(
    changes: Changes,
    op_type: FileOpType,
    callback: OutcomeCallback | None = None,
) -> ExecutionResult:
    """Apply ``changes`` phase by phase: directories, songs, other files.

    A failing item is reported through ``callback`` and the result's warnings
    and never stops the remaining items. There is no rollback.
    """
    result = ExecutionResult()
    execute_dir_creations(changes, callback, result)
    execute_song_operations(changes, op_type, callback, result)
    execute_file_operations(changes, op_type, callback, result)
    return result
