from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger
from mutagen import MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, ID3, TALB, TIT2, TPE1, TPE2, TPOS, TRCK, ID3NoHeaderError, PictureType
from mutagen.mp4 import MP4, MP4Cover

from .models import Mode, TagUpdate, Value


MP3_EXTENSIONS = {".mp3"}
MP4_EXTENSIONS = {".m4a", ".m4b", ".mp4"}
FLAC_EXTENSIONS = {".flac"}
SONG_EXTENSIONS = MP3_EXTENSIONS | MP4_EXTENSIONS | FLAC_EXTENSIONS
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg"}

READ_ERRORS = (MutagenError, OSError, ValueError)


def is_song_file(path: Path) -> bool:
    return path.suffix.lower() in SONG_EXTENSIONS


def is_image_file(path: Path) -> bool:
    return path.suffix.lower() in IMAGE_EXTENSIONS


@dataclass
class Metadata:
    mode: Optional[Mode] = None
    track_number: Optional[int] = None
    total_tracks: Optional[int] = None
    disc_number: Optional[int] = None
    total_discs: Optional[int] = None
    artists: list[str] = field(default_factory=list)
    release_artists: list[str] = field(default_factory=list)
    release: Optional[str] = None
    title: Optional[str] = None
    has_artwork: bool = False

    def release_artists_or_fallback(self) -> list[str]:
        return self.release_artists or self.artists

    def song_artists_or_fallback(self) -> list[str]:
        return self.artists or self.release_artists


def zero_none(value: Optional[int]) -> Optional[int]:
    if not value:
        return None
    return value


def _parse_int(value: object) -> Optional[int]:
    try:
        return zero_none(int(str(value).strip()))
    except (TypeError, ValueError):
        return None


def parse_number_pair(value: object) -> tuple[Optional[int], Optional[int]]:
    """Parse ``"3/12"`` style text into ``(3, 12)``."""
    if value is None:
        return None, None
    text = str(value).strip()
    if "/" in text:
        number, total = text.split("/", 1)
        return _parse_int(number), _parse_int(total)
    return _parse_int(text), None


def _text_values(values: object) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    result = []
    for value in values:  # type: ignore[union-attr]
        # ID3v2.3 writers sometimes pack several names into one NUL-joined string.
        for part in str(value).split("\x00"):
            part = part.strip()
            if part:
                result.append(part)
    return result


def _first_text(values: object) -> Optional[str]:
    texts = _text_values(values)
    return texts[0] if texts else None


def _read_mode(path: Path) -> Optional[Mode]:
    try:
        return Mode(os.stat(path).st_mode)
    except OSError:
        return None


def _read_mp3(path: Path) -> Metadata:
    tags = ID3(path)

    def _frame_text(key: str) -> list[str]:
        frame = tags.get(key)
        return _text_values(frame.text) if frame is not None else []

    track_number, total_tracks = parse_number_pair(_first_text(_frame_text("TRCK")))
    disc_number, total_discs = parse_number_pair(_first_text(_frame_text("TPOS")))
    return Metadata(
        track_number=track_number,
        total_tracks=total_tracks,
        disc_number=disc_number,
        total_discs=total_discs,
        artists=_frame_text("TPE1"),
        release_artists=_frame_text("TPE2"),
        release=_first_text(_frame_text("TALB")),
        title=_first_text(_frame_text("TIT2")),
        has_artwork=bool(tags.getall("APIC")),
    )


def _mp4_pair(tags: object, key: str) -> tuple[Optional[int], Optional[int]]:
    values = tags.get(key) if tags is not None else None  # type: ignore[attr-defined]
    if not values:
        return None, None
    number, total = values[0]
    return zero_none(number), zero_none(total)


def _read_mp4(path: Path) -> Metadata:
    audio = MP4(path)
    tags = audio.tags
    if tags is None:
        return Metadata()

    track_number, total_tracks = _mp4_pair(tags, "trkn")
    disc_number, total_discs = _mp4_pair(tags, "disk")
    return Metadata(
        track_number=track_number,
        total_tracks=total_tracks,
        disc_number=disc_number,
        total_discs=total_discs,
        artists=_text_values(tags.get("\u00a9ART")),
        release_artists=_text_values(tags.get("aART")),
        release=_first_text(tags.get("\u00a9alb")),
        title=_first_text(tags.get("\u00a9nam")),
        has_artwork=bool(tags.get("covr")),
    )


def _vorbis_number(tags: object, *keys: str) -> tuple[Optional[int], Optional[int]]:
    for key in keys:
        values = tags.get(key)  # type: ignore[attr-defined]
        if values:
            return parse_number_pair(values[0])
    return None, None


def _read_flac(path: Path) -> Metadata:
    audio = FLAC(path)
    tags = audio.tags
    if tags is None:
        return Metadata(has_artwork=bool(audio.pictures))

    track_number, total_tracks = _vorbis_number(tags, "tracknumber")
    if total_tracks is None:
        total_tracks, _ = _vorbis_number(tags, "tracktotal", "totaltracks")
    disc_number, total_discs = _vorbis_number(tags, "discnumber")
    if total_discs is None:
        total_discs, _ = _vorbis_number(tags, "totaldiscs", "disctotal")
    return Metadata(
        track_number=track_number,
        total_tracks=total_tracks,
        disc_number=disc_number,
        total_discs=total_discs,
        artists=_text_values(tags.get("artist")),
        release_artists=_text_values(tags.get("albumartist")),
        release=_first_text(tags.get("album")),
        title=_first_text(tags.get("title")),
        has_artwork=bool(audio.pictures),
    )


def read_metadata(path: Path) -> Metadata:
    """Read the tags of one song file.

    Never raises: a missing, corrupt or unsupported tag yields an empty
    ``Metadata``, which the indexer then files as unknown.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in MP3_EXTENSIONS:
            metadata = _read_mp3(path)
        elif suffix in MP4_EXTENSIONS:
            metadata = _read_mp4(path)
        elif suffix in FLAC_EXTENSIONS:
            metadata = _read_flac(path)
        else:
            return Metadata()
    except READ_ERRORS as exc:
        logger.debug(f"unreadable tags: {path}: {exc}")
        return Metadata()

    metadata.mode = _read_mode(path)
    return metadata


def _image_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    return "image/jpeg"


def _merge_pair(
    current: tuple[Optional[int], Optional[int]],
    number: Value[int],
    total: Value[int],
) -> tuple[Optional[int], Optional[int]]:
    cur_number, cur_total = current
    new_number = None if number.is_remove() else number.resolve(cur_number)
    new_total = None if total.is_remove() else total.resolve(cur_total)
    return new_number, new_total


def _pair_text(number: Optional[int], total: Optional[int]) -> Optional[str]:
    if number is None and total is None:
        return None
    text = str(number or 0)
    if total is not None:
        text += f"/{total}"
    return text


def _write_mp3(path: Path, update: TagUpdate) -> None:
    try:
        tags = ID3(path)
    except ID3NoHeaderError:
        tags = ID3()

    def _apply_text(key: str, frame_type: type, value: Value) -> None:
        if value.is_update():
            text = value.value if isinstance(value.value, list) else [value.value]
            tags.setall(key, [frame_type(encoding=3, text=text)])
        elif value.is_remove():
            tags.delall(key)

    _apply_text("TPE2", TPE2, update.release_artists)
    _apply_text("TPE1", TPE1, update.artists)
    _apply_text("TALB", TALB, update.release)
    _apply_text("TIT2", TIT2, update.title)

    for key, frame_type, number, total in (
        ("TRCK", TRCK, update.track_number, update.total_tracks),
        ("TPOS", TPOS, update.disc_number, update.total_discs),
    ):
        if number.is_unchanged() and total.is_unchanged():
            continue
        frame = tags.get(key)
        current = parse_number_pair(frame.text[0] if frame is not None and frame.text else None)
        text = _pair_text(*_merge_pair(current, number, total))
        if text is None:
            tags.delall(key)
        else:
            tags.setall(key, [frame_type(encoding=3, text=[text])])

    if update.artwork.is_update():
        data = update.artwork.value or b""
        tags.delall("APIC")
        tags.add(APIC(encoding=3, mime=_image_mime(data), type=PictureType.COVER_FRONT, desc="", data=data))
    elif update.artwork.is_remove():
        tags.delall("APIC")

    tags.save(path, v2_version=4)


def _write_mp4(path: Path, update: TagUpdate) -> None:
    audio = MP4(path)
    if audio.tags is None:
        audio.add_tags()
    tags = audio.tags

    def _apply(key: str, value: Value) -> None:
        if value.is_update():
            tags[key] = value.value if isinstance(value.value, list) else [value.value]
        elif value.is_remove() and key in tags:
            del tags[key]

    _apply("aART", update.release_artists)
    _apply("\u00a9ART", update.artists)
    _apply("\u00a9alb", update.release)
    _apply("\u00a9nam", update.title)

    for key, number, total in (
        ("trkn", update.track_number, update.total_tracks),
        ("disk", update.disc_number, update.total_discs),
    ):
        if number.is_unchanged() and total.is_unchanged():
            continue
        new_number, new_total = _merge_pair(_mp4_pair(tags, key), number, total)
        if new_number is None and new_total is None:
            if key in tags:
                del tags[key]
        else:
            tags[key] = [(new_number or 0, new_total or 0)]

    if update.artwork.is_update():
        data = update.artwork.value or b""
        image_format = MP4Cover.FORMAT_PNG if _image_mime(data) == "image/png" else MP4Cover.FORMAT_JPEG
        tags["covr"] = [MP4Cover(data, imageformat=image_format)]
    elif update.artwork.is_remove() and "covr" in tags:
        del tags["covr"]

    audio.save()


def _write_flac(path: Path, update: TagUpdate) -> None:
    audio = FLAC(path)
    if audio.tags is None:
        audio.add_tags()
    tags = audio.tags

    def _apply(key: str, value: Value) -> None:
        if value.is_update():
            payload = value.value
            tags[key] = [str(v) for v in payload] if isinstance(payload, list) else [str(payload)]
        elif value.is_remove() and key in tags:
            del tags[key]

    _apply("albumartist", update.release_artists)
    _apply("artist", update.artists)
    _apply("album", update.release)
    _apply("title", update.title)

    # The number key may carry "n/total" text; both halves are rewritten together.
    for number_key, total_keys, number, total in (
        ("tracknumber", ("tracktotal", "totaltracks"), update.track_number, update.total_tracks),
        ("discnumber", ("totaldiscs", "disctotal"), update.disc_number, update.total_discs),
    ):
        if number.is_unchanged() and total.is_unchanged():
            continue
        current_number, current_total = _vorbis_number(tags, number_key)
        if current_total is None:
            current_total, _ = _vorbis_number(tags, *total_keys)
        new_number, new_total = _merge_pair((current_number, current_total), number, total)
        for key in (number_key,) + total_keys:
            if key in tags:
                del tags[key]
        if new_number is not None:
            tags[number_key] = [str(new_number)]
        if new_total is not None:
            tags[total_keys[0]] = [str(new_total)]

    if update.artwork.is_update():
        data = update.artwork.value or b""
        picture = Picture()
        picture.type = PictureType.COVER_FRONT
        picture.mime = _image_mime(data)
        picture.data = data
        audio.clear_pictures()
        audio.add_picture(picture)
    elif update.artwork.is_remove():
        audio.clear_pictures()

    audio.save()


def write_tag_update(path: Path, update: TagUpdate) -> None:
    """Apply every non-Unchanged field of ``update`` to the file at ``path``.

    Raises ``MutagenError`` or ``OSError`` on failure; callers report those
    per operation.
    """
    if update.is_empty():
        return
    suffix = path.suffix.lower()
    if suffix in MP3_EXTENSIONS:
        _write_mp3(path, update)
    elif suffix in MP4_EXTENSIONS:
        _write_mp4(path, update)
    elif suffix in FLAC_EXTENSIONS:
        _write_flac(path, update)
    else:
        return
    logger.debug(f"tags written: {path}")


def write_mode(path: Path, mode: Mode) -> None:
    os.chmod(path, mode.permissions())
