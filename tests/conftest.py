"""Shared fixtures: Song factories and tagged MP3, FLAC and M4A files for real tag round-trips."""

from pathlib import Path
from typing import Optional

import pytest
from mutagen.flac import FLAC, Picture
from mutagen.id3 import APIC, ID3, TALB, TIT2, TPE1, TPE2, TPOS, TRCK, PictureType
from mutagen.mp4 import MP4, MP4Cover

from music_organizer.models import Index, Mode, Song


def make_song(
    song_id: int,
    path: Path,
    release_artists: Optional[list[str]] = None,
    artists: Optional[list[str]] = None,
    release: str = "Album X",
    title: str = "Song Y",
    track_number: Optional[int] = 3,
    disc_number: Optional[int] = None,
    total_discs: Optional[int] = None,
    total_tracks: Optional[int] = None,
    mode: Optional[Mode] = None,
    has_artwork: bool = False,
) -> Song:
    return Song(
        id=song_id,
        path=path,
        release_artists=release_artists or ["Artist A"],
        artists=artists or ["Artist A"],
        release=release,
        title=title,
        mode=mode,
        track_number=track_number,
        total_tracks=total_tracks,
        disc_number=disc_number,
        total_discs=total_discs,
        has_artwork=has_artwork,
    )


def write_mp3(
    path: Path,
    artists: Optional[list[str]] = None,
    release_artists: Optional[list[str]] = None,
    release: Optional[str] = "Album X",
    title: Optional[str] = "Song Y",
    track: Optional[str] = "3",
    disc: Optional[str] = None,
    artwork: Optional[bytes] = None,
) -> Path:
    """Create an (audio-less) .mp3 file carrying only an ID3 tag."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"")
    tags = ID3()
    if artists:
        tags.add(TPE1(encoding=3, text=artists))
    if release_artists:
        tags.add(TPE2(encoding=3, text=release_artists))
    if release:
        tags.add(TALB(encoding=3, text=[release]))
    if title:
        tags.add(TIT2(encoding=3, text=[title]))
    if track:
        tags.add(TRCK(encoding=3, text=[track]))
    if disc:
        tags.add(TPOS(encoding=3, text=[disc]))
    if artwork:
        tags.add(APIC(encoding=3, mime="image/png", type=PictureType.COVER_FRONT, desc="", data=artwork))
    tags.save(path, v2_version=4)
    return path


def write_flac(path: Path, tags: dict[str, list[str]], artwork: Optional[bytes] = None) -> Path:
    """Create an (audio-less) .flac file: a STREAMINFO block plus Vorbis comments."""
    path.parent.mkdir(parents=True, exist_ok=True)
    # 4096-sample blocks, 44100 Hz, 2 channels, 16 bits, 0 samples, no MD5.
    stream_info = (4096).to_bytes(2, "big") * 2 + b"\x00" * 6
    stream_info += ((44100 << 44) | (1 << 41) | (15 << 36)).to_bytes(8, "big") + b"\x00" * 16
    path.write_bytes(b"fLaC" + bytes([0x80, 0, 0, len(stream_info)]) + stream_info)

    audio = FLAC(path)
    audio.add_tags()
    for key, values in tags.items():
        audio[key] = values
    if artwork:
        picture = Picture()
        picture.type = PictureType.COVER_FRONT
        picture.mime = "image/png"
        picture.data = artwork
        audio.add_picture(picture)
    audio.save()
    return path


def _atom(name: bytes, payload: bytes) -> bytes:
    return (8 + len(payload)).to_bytes(4, "big") + name + payload


def write_m4a(path: Path, tags: dict[str, list], artwork: Optional[bytes] = None) -> Path:
    """Create an (audio-less) .m4a file: an ftyp and a moov atom carrying only metadata."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(_atom(b"ftyp", b"M4A \x00\x00\x00\x00M4A isom") + _atom(b"moov", b""))

    audio = MP4(path)
    audio.add_tags()
    for key, values in tags.items():
        audio.tags[key] = values
    if artwork:
        audio.tags["covr"] = [MP4Cover(artwork, imageformat=MP4Cover.FORMAT_PNG)]
    audio.save()
    return path


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    root = tmp_path / "music"
    root.mkdir()
    return root


@pytest.fixture
def simple_index(music_dir: Path) -> Index:
    songs = [
        make_song(0, music_dir / "incoming" / "a.mp3", title="First", track_number=1),
        make_song(1, music_dir / "incoming" / "b.mp3", title="Second", track_number=2),
    ]
    return Index(music_dir=music_dir, songs=songs)
