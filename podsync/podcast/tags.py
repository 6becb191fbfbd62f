"""
Media tag writing for downloaded episodes (MP3 and MP4 family).

Tags are derived from the channel and episode records, merged with the
subscription's overrides, and returned so the ``id3::`` pattern tokens can
use them when naming the file.
"""
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

from mutagen import MutagenError
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, Frames
from mutagen.mp4 import MP4, MP4Cover

from podsync.exceptions import TagError

from .episode import Episode
from .feed_parser import RawChannel, VENDOR_PREFIX

logger = logging.getLogger(__name__)

_MP4_ATOMS = {
    "TIT2": "\xa9nam",
    "TALB": "\xa9alb",
    "TPE1": "\xa9ART",
    "TCON": "\xa9gen",
    "TCOP": "cprt",
    "TDRC": "\xa9day",
}


def derive_tags(
    channel: Optional[RawChannel],
    episode: Episode,
    overrides: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build an ID3 frame map for an episode.

    Overrides are keyed by frame id (e.g. ``TALB``) and win over feed data.
    """
    tags: Dict[str, str] = {"TIT2": episode.title, "WOAF": episode.url}
    tags["TDRC"] = episode.published.strftime("%Y-%m-%d")

    author = episode.raw.get_str(f"{VENDOR_PREFIX}:author")
    if channel is not None:
        if channel.title:
            tags["TALB"] = channel.title
        author = author or channel.author
        if channel.categories:
            tags["TCON"] = channel.categories[0]
        if channel.copyright:
            tags["TCOP"] = channel.copyright
        if channel.language:
            tags["TLAN"] = channel.language
    if author:
        tags["TPE1"] = author

    for frame, value in (overrides or {}).items():
        tags[frame.upper()] = str(value)

    return tags


def _write_id3(path: Path, tags: Mapping[str, str], artwork: Optional[bytes]) -> None:
    try:
        id3 = ID3(path)
    except ID3NoHeaderError:
        id3 = ID3()

    for frame_id, value in tags.items():
        frame_cls = Frames.get(frame_id)
        if frame_cls is None:
            logger.debug(f"Skipping unknown ID3 frame {frame_id}")
            continue
        id3.delall(frame_id)
        if frame_id.startswith("W"):
            id3.add(frame_cls(url=value))
        else:
            id3.add(frame_cls(encoding=3, text=value))

    if artwork:
        mime = "image/png" if artwork.startswith(b"\x89PNG") else "image/jpeg"
        id3.delall("APIC")
        id3.add(APIC(encoding=3, mime=mime, type=3, desc="Cover", data=artwork))

    id3.save(path, v2_version=3)


def _write_mp4(path: Path, tags: Mapping[str, str], artwork: Optional[bytes]) -> None:
    mp4 = MP4(path)
    for frame_id, atom in _MP4_ATOMS.items():
        if tags.get(frame_id):
            mp4[atom] = [tags[frame_id]]

    if artwork:
        fmt = MP4Cover.FORMAT_PNG if artwork.startswith(b"\x89PNG") else MP4Cover.FORMAT_JPEG
        mp4["covr"] = [MP4Cover(artwork, imageformat=fmt)]

    mp4.save()


def write_episode_tags(
    path: Path,
    channel: Optional[RawChannel],
    episode: Episode,
    overrides: Optional[Mapping[str, str]] = None,
    artwork: Optional[bytes] = None,
) -> Optional[Dict[str, str]]:
    """
    Write tags to a downloaded episode.

    Dispatches on the file extension. Returns the written tag map, or None
    when the format is not supported.

    Raises:
        TagError: If mutagen cannot read or write the file.
    """
    path = Path(path)
    ext = path.suffix.lower()
    tags = derive_tags(channel, episode, overrides)

    try:
        if ext == ".mp3":
            _write_id3(path, tags, artwork)
        elif ext in (".m4a", ".m4b", ".mp4"):
            _write_mp4(path, tags, artwork)
        else:
            logger.debug(f"Tag writing not supported for {ext}: {path.name}")
            return None
    except (MutagenError, OSError, ValueError) as e:
        raise TagError(f"Failed to write tags to {path.name}: {e}") from e

    return tags
