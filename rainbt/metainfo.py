"""Reading and writing torrent metainfo files."""

from __future__ import annotations

import hashlib
import logging
import os
import stat
import time
from dataclasses import dataclass, field
from typing import IO, Any, Iterator, Sequence, Union

from rainbt.bencode import BencodeError, _raw_dict, decode, encode

log = logging.getLogger(__name__)

_SHA1_SIZE = 20
_MIN_PIECE_UNIT = 16 << 10


class MetainfoError(ValueError):
    """Raised for invalid or unsupported torrent metadata."""


@dataclass(frozen=True)
class FileEntry:
    """A file inside a torrent."""

    length: int
    path: str
    padding: bool = False


def clean_name(name: Union[str, bytes], max_len: int = 255) -> str:
    """Make a name safe for the file system.

    Invalid UTF-8 is replaced, the name is cut to ``max_len`` bytes while
    keeping the extension, and '/' is replaced with '_'.
    """
    if isinstance(name, (bytes, bytearray)):
        name = bytes(name).decode("utf-8", errors="replace")
    data = name.encode("utf-8", errors="replace")
    data = _trim_name(data, max_len)
    return data.decode("utf-8", errors="ignore").replace("/", "_")


def _trim_name(data: bytes, max_len: int) -> bytes:
    if len(data) <= max_len:
        return data
    dot = data.rfind(b".")
    ext = data[dot:] if dot > data.rfind(b"/") else b""
    if len(ext) > max_len:
        return data[:max_len]
    return data[: max_len - len(ext)] + ext


def _join(parts: Sequence[str]) -> str:
    kept = [part for part in parts if part]
    if not kept:
        return ""
    return os.path.normpath(os.path.join(*kept))


def _text(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


def _field(d: dict, key: bytes, kind: type, default: Any) -> Any:
    value = d.get(key, default)
    if not isinstance(value, kind):
        raise MetainfoError(f"invalid type for field {key.decode(errors='replace')!r}")
    return value


def _string_list(value: Any, key: bytes) -> list[bytes]:
    if not isinstance(value, list) or not all(isinstance(v, bytes) for v in value):
        raise MetainfoError(f"invalid type for field {key.decode(errors='replace')!r}")
    return value


def _parse_private(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, int):
        return value != 0
    if isinstance(value, bytes):
        return value not in (b"", b"0")
    return True


@dataclass
class _RawFile:
    length: int
    path: list[bytes]
    attr: bytes

    def is_padding(self) -> bool:
        if b"p" in self.attr:
            return True
        # Some clients mark padding files by name instead of BEP 47 attributes.
        return bool(self.path) and self.path[-1].startswith(b"_____padding_file")


def _parse_files(value: Any, utf8: bool) -> list[_RawFile]:
    if not isinstance(value, list):
        raise MetainfoError("invalid type for field 'files'")
    files = []
    for entry in value:
        if not isinstance(entry, dict):
            raise MetainfoError("invalid file entry")
        length = _field(entry, b"length", int, 0)
        path = _string_list(entry.get(b"path", []), b"path")
        path_utf8 = _string_list(entry.get(b"path.utf-8", []), b"path.utf-8")
        attr = _field(entry, b"attr", bytes, b"")
        if utf8 and path_utf8:
            path = path_utf8
        files.append(_RawFile(length, path, attr))
    return files


@dataclass
class Info:
    """The info dictionary of a torrent."""

    piece_length: int
    name: str
    hash: bytes
    length: int
    num_pieces: int
    raw: bytes = field(repr=False)
    private: bool
    files: list[FileEntry]
    pieces: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, data: bytes, utf8: bool = True, pad: bool = True) -> Info:
        """Parse a bencoded info dictionary.

        With ``utf8`` the ``.utf-8`` variants of names override the plain ones;
        with ``pad`` padding files are detected.
        """
        data = bytes(data)
        try:
            d = decode(data)
        except BencodeError as exc:
            raise MetainfoError(str(exc)) from exc
        if not isinstance(d, dict):
            raise MetainfoError("info is not a dictionary")

        piece_length = _field(d, b"piece length", int, 0)
        if isinstance(piece_length, bool) or not 0 <= piece_length <= 0xFFFFFFFF:
            raise MetainfoError("invalid piece length")
        pieces = _field(d, b"pieces", bytes, b"")
        name = _field(d, b"name", bytes, b"")
        name_utf8 = _field(d, b"name.utf-8", bytes, b"")
        single_length = _field(d, b"length", int, 0)
        raw_files = _parse_files(d.get(b"files", []), utf8)

        if piece_length == 0:
            raise MetainfoError("torrent has zero piece length")
        if len(pieces) % _SHA1_SIZE:
            raise MetainfoError("invalid piece data")
        num_pieces = len(pieces) // _SHA1_SIZE
        if num_pieces == 0:
            raise MetainfoError("torrent has zero pieces")
        if utf8 and name_utf8:
            name = name_utf8

        for raw_file in raw_files:
            if any(part.strip() == b".." for part in raw_file.path):
                joined = _join([_text(p) for p in raw_file.path])
                raise MetainfoError(f"invalid file name: {joined!r}")

        multi_file = bool(raw_files)
        length = sum(f.length for f in raw_files) if multi_file else single_length
        delta = piece_length * num_pieces - length
        if delta >= piece_length or delta < 0:
            raise MetainfoError("invalid piece data")

        info_hash = hashlib.sha1(data).digest()
        display_name = _text(name) if name else info_hash.hex()

        if multi_file:
            files = [
                FileEntry(
                    length=f.length,
                    path=_join([clean_name(display_name)] + [clean_name(p) for p in f.path]),
                    padding=pad and f.is_padding(),
                )
                for f in raw_files
            ]
        else:
            files = [FileEntry(length=length, path=clean_name(display_name))]

        return cls(
            piece_length=piece_length,
            name=display_name,
            hash=info_hash,
            length=length,
            num_pieces=num_pieces,
            raw=data,
            private=_parse_private(d.get(b"private")),
            files=files,
            pieces=pieces,
        )

    def piece_hash(self, index: int) -> bytes:
        """Return the SHA-1 hash of the piece at ``index``."""
        if not 0 <= index < self.num_pieces:
            raise IndexError("piece index out of range")
        begin = index * _SHA1_SIZE
        return self.pieces[begin : begin + _SHA1_SIZE]


def _is_tracker_supported(url: str) -> bool:
    return url.startswith(("http://", "https://", "udp://"))


def _is_webseed_supported(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def _decode_or_none(raw: bytes) -> Any:
    try:
        return decode(raw)
    except BencodeError:
        return None


@dataclass
class MetaInfo:
    """A parsed torrent file."""

    info: Info
    announce_list: list[list[str]] = field(default_factory=list)
    url_list: list[str] = field(default_factory=list)

    @classmethod
    def from_stream(cls, stream: IO[bytes]) -> MetaInfo:
        """Read a torrent file from a binary stream."""
        try:
            raw = _raw_dict(stream.read())
        except BencodeError as exc:
            raise MetainfoError(str(exc)) from exc
        info_raw = raw.get(b"info", b"")
        if not info_raw:
            raise MetainfoError("no info dict in torrent file")
        info = Info.from_bytes(info_raw, True, True)

        announce_list: list[list[str]] = []
        raw_announce_list = raw.get(b"announce-list", b"")
        if raw_announce_list:
            tiers = _decode_or_none(raw_announce_list)
            valid = isinstance(tiers, list) and all(
                isinstance(tier, list) and all(isinstance(t, bytes) for t in tier)
                for tier in tiers
            )
            if valid:
                for tier in tiers:
                    kept = [_text(t) for t in tier if _is_tracker_supported(_text(t))]
                    if kept:
                        announce_list.append(kept)
        else:
            announce = _decode_or_none(raw.get(b"announce", b""))
            if isinstance(announce, bytes) and _is_tracker_supported(_text(announce)):
                announce_list.append([_text(announce)])

        url_list: list[str] = []
        raw_url_list = raw.get(b"url-list", b"")
        if raw_url_list:
            value = _decode_or_none(raw_url_list)
            if raw_url_list[:1] == b"l":
                if isinstance(value, list) and all(isinstance(v, bytes) for v in value):
                    url_list = [_text(v) for v in value if _is_webseed_supported(_text(v))]
            elif isinstance(value, bytes) and _is_webseed_supported(_text(value)):
                url_list.append(_text(value))

        return cls(info=info, announce_list=announce_list, url_list=url_list)


def calculate_piece_length(total_length: int) -> int:
    """Choose a piece length that gives about 2000 pieces, within 32 KiB to 16 MiB."""
    piece_length = total_length // 2000
    if piece_length < 32 << 10:
        return 32 << 10
    if piece_length > 16 << 20:
        return 16 << 20
    return 1 << (piece_length - 1).bit_length()


def _walk(path: str) -> Iterator[tuple[str, int]]:
    """Yield every non-directory below ``path`` in lexical order with its size."""
    st = os.lstat(path)
    if stat.S_ISDIR(st.st_mode):
        for entry in sorted(os.listdir(path)):
            yield from _walk(os.path.join(path, entry))
    else:
        yield path, st.st_size


def new_info_bytes(
    root: str,
    paths: Sequence[str],
    private: bool = False,
    piece_length: int = 0,
    name: str = "",
) -> bytes:
    """Hash the files at ``paths`` and return a bencoded info dictionary."""
    paths = list(paths)
    if not paths:
        raise MetainfoError("no path specified")
    if len(paths) == 1:
        if not name:
            name = os.path.basename(os.path.normpath(paths[0]))
        single_file = not stat.S_ISDIR(os.stat(paths[0]).st_mode)
    else:
        single_file = False
        if not root:
            raise MetainfoError("no root specified")
        if not name:
            raise MetainfoError("no name specified")

    total_length = sum(size for path in paths for _, size in _walk(path))
    if total_length == 0:
        raise MetainfoError("no files")
    if piece_length == 0:
        piece_length = calculate_piece_length(total_length)
        log.info("Calculated piece length: %d K", piece_length >> 10)
    elif piece_length % _MIN_PIECE_UNIT:
        raise MetainfoError("piece length must be multiple of 16K")

    buf = bytearray()
    pieces = bytearray()
    files: list[dict[str, Any]] = []
    for path in paths:
        relroot = root or path
        for file_path, size in _walk(path):
            relpath = os.path.relpath(file_path, relroot)
            log.info("Adding %r", relpath)
            files.append({"length": size, "path": relpath.split(os.sep), "attr": ""})
            with open(file_path, "rb") as f:
                while chunk := f.read(piece_length - len(buf)):
                    buf += chunk
                    if len(buf) == piece_length:
                        pieces += hashlib.sha1(buf).digest()
                        buf.clear()
    if buf:
        pieces += hashlib.sha1(buf).digest()

    info: dict[str, Any] = {
        "name": name,
        "private": private,
        "piece length": piece_length,
        "pieces": bytes(pieces),
    }
    if single_file:
        info["length"] = total_length
    else:
        info["files"] = files
    return encode(info)


def new_torrent_bytes(
    info: bytes,
    trackers: Sequence[Sequence[str]] = (),
    webseeds: Sequence[str] = (),
    comment: str = "",
    creator: str = "",
) -> bytes:
    """Build a bencoded torrent file around the raw info dictionary ``info``."""
    values: dict[bytes, bytes] = {
        b"info": bytes(info),
        b"creation date": encode(int(time.time())),
    }
    trackers = [list(tier) for tier in trackers]
    if len(trackers) == 1 and len(trackers[0]) == 1:
        values[b"announce"] = encode(trackers[0][0])
    elif trackers:
        values[b"announce-list"] = encode(trackers)
    webseeds = list(webseeds)
    if len(webseeds) == 1:
        values[b"url-list"] = encode(webseeds[0])
    elif len(webseeds) > 1:
        values[b"url-list"] = encode(webseeds)
    if comment:
        values[b"comment"] = encode(comment)
    if creator:
        values[b"created by"] = encode(creator)
    body = b"".join(encode(key) + values[key] for key in sorted(values))
    return b"d" + body + b"e"