"""Pieces made of contiguous sections of files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import IO, Iterable, Iterator, Optional


@dataclass
class FileSection:
    """A region of a file that belongs to a piece.

    ``file`` is a binary file object opened for reading and writing. Padding
    sections hold only zeros, are never written, and may have no file at all.
    """

    file: Optional[IO[bytes]]
    offset: int
    length: int
    name: str = ""
    padding: bool = False


def _read_section(section: FileSection, offset: int, size: int) -> bytes:
    if size <= 0:
        return b""
    if section.file is None:
        return bytes(size)
    section.file.seek(offset)
    return section.file.read(size)


class Piece:
    """Sections of files that together hold the data of one piece.

    When piece hashes are calculated all files of a torrent are concatenated
    and split into pieces; a piece therefore may span several files.
    """

    def __init__(self, sections: Iterable[FileSection]) -> None:
        self.sections = list(sections)

    def __iter__(self) -> Iterator[FileSection]:
        return iter(self.sections)

    def __len__(self) -> int:
        return len(self.sections)

    def read_at(self, size: int, offset: int) -> bytes:
        """Return ``size`` bytes of the piece starting at ``offset``.

        Raises EOFError when the files hold fewer bytes than requested.
        """
        if size < 0 or offset < 0:
            raise ValueError("size and offset must not be negative")
        if size == 0:
            return b""

        pos = 0
        start: Optional[int] = None
        for index, section in enumerate(self.sections):
            pos += section.length
            if pos >= offset:
                start = index
                break
        if start is None:
            raise ValueError("offset is beyond the end of the piece")

        first = self.sections[start]
        advance = first.length - (pos - offset)
        regions = [(first, first.offset + advance, first.length - advance)]
        for section in self.sections[start + 1 :]:
            regions.append((section, section.offset, section.length))
            pos += section.length
            if pos >= offset + size:
                break

        buf = bytearray()
        for section, region_offset, region_length in regions:
            if len(buf) >= size:
                break
            buf += _read_section(section, region_offset, min(region_length, size - len(buf)))
        if len(buf) < size:
            raise EOFError("unexpected end of piece data")
        return bytes(buf)

    def write(self, data: bytes) -> int:
        """Write ``data`` into the non-padding sections in order; return bytes written.

        Padding sections are skipped and consume no data.
        """
        data = memoryview(bytes(data))
        written = 0
        for section in self.sections:
            if section.padding:
                continue
            if len(data) < section.length:
                raise ValueError("data is shorter than the piece sections")
            if section.file is None:
                raise ValueError(f"section {section.name!r} has no file")
            chunk = bytes(data[: section.length])
            section.file.seek(section.offset)
            result = section.file.write(chunk)
            count = len(chunk) if result is None else result
            written += count
            data = data[count:]
        return written