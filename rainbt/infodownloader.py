"""Downloading the info dictionary of a torrent from a single peer (BEP 9)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

BLOCK_SIZE = 16 * 1024


class MetadataPeer(Protocol):
    """A peer that serves metadata pieces."""

    def metadata_size(self) -> int: ...

    def request_metadata_piece(self, index: int) -> None: ...


@dataclass
class _Block:
    size: int
    requested: bool = False


class InfoDownloader:
    """Requests all blocks of the metadata from one peer and assembles them in ``data``."""

    def __init__(self, peer: MetadataPeer) -> None:
        self.peer = peer
        size = peer.metadata_size()
        self.data = bytearray(size)
        self.pending = 0
        self.next_block_index = 0
        count, mod = divmod(size, BLOCK_SIZE)
        self._blocks = [_Block(BLOCK_SIZE) for _ in range(count)]
        if mod:
            self._blocks.append(_Block(mod))

    @property
    def num_blocks(self) -> int:
        """Number of blocks the metadata is split into."""
        return len(self._blocks)

    def got_block(self, index: int, data: bytes) -> None:
        """Store a metadata block received from the peer.

        Raises ValueError if the block was not requested or has the wrong size.
        """
        if not 0 <= index < len(self._blocks):
            raise ValueError(f"peer sent invalid metadata piece index: {index}")
        block = self._blocks[index]
        if not block.requested:
            raise ValueError(f"peer sent unrequested index for metadata message: {index}")
        if len(data) != block.size:
            raise ValueError(f"peer sent invalid size for metadata message: {len(data)}")
        self.pending -= 1
        begin = index * BLOCK_SIZE
        self.data[begin : begin + block.size] = data

    def request_blocks(self, queue_length: int) -> None:
        """Request further blocks while fewer than ``queue_length`` are in flight."""
        while self.next_block_index < len(self._blocks) and self.pending < queue_length:
            self.peer.request_metadata_piece(self.next_block_index)
            self._blocks[self.next_block_index].requested = True
            self.pending += 1
            self.next_block_index += 1

    def done(self) -> bool:
        """Return True when every block has been requested and received."""
        return self.next_block_index == len(self._blocks) and self.pending == 0