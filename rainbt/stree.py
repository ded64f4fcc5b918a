"""Segment tree over closed integer intervals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, NamedTuple


class Interval(NamedTuple):
    """A closed interval with a unique identifier."""

    id: int
    first: int
    last: int


@dataclass
class _Node:
    first: int
    last: int
    left: _Node | None = None
    right: _Node | None = None
    overlap: list[Interval] = field(default_factory=list)

    def intersects(self, first: int, last: int) -> bool:
        return first <= self.last and self.first <= last

    def insert(self, interval: Interval) -> None:
        if interval.first <= self.first and interval.last >= self.last:
            self.overlap.append(interval)
            return
        for child in (self.left, self.right):
            if child is not None and child.intersects(interval.first, interval.last):
                child.insert(interval)

    def collect(self, first: int, last: int, result: dict[int, Interval]) -> None:
        if first > self.last or last < self.first:
            return
        for interval in self.overlap:
            result[interval.id] = interval
        for child in (self.right, self.left):
            if child is not None:
                child.collect(first, last, result)


def dedup(values: Iterable[int]) -> list[int]:
    """Return the values sorted with duplicates removed."""
    return sorted(set(values))


def _elementary_intervals(endpoints: list[int]) -> list[tuple[int, int]]:
    segments: list[tuple[int, int]] = []
    for current, following in zip(endpoints, endpoints[1:]):
        segments.append((current, current))
        segments.append((current, following))
    segments.append((endpoints[-1], endpoints[-1]))
    return segments


def _build_nodes(leaves: list[tuple[int, int]]) -> _Node:
    if len(leaves) == 1:
        first, last = leaves[0]
        return _Node(first, last)
    center = len(leaves) // 2
    return _Node(
        leaves[0][0],
        leaves[-1][1],
        left=_build_nodes(leaves[:center]),
        right=_build_nodes(leaves[center:]),
    )


class SegmentTree:
    """Collects intervals with ``add_range`` and answers queries after ``build``."""

    def __init__(self) -> None:
        self._base: list[Interval] = []
        self._root: _Node | None = None
        self.min = 0
        self.max = 0

    def add_range(self, first: int, last: int) -> None:
        """Queue the closed interval ``[first, last]``."""
        self._base.append(Interval(len(self._base), first, last))

    def clear(self) -> None:
        """Drop every interval and the built tree."""
        self._base = []
        self._root = None
        self.min = 0
        self.max = 0

    def build(self) -> None:
        """Build the tree from the queued intervals."""
        if not self._base:
            return
        endpoints = dedup(
            [iv.first for iv in self._base] + [iv.last for iv in self._base]
        )
        self.min, self.max = endpoints[0], endpoints[-1]
        self._root = _build_nodes(_elementary_intervals(endpoints))
        for interval in self._base:
            self._root.insert(interval)

    def query(self, first: int, last: int) -> list[Interval]:
        """Return every interval that overlaps ``[first, last]``, ordered by id."""
        if self._root is None:
            return []
        result: dict[int, Interval] = {}
        self._root.collect(first, last, result)
        return [result[key] for key in sorted(result)]

    def contains(self, value: int) -> bool:
        """Return True if some interval holds ``value``."""
        return bool(self.query(value, value))

    def __contains__(self, value: object) -> bool:
        return isinstance(value, int) and self.contains(value)