"""Fixed-size block pool backing the dictionary trie.

Architecture:
1. A pool is a chain of segments, each holding ``block_count`` blocks
2. Blocks are addressed by integer handles (pool-relative indices)
3. Freed blocks go on a LIFO free list and are reused first
4. When every block is in use a new segment is appended, double the size
   of the last one, until a segment would exceed ``SEGMENT_SIZE_BOUND`` bytes
5. ``delete()`` releases all segments and reports the bytes they occupied
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

ALIGNMENT = 8
SEGMENT_SIZE_BOUND = 134217728  # 128 MiB

_NIL = -1
_ALLOCATED = -2


@dataclass
class Segment:
    """A contiguous run of block handles."""

    start: int
    block_count: int

    @property
    def stop(self) -> int:
        return self.start + self.block_count


class BlockPool:
    """Arena of fixed-size blocks with O(1) alloc/free.

    Parameters
    ----------
    block_size : int
        Nominal bytes per block; rounded up to an 8-byte multiple.
    block_count : int
        Number of blocks in the first segment.
    factory : callable, optional
        Produces the zeroed payload handed out by :meth:`alloc`.
    name : str
        Label used in log messages.

    Usage::

        pool = BlockPool(24, 512, factory=list)
        h = pool.alloc()
        pool[h].append(1)
        pool.free(h)
        consumed = pool.delete()
    """

    def __init__(
        self,
        block_size: int,
        block_count: int,
        factory: Callable[[], Any] | None = None,
        name: str = "",
    ) -> None:
        assert block_size > 0 and block_count > 0
        slop = block_size % ALIGNMENT
        if slop:
            logger.debug(
                f"Adjusted allocation block size from {block_size} to "
                f"{block_size + ALIGNMENT - slop} to maintain alignment."
            )
            block_size += ALIGNMENT - slop
        self.block_size = block_size
        self.name = name
        self._factory = factory or (lambda: None)
        self._segments: list[Segment] = []
        self._blocks: list[Any] = []
        self._links: list[int] = []
        self._next_free = _NIL
        self._fresh = 0  # next never-used handle in the last segment
        self._in_use = 0
        self._closed = False
        logger.debug(f"Making a new memory pool {name!r} (bsize = {block_size}, bcount = {block_count})")
        self._add_segment(block_count)

    # ── segments ──

    def _add_segment(self, block_count: int) -> None:
        start = len(self._blocks)
        self._blocks.extend([None] * block_count)
        self._links.extend([_NIL] * block_count)
        self._segments.append(Segment(start=start, block_count=block_count))
        self._fresh = start

    def _grow(self) -> None:
        last = self._segments[-1].block_count
        count = last << 1
        if count * self.block_size > SEGMENT_SIZE_BOUND:
            count = last
        logger.debug(f"Expanding pool {self.name!r} (bsize = {self.block_size}, bcount = {count})")
        self._add_segment(count)

    @property
    def segments(self) -> list[Segment]:
        return list(self._segments)

    @property
    def capacity(self) -> int:
        return len(self._blocks)

    @property
    def in_use(self) -> int:
        return self._in_use

    # ── blocks ──

    def alloc(self) -> int:
        """Hand out a zeroed block and return its handle."""
        assert not self._closed, "pool already deleted"
        if self._next_free != _NIL:
            handle = self._next_free
            self._next_free = self._links[handle]
        else:
            if self._fresh >= self._segments[-1].stop:
                self._grow()
            handle = self._fresh
            self._fresh += 1
        self._links[handle] = _ALLOCATED
        self._blocks[handle] = self._factory()
        self._in_use += 1
        return handle

    def free(self, handle: int) -> None:
        """Return a block to the head of the free list."""
        assert not self._closed, "pool already deleted"
        assert self._links[handle] == _ALLOCATED, f"double free of block {handle}"
        self._blocks[handle] = None
        self._links[handle] = self._next_free
        self._next_free = handle
        self._in_use -= 1

    def __getitem__(self, handle: int) -> Any:
        return self._blocks[handle]

    def __setitem__(self, handle: int, payload: Any) -> None:
        assert self._links[handle] == _ALLOCATED, f"block {handle} is not allocated"
        self._blocks[handle] = payload

    # ── teardown ──

    def delete(self) -> int:
        """Release every segment once; return the bytes they occupied."""
        assert not self._closed, "pool already deleted"
        block_count = 0
        while self._segments:
            block_count += self._segments.pop().block_count
        consumed = self.block_size * block_count
        self._blocks = []
        self._links = []
        self._next_free = _NIL
        self._closed = True
        logger.debug(f"Block allocator {self.name!r} (bsize = {self.block_size}, bcount = {block_count}) takes {consumed} bytes")
        return consumed

    @property
    def closed(self) -> bool:
        return self._closed
