"""Prefix dictionary for the large-alphabet MultiMMC and LZ78Y predictors.

A k-ary trie in which every page keeps its entries in a small hash table.
There is no probing: when a new symbol collides with an occupied slot the
table is rehashed to the next modulus in :data:`HASH_MODULI` until the
layout is collision free. The ladder ends at ``k`` (a direct lookup table),
so expansion always terminates. Most prefixes are seen only a handful of
times, so most pages stay at modulus 1 or 2.

Pages and entry tables live in :class:`~noniid_entropy.pool.BlockPool`
arenas (one per modulus plus one for pages) and are addressed by handle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from noniid_entropy.pool import BlockPool

logger = logging.getLogger(__name__)

# Primes, roughly doubling; the final slot is always the alphabet size.
HASH_MODULI = (1, 2, 5, 11, 31, 67, 127)
MODULUS_COUNT = len(HASH_MODULI) + 1
PAGE_POOL = MODULUS_COUNT

# Nominal block sizes, used for memory accounting only.
ENTRY_BYTES = 24
PAGE_BYTES = 24
ENTRY_POOL_BLOCKS = 512


@dataclass
class DictionaryEntry:
    """One slot: ``count`` postfix observations and an optional child page."""

    symbol: int
    count: int = 0
    branch: int | None = None

    @property
    def occupied(self) -> bool:
        return self.branch is not None or self.count > 0


@dataclass
class DictionaryPage:
    """A trie node; ``entries`` is a handle into the pool for ``mod_index``."""

    entries: int = -1
    mod_index: int = 0
    max_entry: int = 0
    prefix_found: bool = False


@dataclass
class DictionaryStats:
    """Occupancy collected while tearing the trie down."""

    moduli: list[int]
    modulus_count: list[int] = field(default_factory=lambda: [0] * MODULUS_COUNT)
    occupied_count: list[int] = field(default_factory=lambda: [0] * MODULUS_COUNT)
    pages: int = 0
    pool_bytes: int = 0

    def occupancy(self) -> dict[int, float]:
        """Average fraction of used slots, per modulus that has pages."""
        return {
            mod: self.occupied_count[j] / (mod * self.modulus_count[j])
            for j, mod in enumerate(self.moduli)
            if self.modulus_count[j]
        }


class DictionaryTrie:
    """Counts ``(prefix, postfix)`` pairs and predicts the likeliest postfix.

    Parameters
    ----------
    k : int
        Alphabet size; symbols are in ``[0, k)``.
    page_blocks : int
        Initial number of page blocks in the page pool.
    """

    def __init__(self, k: int, page_blocks: int) -> None:
        assert k > 2, "binary data uses the direct-indexed predictors"
        self.k = k
        self.moduli = list(HASH_MODULI) + [k]
        self.pools: list[BlockPool | None] = [None] * (MODULUS_COUNT + 1)
        for j, mod in enumerate(HASH_MODULI):
            if mod < k:
                self.pools[j] = BlockPool(
                    mod * ENTRY_BYTES, ENTRY_POOL_BLOCKS, factory=_table_factory(mod), name=f"modulus {mod}"
                )
        self.pools[MODULUS_COUNT - 1] = BlockPool(
            k * ENTRY_BYTES, ENTRY_POOL_BLOCKS, factory=_table_factory(k), name=f"modulus {k}"
        )
        self.pools[PAGE_POOL] = BlockPool(PAGE_BYTES, page_blocks, factory=DictionaryPage, name="pages")
        self.head: int | None = self._new_page()

    # ── pages and entries ──

    def page(self, handle: int) -> DictionaryPage:
        return self.pools[PAGE_POOL][handle]

    def _new_page(self) -> int:
        handle = self.pools[PAGE_POOL].alloc()
        self.pools[PAGE_POOL][handle].entries = self.pools[0].alloc()
        return handle

    def _table(self, page: DictionaryPage) -> list[DictionaryEntry | None]:
        return self.pools[page.mod_index][page.entries]

    def _get_entry(self, page: DictionaryPage, symbol: int) -> DictionaryEntry | None:
        entry = self._table(page)[symbol % self.moduli[page.mod_index]]
        if entry is not None and entry.symbol == symbol:
            return entry
        return None

    def _max_count(self, page: DictionaryPage) -> int:
        assert page.prefix_found
        entry = self._get_entry(page, page.max_entry)
        assert entry is not None
        return entry.count

    def _expand_page(self, page: DictionaryPage, new_symbol: int) -> None:
        """Rehash ``page`` to the smallest modulus that fits ``new_symbol`` too."""
        k = self.k
        assert self.moduli[page.mod_index] != k
        old_index = page.mod_index
        occupied = [e for e in self._table(page) if e is not None and e.occupied]
        trial = self.moduli[old_index]

        while True:
            mod_index = next(
                (j for j, mod in enumerate(HASH_MODULI) if mod > trial),
                MODULUS_COUNT - 1,
            )
            if mod_index == MODULUS_COUNT - 1 or HASH_MODULI[mod_index] >= k:
                mod_index = MODULUS_COUNT - 1
            trial = self.moduli[mod_index]

            pool = self.pools[mod_index]
            handle = pool.alloc()
            table = pool[handle]
            collision = False
            for entry in occupied:
                slot = entry.symbol % trial
                if table[slot] is not None:
                    collision = True
                    logger.debug("Found collision after expanding tree hash table.")
                    break
                table[slot] = entry
            collision = collision or table[new_symbol % trial] is not None

            if not collision:
                break
            assert trial < k
            pool.free(handle)

        self.pools[old_index].free(page.entries)
        page.entries = handle
        page.mod_index = mod_index

    def _add_entry(self, page: DictionaryPage, symbol: int) -> DictionaryEntry:
        table = self._table(page)
        slot = symbol % self.moduli[page.mod_index]
        current = table[slot]
        if current is not None and current.occupied:
            assert current.symbol != symbol
            self._expand_page(page, symbol)
            table = self._table(page)
            slot = symbol % self.moduli[page.mod_index]
        entry = DictionaryEntry(symbol)
        table[slot] = entry
        return entry

    # ── prefixes ──

    def _prefix_page(self, prefix: Sequence[int]) -> int | None:
        handle = self.head
        for symbol in prefix:
            if handle is None:
                return None
            entry = self._get_entry(self.page(handle), symbol)
            if entry is None:
                return None
            handle = entry.branch
        return handle

    def _make_prefix_page(self, prefix: Sequence[int], create: bool) -> tuple[int | None, bool]:
        """Find (or, if ``create``, build) the page for ``prefix``.

        Returns ``(handle, new_prefix_needed)``; ``handle`` is None when
        the prefix is unknown and may not be created.
        """
        assert len(prefix) > 0 and self.head is not None
        handle: int | None = self.head
        last = self.head
        i = 0
        while handle is not None and i < len(prefix):
            last = handle
            entry = self._get_entry(self.page(handle), prefix[i])
            handle = None if entry is None else entry.branch
            i += 1

        if handle is not None:
            if self.page(handle).prefix_found:
                return handle, False
            return (handle if create else None), True

        if not create:
            return None, True
        # Complete the chain from the last page that exists
        handle = last
        for symbol in prefix[i - 1:]:
            page = self.page(handle)
            entry = self._get_entry(page, symbol)
            if entry is None:
                entry = self._add_entry(page, symbol)
            entry.branch = self._new_page()
            handle = entry.branch
        return handle, True

    def _increment_entry(self, page: DictionaryPage, symbol: int, create: bool) -> int:
        entry = self._get_entry(page, symbol)
        if entry is not None:
            if entry.count > 0 or create:
                entry.count += 1
                return entry.count
            return 0
        if create:
            entry = self._add_entry(page, symbol)
            entry.count = 1
            return 1
        return 0

    # ── public interface ──

    def increment(
        self,
        prefix: Sequence[int],
        symbol: int,
        create: bool = True,
        leaf_counts: bool = True,
        prefix_loc: int | None = None,
    ) -> bool:
        """Count one occurrence of ``symbol`` following ``prefix``.

        ``create`` allows new counted entries. With ``leaf_counts`` false,
        postfixes of an initialized prefix are always created. ``prefix_loc``
        is the page cached by the preceding :meth:`predict` for the same
        prefix. Returns whether a new leaf (``leaf_counts``) or a new prefix
        would have been, or was, created.
        """
        new_prefix_needed = False
        if prefix_loc is None:
            handle, new_prefix_needed = self._make_prefix_page(prefix, create)
            if handle is None:
                return True
            if new_prefix_needed:
                logger.debug(f"Adding {len(prefix)}-length string: {_hex(prefix)}")
        else:
            handle = prefix_loc
            if not self.page(handle).prefix_found:
                if not create:
                    return True
                new_prefix_needed = True
                logger.debug(f"Adding {len(prefix)}-length string: {_hex(prefix)}")

        page = self.page(handle)
        count = self._increment_entry(page, symbol, create or not leaf_counts)
        if count == 1:
            assert create or not leaf_counts
            if page.prefix_found:
                if self._max_count(page) == 1 and page.max_entry < symbol:
                    page.max_entry = symbol
            else:
                page.max_entry = symbol
                page.prefix_found = True
        elif count > 1:
            max_count = self._max_count(page)
            if max_count < count or (max_count == count and page.max_entry < symbol):
                page.max_entry = symbol

        assert count > 0 or (not create and leaf_counts)
        if leaf_counts:
            return count <= 1
        return new_prefix_needed

    def predict(self, prefix: Sequence[int]) -> tuple[int, int, int | None]:
        """Return ``(count, symbol, prefix_loc)`` for the most frequent postfix.

        ``count`` is 0 when the prefix has never been completed. ``prefix_loc``
        may be handed back to :meth:`increment` for the same prefix.
        """
        handle = self._prefix_page(prefix)
        if handle is None or not self.page(handle).prefix_found:
            return 0, 0, handle
        page = self.page(handle)
        entry = self._get_entry(page, page.max_entry)
        assert entry is not None and entry.count > 0
        return entry.count, page.max_entry, handle

    def delete(self) -> DictionaryStats:
        """Free every page and table, then tear down the pools."""
        stats = DictionaryStats(moduli=list(self.moduli))
        if self.head is not None:
            stats.pages = self._delete_page(self.head, stats)
            self.head = None
        for pool in self.pools:
            if pool is not None:
                stats.pool_bytes += pool.delete()
        self.pools = [None] * (MODULUS_COUNT + 1)

        logger.info(f"Total dictionary pages: {stats.pages}")
        logger.debug(
            "Hash table average occupancy rate: "
            + ", ".join(f"{mod}: {rate:.5g}" for mod, rate in stats.occupancy().items())
        )
        logger.info(f"Total memory consumed by block allocator: {stats.pool_bytes}")
        return stats

    def _delete_page(self, handle: int, stats: DictionaryStats) -> int:
        # Depth is bounded by the longest prefix in use.
        page = self.page(handle)
        mod_index = page.mod_index
        stats.modulus_count[mod_index] += 1
        deleted = 0
        occupied = 0
        for entry in self._table(page):
            if entry is not None and entry.occupied:
                occupied += 1
                if entry.branch is not None:
                    deleted += self._delete_page(entry.branch, stats)
                    entry.branch = None
        self.pools[mod_index].free(page.entries)
        self.pools[PAGE_POOL].free(handle)
        stats.occupied_count[mod_index] += occupied
        return deleted + 1


def _table_factory(modulus: int):
    return lambda: [None] * modulus


def _hex(symbols: Sequence[int]) -> str:
    return ":".join(f"{s:02x}" for s in symbols)
