"""Tests for the prefix dictionary."""

from collections import Counter, defaultdict

import numpy as np

from noniid_entropy.dictionary import HASH_MODULI, DictionaryTrie


def _expected(pairs):
    counts = defaultdict(Counter)
    for prefix, symbol in pairs:
        counts[tuple(prefix)][symbol] += 1
    best = {}
    for prefix, c in counts.items():
        top = max(c.values())
        best[prefix] = (top, max(s for s, n in c.items() if n == top))
    return best


class TestPredict:
    def test_unknown_prefix(self):
        trie = DictionaryTrie(4, 16)
        count, _, loc = trie.predict([1, 2])
        assert count == 0
        assert loc is None

    def test_most_frequent_postfix(self):
        trie = DictionaryTrie(4, 16)
        trie.increment([0], 1)
        trie.increment([0], 2)
        trie.increment([0], 2)
        count, symbol, loc = trie.predict([0])
        assert (count, symbol) == (2, 2)
        assert loc is not None

    def test_tie_goes_to_larger_symbol(self):
        trie = DictionaryTrie(4, 16)
        trie.increment([1], 3)
        trie.increment([1], 1)
        assert trie.predict([1])[:2] == (1, 3)
        trie.increment([1], 1)
        assert trie.predict([1])[:2] == (2, 1)
        trie.increment([1], 3)
        assert trie.predict([1])[:2] == (2, 3)

    def test_matches_brute_force(self):
        rng = np.random.default_rng(3)
        pairs = []
        for _ in range(2000):
            depth = int(rng.integers(1, 4))
            prefix = rng.integers(0, 6, size=depth).tolist()
            pairs.append((prefix, int(rng.integers(0, 6))))
        trie = DictionaryTrie(6, 64)
        for prefix, symbol in pairs:
            trie.increment(prefix, symbol)
        for prefix, (count, symbol) in _expected(pairs).items():
            assert trie.predict(list(prefix))[:2] == (count, symbol)

    def test_collisions_expand_the_table(self):
        trie = DictionaryTrie(200, 16)
        for s in range(100):
            trie.increment([7], s)
        trie.increment([7], 42)
        count, symbol, loc = trie.predict([7])
        assert (count, symbol) == (2, 42)
        page = trie.page(loc)
        assert trie.moduli[page.mod_index] > HASH_MODULI[0]
        for s in range(100):
            assert trie._get_entry(page, s).count == (2 if s == 42 else 1)


class TestIncrement:
    def test_new_leaf_flag(self):
        trie = DictionaryTrie(4, 16)
        assert trie.increment([0, 1], 2)
        assert not trie.increment([0, 1], 2)

    def test_no_create_leaves_dictionary_untouched(self):
        trie = DictionaryTrie(4, 16)
        assert trie.increment([2], 3, create=False)
        assert trie.predict([2])[0] == 0

    def test_new_prefix_flag(self):
        trie = DictionaryTrie(4, 16)
        assert trie.increment([1, 2], 3, create=True, leaf_counts=False)
        assert not trie.increment([1, 2], 0, create=True, leaf_counts=False)
        assert trie.predict([1, 2])[:2] == (1, 3)

    def test_cached_prefix_location(self):
        trie = DictionaryTrie(4, 16)
        trie.increment([3, 3], 1)
        _, _, loc = trie.predict([3, 3])
        trie.increment([3, 3], 2, prefix_loc=loc)
        trie.increment([3, 3], 2, prefix_loc=loc)
        assert trie.predict([3, 3])[:2] == (2, 2)


class TestDelete:
    def test_stats(self):
        trie = DictionaryTrie(4, 16)
        trie.increment([0], 1)
        trie.increment([0, 1], 2)
        stats = trie.delete()
        # head, [0] and [0, 1]
        assert stats.pages == 3
        assert stats.pool_bytes > 0
        assert trie.head is None
        assert all(pool is None for pool in trie.pools)
