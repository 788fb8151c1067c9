"""
Unit tests for chain ordering and chain-coordinate transforms.
"""

import numpy as np
import pytest

from archain import chain
from archain.coords import Coords


def line_positions(xs):
    return Coords.from_vectors([[x, 0.0, 0.0] for x in xs])


def random_positions(n, seed=0):
    return Coords.from_vectors(np.random.default_rng(seed).normal(size=(n, 3)))


class TestChainIndex:
    """Tests for the greedy chain construction."""

    def test_is_permutation(self):
        index = chain.calc_chain_index(random_positions(9))
        assert sorted(index.tolist()) == list(range(9))

    def test_line_is_ordered_by_proximity(self):
        index = chain.calc_chain_index(line_positions([0.0, 10.0, 1.0, 5.0]))
        assert index.tolist() == [0, 2, 3, 1]

    def test_closest_pair_adjacent(self):
        pos = random_positions(8, seed=5)
        pos[6] = pos[2].to_array() + np.array([1e-3, 0.0, 0.0])
        index = chain.calc_chain_index(pos).tolist()
        assert abs(index.index(2) - index.index(6)) == 1

    def test_small_systems(self):
        assert chain.calc_chain_index(line_positions([1.0])).tolist() == [0]
        assert sorted(chain.calc_chain_index(line_positions([1.0, 2.0])).tolist()) == [0, 1]

    def test_inverse_index(self):
        index = np.array([2, 0, 3, 1])
        slots = chain.inverse_index(index)
        assert np.array_equal(slots[index], np.arange(4))


class TestTransforms:
    """Tests for absolute <-> chain transforms."""

    def test_links_are_neighbour_differences(self):
        pos = random_positions(5, seed=2)
        index = chain.calc_chain_index(pos)
        links = chain.to_chain(pos, index)
        for k in range(4):
            expected = pos.data[:, index[k + 1]] - pos.data[:, index[k]]
            assert np.allclose(links.data[:, k], expected)
        assert np.array_equal(links.data[:, -1], pos.data[:, index[0]])

    def test_round_trip(self):
        pos = random_positions(7, seed=4)
        index = chain.calc_chain_index(pos)
        back = chain.to_cartesian(chain.to_chain(pos, index), index)
        assert np.allclose(back.data, pos.data, rtol=1e-14, atol=1e-14)

    def test_output_buffers(self):
        pos = random_positions(4, seed=8)
        index = chain.calc_chain_index(pos)
        links = Coords(4)
        out = chain.to_chain(pos, index, out=links)
        assert out is links
        absolute = Coords(4)
        assert chain.to_cartesian(links, index, out=absolute) is absolute

    def test_update_chain_matches_direct_transform(self):
        pos = random_positions(6, seed=9)
        old_index = np.arange(6)
        new_index = chain.calc_chain_index(pos)
        old_links = chain.to_chain(pos, old_index)
        updated = chain.update_chain(old_links, old_index, new_index)
        direct = chain.to_chain(pos, new_index)
        assert np.allclose(updated.data, direct.data, rtol=1e-13, atol=1e-14)

    def test_update_chain_reversed(self):
        pos = random_positions(5, seed=1)
        old_index = np.array([0, 1, 2, 3, 4])
        new_index = old_index[::-1].copy()
        updated = chain.update_chain(chain.to_chain(pos, old_index), old_index, new_index)
        back = chain.to_cartesian(updated, new_index)
        assert np.allclose(back.data, pos.data, rtol=1e-13, atol=1e-14)
