"""
Unit tests for the toppling lattice.
"""

import numpy as np
import pytest

from sandpile_sim import (
    FIFO_ORDER,
    LIFO_ORDER,
    SYNCHRONOUS_ORDER,
    Lattice,
    PileConfig,
    PileOverflowError,
)
from sandpile_sim.pile import _pop, _push, side_length


def test_four_grains_topple_once():
    lattice = Lattice(11)
    lattice.add_grains(5, 5, 4)
    assert lattice.pending == 1

    topples = lattice.relax()

    assert topples == 1
    assert lattice.pending == 0
    assert lattice.cells[5, 5] == 0
    for x, y in [(4, 5), (6, 5), (5, 4), (5, 6)]:
        assert lattice.cells[x, y] == 1
    assert lattice.cells.sum() == 4


def test_eight_grains_topple_once_with_double_share():
    lattice = Lattice(11)
    lattice.add_grains(5, 5, 8)

    assert lattice.relax() == 1
    assert lattice.cells[5, 5] == 0
    for x, y in [(4, 5), (6, 5), (5, 4), (5, 6)]:
        assert lattice.cells[x, y] == 2


def test_neighbour_pushed_over_threshold_topples_in_same_run():
    lattice = Lattice(11)
    lattice.add_grains(5, 6, 2)
    lattice.add_grains(5, 5, 8)
    assert lattice.pending == 1

    assert lattice.relax() == 2

    expected = np.zeros((11, 11), dtype=np.int64)
    expected[5, 5] = 1
    expected[4, 5] = expected[6, 5] = expected[5, 4] = 2
    expected[4, 6] = expected[6, 6] = expected[5, 7] = 1
    assert np.array_equal(lattice.cells, expected)
    assert lattice.pending == 0


def test_queue_only_on_threshold_crossing():
    lattice = Lattice(11)
    lattice.add_grains(5, 5, 3)
    assert lattice.pending == 0
    lattice.add_grains(5, 5, 1)
    assert lattice.pending == 1
    # already unstable, not queued again
    lattice.add_grains(5, 5, 10)
    assert lattice.pending == 1


def test_zero_grains_is_a_no_op():
    lattice = Lattice(5)
    lattice.add_grains(2, 2, 0)
    assert lattice.pending == 0
    assert lattice.relax() == 0
    assert not lattice.cells.any()


@pytest.mark.parametrize("order", [LIFO_ORDER, SYNCHRONOUS_ORDER])
def test_relax_order_does_not_change_result(order):
    deposits = [(20, 20, 500), (18, 22, 37), (25, 17, 99), (20, 21, 3)]

    reference = Lattice(41, FIFO_ORDER)
    other = Lattice(41, order)
    for lattice in (reference, other):
        for x, y, amount in deposits:
            lattice.add_grains(x, y, amount)
        lattice.relax()

    assert np.array_equal(reference.cells, other.cells)
    assert other.pending == 0
    assert other.cells.sum() == sum(amount for _, _, amount in deposits)


def test_relax_runs_to_completion_after_many_deposits():
    lattice = Lattice(side_length(2000))
    center = lattice.length // 2
    for _ in range(2000):
        lattice.add_grains(center, center, 1)
    lattice.relax()
    assert lattice.cells.max() < 4
    assert lattice.cells.sum() == 2000


def test_border_topple_raises():
    lattice = Lattice(3)
    lattice.add_grains(0, 1, 4)
    with pytest.raises(PileOverflowError):
        lattice.relax()


def test_border_topple_raises_synchronous():
    lattice = Lattice(3, SYNCHRONOUS_ORDER)
    lattice.add_grains(1, 2, 5)
    with pytest.raises(PileOverflowError):
        lattice.relax()


def test_grains_may_rest_on_border():
    lattice = Lattice(3)
    lattice.add_grains(1, 1, 4)
    lattice.relax()
    assert lattice.cells[0, 1] == 1


def test_add_grains_rejects_bad_input():
    lattice = Lattice(5)
    with pytest.raises(ValueError):
        lattice.add_grains(2, 2, -1)
    with pytest.raises(IndexError):
        lattice.add_grains(5, 0, 1)
    with pytest.raises(IndexError):
        lattice.add_grains(-1, 0, 1)


def test_rejects_unknown_order():
    with pytest.raises(ValueError):
        Lattice(5, order=7)


def test_side_length():
    assert side_length(0) == 10
    assert side_length(99) == 19
    assert side_length(100, margin=3) == 13


def test_default_order_is_fifo():
    assert PileConfig().relax_order == FIFO_ORDER
    assert Lattice(5).order == FIFO_ORDER


def test_queue_pops_oldest_first_and_wraps():
    queue = np.zeros(3, dtype=np.int64)
    state = np.zeros(2, dtype=np.int64)
    _push(queue, state, 7)
    _push(queue, state, 8)
    assert _pop(queue, state, FIFO_ORDER) == 7
    _push(queue, state, 9)
    _push(queue, state, 10)  # wraps to slot 0
    assert [_pop(queue, state, FIFO_ORDER) for _ in range(3)] == [8, 9, 10]
    assert state[1] == 0


def test_lifo_pops_newest_first():
    queue = np.zeros(3, dtype=np.int64)
    state = np.zeros(2, dtype=np.int64)
    for position in (7, 8, 9):
        _push(queue, state, position)
    assert [_pop(queue, state, LIFO_ORDER) for _ in range(3)] == [9, 8, 7]


def test_fifo_topple_count():
    fifo = Lattice(61)
    lifo = Lattice(61, LIFO_ORDER)
    for lattice in (fifo, lifo):
        lattice.add_grains(30, 30, 3000)
        lattice.relax()

    assert fifo.topple_count == 110729
    assert lifo.topple_count == 154723
    assert np.array_equal(fifo.cells, lifo.cells)
