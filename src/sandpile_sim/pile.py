"""
Numba-based Abelian Sandpile Builder.

This module builds the stable configuration reached when a fixed number of
grains is dropped on the center of a square lattice and every cell holding
four or more grains topples, sending one grain to each of its four neighbours.

Key Algorithmic Features:
1.  **Batched Toppling:** A cell holding `c` grains topples `c // 4` times in a
    single step, so huge raw deposits relax without replaying every event.
2.  **Transition-Only Work Queue:** A position is queued only when it crosses
    the threshold, which bounds the queue by the number of cells and lets it
    live in a fixed ring buffer.
3.  **Cache-Assisted Deposit:** Stable piles of smaller amounts (see
    `sandpile_sim.cache`) are stamped onto the lattice before relaxing, which
    removes most of the toppling work for large piles.
4.  **Optimization:** The deposit and relaxation loops are compiled with
    `@numba.njit` with bounds checking disabled; a border guard keeps every
    write inside the array.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np
from numba import njit

if TYPE_CHECKING:  # pragma: no cover
    from .cache import WorldCache

logger = logging.getLogger(__name__)

###############################################################################
# Constants
###############################################################################

TOPPLE_GRAIN_AMOUNT = 4
EXPENSE_LENGTH = 10  # cells of slack around the largest expected pile

FIFO_ORDER = 0
LIFO_ORDER = 1
SYNCHRONOUS_ORDER = 2
RELAX_ORDER = FIFO_ORDER

NO_OVERFLOW = -1


class PileOverflowError(RuntimeError):
    """Raised when toppling reaches the border of the lattice."""


def side_length(grain_amount: int, margin: int = EXPENSE_LENGTH) -> int:
    """Side of the square lattice needed to hold a pile of `grain_amount`."""
    return math.isqrt(grain_amount) + margin


###############################################################################
# Work-queue helpers (Numba-friendly)
# queue_state holds [head, size]; positions are flattened as x * length + y.
###############################################################################


@njit(cache=True)
def _push(queue: np.ndarray, queue_state: np.ndarray, position: int) -> None:
    tail = (queue_state[0] + queue_state[1]) % queue.shape[0]
    queue[tail] = position
    queue_state[1] += 1


@njit(cache=True)
def _pop(queue: np.ndarray, queue_state: np.ndarray, order: int) -> int:
    """Removes the next position: oldest for FIFO, newest for LIFO."""
    capacity = queue.shape[0]
    queue_state[1] -= 1
    if order == LIFO_ORDER:
        return queue[(queue_state[0] + queue_state[1]) % capacity]
    position = queue[queue_state[0]]
    queue_state[0] = (queue_state[0] + 1) % capacity
    return position


@njit(cache=True)
def _add_grains(
    cells: np.ndarray,
    queue: np.ndarray,
    queue_state: np.ndarray,
    x: int,
    y: int,
    amount: int,
) -> None:
    """
    Adds grains to one cell and queues it if this deposit pushed it over the
    threshold. Cells already at or above the threshold are queued already.
    """
    a = cells[x, y]
    cells[x, y] = a + amount
    if a < TOPPLE_GRAIN_AMOUNT and a + amount >= TOPPLE_GRAIN_AMOUNT:
        _push(queue, queue_state, x * cells.shape[1] + y)


###############################################################################
# Kernels
###############################################################################


@njit(cache=True, boundscheck=False)
def _stamp_kernel(
    cells: np.ndarray,
    queue: np.ndarray,
    queue_state: np.ndarray,
    pattern: np.ndarray,
    pattern_cx: int,
    pattern_cy: int,
    x: int,
    y: int,
) -> None:
    """
    Adds every non-empty cell of `pattern` to the lattice, translated so that
    the pattern center lands on (x, y).
    """
    for i in range(pattern.shape[0]):
        for j in range(pattern.shape[1]):
            a = pattern[i, j]
            if a > 0:
                _add_grains(
                    cells, queue, queue_state, x + i - pattern_cx, y + j - pattern_cy, a
                )


@njit(cache=True, boundscheck=False)
def _relax_kernel(
    cells: np.ndarray, queue: np.ndarray, queue_state: np.ndarray, order: int
) -> Tuple[int, int]:
    """
    Drains the work queue, toppling each queued cell as many times as it can.

    Returns:
        (topples, overflow) where `topples` counts batched topple steps and
        `overflow` is the flattened position of a border cell that had to
        topple, or NO_OVERFLOW. The queue is left untouched past an overflow.
    """
    length_x = cells.shape[0]
    length_y = cells.shape[1]
    topples = 0

    while queue_state[1] > 0:
        position = _pop(queue, queue_state, order)
        x = position // length_y
        y = position % length_y

        amount = cells[x, y]
        if amount < TOPPLE_GRAIN_AMOUNT:
            continue
        if x == 0 or y == 0 or x == length_x - 1 or y == length_y - 1:
            return topples, position

        cells[x, y] = amount % TOPPLE_GRAIN_AMOUNT
        amount //= TOPPLE_GRAIN_AMOUNT

        _add_grains(cells, queue, queue_state, x - 1, y, amount)
        _add_grains(cells, queue, queue_state, x + 1, y, amount)
        _add_grains(cells, queue, queue_state, x, y - 1, amount)
        _add_grains(cells, queue, queue_state, x, y + 1, amount)
        topples += 1

    return topples, NO_OVERFLOW


def _relax_synchronous(cells: np.ndarray) -> Tuple[int, int]:
    """
    Topples every unstable cell at once until the lattice is stable.
    Same contract as `_relax_kernel`.
    """
    topples = 0
    while True:
        k = cells // TOPPLE_GRAIN_AMOUNT
        unstable = np.count_nonzero(k)
        if unstable == 0:
            return topples, NO_OVERFLOW

        border = np.zeros_like(k, dtype=bool)
        border[[0, -1], :] = True
        border[:, [0, -1]] = True
        hit = np.argwhere((k > 0) & border)
        if hit.size:
            x, y = hit[0]
            return topples, int(x) * cells.shape[1] + int(y)

        cells -= TOPPLE_GRAIN_AMOUNT * k
        cells[1:, :] += k[:-1, :]
        cells[:-1, :] += k[1:, :]
        cells[:, 1:] += k[:, :-1]
        cells[:, :-1] += k[:, 1:]
        topples += unstable


def _footprint(cells: np.ndarray, center_x: int, center_y: int) -> Tuple[int, int, int, int]:
    """
    Bounding box (x0, x1, y0, y1), half-open, of the non-empty cells. An empty
    lattice gives an empty box at the center.
    """
    occupied = np.argwhere(cells)
    if occupied.size == 0:
        return center_x, center_x, center_y, center_y
    lo = occupied.min(axis=0)
    hi = occupied.max(axis=0) + 1
    return int(lo[0]), int(hi[0]), int(lo[1]), int(hi[1])


###############################################################################
# Lattice
###############################################################################


@dataclass
class PileConfig:
    """Lattice sizing and relaxation rules."""
    margin: int = EXPENSE_LENGTH
    relax_order: int = RELAX_ORDER


class Lattice:
    """
    Mutable working state for one pile: grain counts plus pending topples.

    Grains may be added in any amount and in any order; `relax` then brings the
    lattice to its unique stable configuration.
    """

    def __init__(self, length: int, order: int = RELAX_ORDER) -> None:
        if length < 1:
            raise ValueError(f"Lattice length must be positive, got {length}")
        if order not in (FIFO_ORDER, LIFO_ORDER, SYNCHRONOUS_ORDER):
            raise ValueError(f"Unknown relax order: {order}")
        self.length = length
        self.order = order
        self.cells = np.zeros((length, length), dtype=np.int64)

        # Every position is queued at most once, so length**2 slots suffice.
        self._queue = np.zeros(length * length, dtype=np.int64)
        self._queue_state = np.zeros(2, dtype=np.int64)
        self.topple_count = 0

    @property
    def pending(self) -> int:
        """Number of positions waiting to topple."""
        return int(self._queue_state[1])

    def add_grains(self, x: int, y: int, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Cannot add a negative grain amount: {amount}")
        if not (0 <= x < self.length and 0 <= y < self.length):
            raise IndexError(f"({x}, {y}) is outside a {self.length}x{self.length} lattice")
        _add_grains(self.cells, self._queue, self._queue_state, x, y, amount)

    def stamp(self, pattern: SandpileGrid, x: int, y: int) -> None:
        """
        Adds the grains of a stable pile, centered on (x, y). Only the
        occupied part of the pile has to fit; its empty margin is ignored.
        """
        x0, x1, y0, y1 = pattern.footprint
        x_lo = x + x0 - pattern.center_x
        y_lo = y + y0 - pattern.center_y
        if (
            x_lo < 0
            or y_lo < 0
            or x_lo + (x1 - x0) > self.length
            or y_lo + (y1 - y0) > self.length
        ):
            raise ValueError(
                f"Pile of {pattern.total_grain_amount} grains does not fit at "
                f"({x}, {y}) on a {self.length}x{self.length} lattice"
            )
        _stamp_kernel(
            self.cells,
            self._queue,
            self._queue_state,
            pattern.cells[x0:x1, y0:y1],
            pattern.center_x - x0,
            pattern.center_y - y0,
            x,
            y,
        )

    def deposit(
        self, x: int, y: int, amount: int, cache: Optional[WorldCache] = None
    ) -> None:
        """
        Places `amount` grains at (x, y), reusing the largest cached stable
        piles first and dropping whatever is left as raw grains.
        """
        while amount > 0:
            world = cache.lookup(amount) if cache is not None else None
            if world is None:
                self.add_grains(x, y, amount)
                return
            self.stamp(world, x, y)
            amount -= world.total_grain_amount

    def relax(self) -> int:
        """Topples until stable. Returns the number of topple steps taken."""
        if self.order == SYNCHRONOUS_ORDER:
            topples, overflow = _relax_synchronous(self.cells)
            self._queue_state[:] = 0
        else:
            topples, overflow = _relax_kernel(
                self.cells, self._queue, self._queue_state, self.order
            )
        self.topple_count += topples
        if overflow != NO_OVERFLOW:
            x, y = divmod(int(overflow), self.length)
            raise PileOverflowError(
                f"Toppling reached the border at ({x}, {y}) on a "
                f"{self.length}x{self.length} lattice"
            )
        return topples


###############################################################################
# Stable piles
###############################################################################


class SandpileGrid:
    """
    A stable, read-only pile built from a single central deposit.
    """

    def __init__(
        self,
        grain_amount: int,
        cache: Optional[WorldCache] = None,
        config: PileConfig | None = None,
    ) -> None:
        if isinstance(grain_amount, bool) or not isinstance(grain_amount, (int, np.integer)):
            raise TypeError(f"Grain amount must be an integer, got {grain_amount!r}")
        if grain_amount < 0:
            raise ValueError(f"Grain amount must be non-negative, got {grain_amount}")
        self.config = config or PileConfig()
        self.total_grain_amount = int(grain_amount)

        self.length = side_length(self.total_grain_amount, self.config.margin)
        self.center_x = self.length // 2
        self.center_y = self.length // 2

        lattice = Lattice(self.length, self.config.relax_order)
        lattice.deposit(self.center_x, self.center_y, self.total_grain_amount, cache)
        lattice.relax()

        self.topple_count = lattice.topple_count
        self.cells = lattice.cells
        self.cells.flags.writeable = False
        self.footprint = _footprint(self.cells, self.center_x, self.center_y)
        logger.debug(
            "Built pile of %d grains on %dx%d lattice (%d topples)",
            self.total_grain_amount,
            self.length,
            self.length,
            self.topple_count,
        )

    @property
    def width(self) -> int:
        return self.length

    @property
    def center(self) -> Tuple[int, int]:
        return self.center_x, self.center_y

    def grain_count_at(self, x: int, y: int) -> int:
        return int(self.cells[x, y])

    def is_stable(self) -> bool:
        return bool((self.cells < TOPPLE_GRAIN_AMOUNT).all())

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}<{self.total_grain_amount} grains, "
            f"{self.length}x{self.length}>"
        )


def build_world(
    grain_amount: int,
    cache: Optional[WorldCache] = None,
    config: PileConfig | None = None,
) -> SandpileGrid:
    """
    Build the stable pile reached by dropping `grain_amount` grains on the
    center of an empty lattice, seeding it from `cache` when one is given.
    """
    return SandpileGrid(grain_amount, cache=cache, config=config)


__all__ = [
    "TOPPLE_GRAIN_AMOUNT",
    "EXPENSE_LENGTH",
    "FIFO_ORDER",
    "LIFO_ORDER",
    "SYNCHRONOUS_ORDER",
    "PileConfig",
    "PileOverflowError",
    "Lattice",
    "SandpileGrid",
    "build_world",
    "side_length",
]
