"""
Color rendering for stable piles.
"""

from __future__ import annotations

import logging
import os
from enum import IntEnum
from typing import Callable

import matplotlib.image as mpimg
import numpy as np

from .pile import TOPPLE_GRAIN_AMOUNT, SandpileGrid

logger = logging.getLogger(__name__)


class CellState(IntEnum):
    """Grain count of a cell in a stable pile."""
    EMPTY = 0
    ONE = 1
    TWO = 2
    THREE = 3


GRAIN_AMOUNT_COLORS = {
    CellState.EMPTY: 0x000000,
    CellState.ONE: 0x0AB4B4,
    CellState.TWO: 0xFF00FF,
    CellState.THREE: 0xFFFFFF,
}


def cell_color(count: int) -> int:
    """0xRRGGBB color of a stable cell holding `count` grains."""
    return GRAIN_AMOUNT_COLORS[CellState(count)]


def color_table(cell_color: Callable[[int], int] = cell_color) -> np.ndarray:
    """(4, 3) uint8 RGB lookup table indexed by grain count."""
    table = np.zeros((len(CellState), 3), dtype=np.uint8)
    for state in CellState:
        rgb = cell_color(int(state))
        table[state] = ((rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF)
    return table


def as_image(
    grid: SandpileGrid, cell_color: Callable[[int], int] = cell_color
) -> np.ndarray:
    """
    RGB image of a stable pile. Image rows follow y and columns follow x, so
    pixel (row=y, col=x) shows cell (x, y).
    """
    cells = grid.cells
    assert cells.size == 0 or (
        cells.min() >= 0 and cells.max() < TOPPLE_GRAIN_AMOUNT
    ), "pile is not stable"
    return color_table(cell_color)[cells.T]


def save_image(
    grid: SandpileGrid,
    path: str | os.PathLike[str],
    image_format: str = "png",
) -> bool:
    """
    Write the pile as an image. Encoding or I/O failures are logged and
    reported by returning False; the pile itself is left as it was.
    """
    image = as_image(grid)
    try:
        mpimg.imsave(path, image, format=image_format)
    except (OSError, ValueError, KeyError) as exc:
        logger.error("An exception occurred while saving world as image: %s", exc)
        return False
    logger.info("Saved %dx%d image to %s", grid.length, grid.length, path)
    return True


__all__ = ["CellState", "GRAIN_AMOUNT_COLORS", "cell_color", "color_table", "as_image", "save_image"]
