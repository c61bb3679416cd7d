"""
Abelian Sandpile Library - Core Models

This package builds stable abelian sandpiles from a single central deposit:
- build_world / SandpileGrid: stable, read-only pile of a given grain amount
- Lattice: mutable toppling lattice with a FIFO work queue
- WorldCache: small stable piles reused to seed larger ones
"""

from .pile import (
    FIFO_ORDER,
    LIFO_ORDER,
    SYNCHRONOUS_ORDER,
    TOPPLE_GRAIN_AMOUNT,
    Lattice,
    PileConfig,
    PileOverflowError,
    SandpileGrid,
    build_world,
)
from .cache import CacheConfig, WorldCache
from . import render, utils

__all__ = [
    # Builders
    "build_world",
    "SandpileGrid",
    "Lattice",
    "WorldCache",
    # Configuration classes
    "PileConfig",
    "CacheConfig",
    # Errors and constants
    "PileOverflowError",
    "TOPPLE_GRAIN_AMOUNT",
    "FIFO_ORDER",
    "LIFO_ORDER",
    "SYNCHRONOUS_ORDER",
    # Utilities
    "render",
    "utils",
]
