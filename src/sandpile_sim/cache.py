"""
Cache of small stable piles used to seed larger ones.

Entries are built once, smallest first, each one reusing the entries built
before it. After construction the cache is read-only and can be handed to any
number of `build_world` calls.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterator, List, Optional

from .pile import PileConfig, SandpileGrid, build_world

logger = logging.getLogger(__name__)

CACHE_SIZE = 15
SMALLEST_CACHED_WORLD_GRAIN_AMOUNT = 20
CACHED_WORLD_GRAIN_AMOUNT_FACTOR = 2


@dataclass
class CacheConfig:
    """Number of cached piles and the geometric series of their amounts."""
    size: int = CACHE_SIZE
    smallest_grain_amount: int = SMALLEST_CACHED_WORLD_GRAIN_AMOUNT
    grain_amount_factor: int = CACHED_WORLD_GRAIN_AMOUNT_FACTOR

    def validate(self) -> None:
        if self.size < 0:
            raise ValueError(f"Cache size must be non-negative, got {self.size}")
        if self.smallest_grain_amount < 1:
            raise ValueError(
                f"Smallest cached amount must be positive, got {self.smallest_grain_amount}"
            )
        if self.grain_amount_factor < 1:
            raise ValueError(
                f"Cache amount factor must be positive, got {self.grain_amount_factor}"
            )

    def amounts(self) -> List[int]:
        return [
            self.smallest_grain_amount * self.grain_amount_factor**i
            for i in range(self.size)
        ]

    def capped(self, grain_amount: int) -> "CacheConfig":
        """Same series, cut so that no entry holds more than `grain_amount`."""
        size = sum(1 for amount in self.amounts() if amount <= grain_amount)
        return CacheConfig(
            size=size,
            smallest_grain_amount=self.smallest_grain_amount,
            grain_amount_factor=self.grain_amount_factor,
        )


class WorldCache:
    """
    Ascending list of stable piles at `smallest * factor**i` grains.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        pile_config: PileConfig | None = None,
    ) -> None:
        self.config = config or CacheConfig()
        self.config.validate()
        self._worlds: List[SandpileGrid] = []

        if self.config.size:
            logger.info(
                "Building world cache: %d piles from %d grains (x%d)",
                self.config.size,
                self.config.smallest_grain_amount,
                self.config.grain_amount_factor,
            )
        start = time.perf_counter()
        for grain_amount in self.config.amounts():
            # lookup() only sees the entries appended so far
            self._worlds.append(build_world(grain_amount, cache=self, config=pile_config))
        if self.config.size:
            logger.info("World cache ready in %.2f s", time.perf_counter() - start)

    @classmethod
    def empty(cls) -> "WorldCache":
        """A cache with no entries; every deposit falls through to raw grains."""
        return cls(CacheConfig(size=0))

    def lookup(self, grain_amount: int) -> Optional[SandpileGrid]:
        """
        Largest cached pile holding no more than `grain_amount` grains, or
        None when the amount is below the smallest cached pile.
        """
        if grain_amount < self.config.smallest_grain_amount:
            return None
        for world in reversed(self._worlds):
            if world.total_grain_amount <= grain_amount:
                return world
        return None

    @property
    def amounts(self) -> List[int]:
        return [world.total_grain_amount for world in self._worlds]

    def __len__(self) -> int:
        return len(self._worlds)

    def __iter__(self) -> Iterator[SandpileGrid]:
        return iter(self._worlds)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}<{len(self)} piles: {self.amounts}>"


__all__ = ["CacheConfig", "WorldCache"]
