# src/sandpile_sim/utils.py
from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    tomllib = None  # type: ignore

from .pile import SandpileGrid


@dataclass
class PileResult:
    """Stable pile loaded back from disk."""

    cells: Optional[np.ndarray] = None
    grain_amount: int = 0
    meta: Optional[Dict[str, Any]] = None

    def ensure_meta(self) -> Dict[str, Any]:
        if self.meta is None:
            self.meta = {}
        return self.meta


def setup_logging(level: str = "INFO", logfile: str | None = None) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if logfile:
        handlers.append(logging.FileHandler(logfile, mode="w"))
    logging.basicConfig(
        level=lvl,
        handlers=handlers,
        format="%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%H:%M:%S",
    )


def now_str() -> str:
    return time.strftime("%Y%m%d-%H%M%S")


def save_pile(
    path: str | os.PathLike[str],
    grid: SandpileGrid,
    meta: Optional[Dict[str, Any]] = None,
    *,
    overwrite: bool = True,
) -> None:
    """Serialize a stable pile to a compressed .npz."""
    out_dir = Path(path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    if not overwrite and Path(path).exists():
        raise FileExistsError(f"{path} already exists")

    # stable counts are 0..3
    np.savez_compressed(
        path,
        cells=grid.cells.astype("uint8"),
        grain_amount=np.int64(grid.total_grain_amount),
        meta=dict(meta or {}),
    )


def load_pile(path: str | os.PathLike[str]) -> PileResult:
    """
    Load a pile .npz into a PileResult.
    """
    data = np.load(path, allow_pickle=True)
    cells = data["cells"].astype(np.int64) if "cells" in data else None
    grain_amount = int(data["grain_amount"]) if "grain_amount" in data else 0
    meta = None
    if "meta" in data:
        meta_raw = data["meta"]
        if hasattr(meta_raw, "item"):
            try:
                meta = meta_raw.item()
            except ValueError:
                meta = meta_raw
        else:
            meta = meta_raw
    result = PileResult(cells=cells, grain_amount=grain_amount, meta=meta)
    result.ensure_meta()
    return result


def load_params(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """
    Load run parameters from JSON or TOML.
    """
    path = str(path)
    with open(path, "rb") as fh:
        data = fh.read()
    suffix = Path(path).suffix.lower()
    if suffix in {".json", ""}:
        return json.loads(data.decode("utf-8"))
    if suffix in {".toml", ".tml"}:
        if tomllib is None:
            raise RuntimeError("tomllib is unavailable; cannot parse TOML files")
        return tomllib.loads(data.decode("utf-8"))
    raise ValueError(f"Unsupported parameter file format: {suffix}")
