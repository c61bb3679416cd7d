#!/usr/bin/env python3
"""
Sandpile Runner

Builds the world cache, drops N grains on the center of an empty lattice,
relaxes the pile and saves it as an image.
"""

import argparse
import sys
import time
from pathlib import Path

from sandpile_sim import CacheConfig, WorldCache, build_world, render, utils

WORLD_GRAIN_AMOUNT = 100_000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build a stable abelian sandpile and save it as an image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--N",
        type=int,
        default=None,
        help=f"Number of grains to drop (default: {WORLD_GRAIN_AMOUNT})",
    )
    parser.add_argument(
        "--out",
        type=str,
        default=None,
        help="Output image path (default: world.png)",
    )
    parser.add_argument(
        "--format",
        type=str,
        default=None,
        help="Image format (default: png)",
    )
    parser.add_argument(
        "--npz",
        type=str,
        default=None,
        help="Also save the pile as .npz ('auto' for a timestamped name)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON/TOML file with run parameters; flags take precedence",
    )
    parser.add_argument("--cache-size", type=int, default=None, help="Number of cached piles")
    parser.add_argument("--smallest", type=int, default=None, help="Smallest cached grain amount")
    parser.add_argument("--factor", type=int, default=None, help="Cached grain amount factor")
    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Drop all grains raw instead of seeding from cached piles",
    )
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level")
    return parser


def resolve_params(args: argparse.Namespace) -> dict:
    """Merge config-file values with command-line flags."""
    params = utils.load_params(args.config) if args.config else {}
    flags = {
        "num_grains": args.N,
        "out": args.out,
        "format": args.format,
        "cache_size": args.cache_size,
        "smallest": args.smallest,
        "factor": args.factor,
    }
    params.update({key: value for key, value in flags.items() if value is not None})
    params.setdefault("num_grains", WORLD_GRAIN_AMOUNT)
    params.setdefault("out", "world.png")
    params.setdefault("format", "png")
    if args.no_cache:
        params["cache_size"] = 0
    return params


def main(argv=None):
    args = build_parser().parse_args(argv)
    utils.setup_logging(args.log_level)
    params = resolve_params(args)

    start_time = time.time()

    defaults = CacheConfig()
    cache_config = CacheConfig(
        size=params.get("cache_size", defaults.size),
        smallest_grain_amount=params.get("smallest", defaults.smallest_grain_amount),
        grain_amount_factor=params.get("factor", defaults.grain_amount_factor),
    )
    cache_config.validate()
    # larger entries are never looked up for this pile
    cache = WorldCache(cache_config.capped(params["num_grains"]))
    world = build_world(params["num_grains"], cache=cache)
    saved = render.save_image(world, params["out"], params["format"])

    if args.npz:
        npz_path = args.npz
        if npz_path == "auto":
            npz_path = str(Path("results") / f"pile_N{world.total_grain_amount}_{utils.now_str()}.npz")
        utils.save_pile(
            npz_path,
            world,
            meta={"num_grains": world.total_grain_amount, "cache": cache.amounts},
        )
        print(f"   Pile saved to: {npz_path}")

    elapsed_ms = int((time.time() - start_time) * 1000)
    print(f"   Time elapsed: {elapsed_ms} ms")

    if not saved:
        return 1
    print(f"   Image saved to: {params['out']} ({world.width}x{world.width})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
