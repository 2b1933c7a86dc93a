#!/usr/bin/env python3
"""
3-D DLA Point-Cloud Runner

Grows an aggregate from a TOML/JSON config (``rdla.toml`` by default) and
dumps it as a PLY point cloud or a .npz cluster archive.

    python src/scripts/run_aggregation.py --particles 5000 dump cloud.ply
"""

from __future__ import annotations

import argparse
import dataclasses
import sys
import time
from pathlib import Path

from dla_cloud import (
    AggregationError,
    AggregationModel,
    AggregationParams,
    load_aggregation_params,
    utils,
)

DEFAULT_CONFIG = "rdla.toml"
DUMP_FORMATS = (".ply", ".npz")
DEFAULT_OUTPUT_DIR = Path("results")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Grow a 3-D diffusion-limited aggregate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help=f"Config file (default: {DEFAULT_CONFIG} if it exists)",
    )
    parser.add_argument(
        "-p",
        "--particles",
        type=int,
        default=None,
        help="Number of particles, overrides the config file",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed, overrides the config file",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Hide the progress bar",
    )

    subparsers = parser.add_subparsers(dest="command")
    dump = subparsers.add_parser("dump", help="Write the aggregate to a file")
    dump.add_argument(
        "FILE",
        nargs="?",
        default=None,
        help="Output path, .ply or .npz (auto-generated .npz under results/ if not provided)",
    )
    return parser


def load_config(config: str | None) -> AggregationParams:
    """Read the config file, or fall back to defaults if none is found."""
    if config is not None:
        return load_aggregation_params(config)
    if Path(DEFAULT_CONFIG).exists():
        return load_aggregation_params(DEFAULT_CONFIG)
    return AggregationParams()


def default_output_path(params: AggregationParams) -> Path:
    """Timestamped .npz path under results/, named by particle count and seed."""
    timestamp = utils.now_str()
    return DEFAULT_OUTPUT_DIR / f"dla3d_N{params.particles}_S{params.random_seed}_{timestamp}.npz"


def dump_model(model: AggregationModel, path: Path, elapsed: float) -> None:
    if path.suffix.lower() == ".ply":
        utils.write_ply(path, model.positions())
    else:
        utils.save_cluster_result(path, model.result(time_elapsed=elapsed))


def run(args: argparse.Namespace) -> int:
    if args.command is None:
        print(
            "No subcommand given. Please specify at least one of 'help' or 'dump'.",
            file=sys.stderr,
        )
        return 1

    path = None if args.FILE is None else Path(args.FILE)
    if path is not None and path.suffix.lower() not in DUMP_FORMATS:
        print(
            f"error: unsupported output format '{path.suffix}', expected one of {DUMP_FORMATS}",
            file=sys.stderr,
        )
        return 1

    params = load_config(args.config)
    overrides = {}
    if args.particles is not None:
        overrides["particles"] = args.particles
    if args.seed is not None:
        overrides["random_seed"] = args.seed
    if args.no_progress:
        overrides["show_progress"] = False
    params = dataclasses.replace(params, **overrides)

    if path is None:
        path = default_output_path(params)

    model = AggregationModel(params)

    print(f"Growing aggregate: N={params.particles}, seed={params.random_seed}")
    start_time = time.time()
    model.run()
    elapsed_time = time.time() - start_time

    dump_model(model, path, elapsed_time)

    print(f"\nSimulation completed successfully!")
    print(f"   Time elapsed: {elapsed_time:.2f} seconds")
    print(f"   Particles generated: {model.num_particles}")
    print(f"   Bounding radius: {model.bounding_radius:.2f}")
    print(f"   Output saved to: {path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except AggregationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
