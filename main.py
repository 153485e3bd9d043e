#!/usr/bin/env python3
"""
Main entry point for facade noise field computation.

Usage:
    python main.py --shape L
    python main.py --shape U --footprint 24 --lw segment-0=95 --lw segment-3=80
    python main.py sample_models/building.obj --output field.json

Options beyond the command line can be given as a JSON file matching
FieldConfig.from_dict().
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Dict, List, Optional

from facade_noise import (
    BUILDING_SHAPES,
    FieldConfig,
    build_color_scale,
    compute_noise_grid,
    ensure_lw_defaults,
    load_footprint,
    segments_from_perimeter,
)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Compute the outdoor noise field around a building",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --shape L
  python main.py --shape CROSS --footprint 30 --cell-size 1.0
  python main.py --shape L --lw segment-0=100 --lw segment-2=85 --colorscale
  python main.py --config params.json sample_models/building.obj
        """
    )

    parser.add_argument(
        "mesh_path",
        type=str,
        nargs="?",
        help="Mesh file to take the footprint from (instead of --shape)"
    )

    parser.add_argument(
        "--shape",
        type=str.upper,
        choices=sorted(BUILDING_SHAPES),
        help="Parametric building shape"
    )

    parser.add_argument(
        "--footprint",
        type=float,
        default=16.0,
        help="Bounding size of the parametric shape in m (default: 16.0)"
    )

    parser.add_argument(
        "--area-size",
        type=float,
        help="Grid extent in m (default: 120.0)"
    )

    parser.add_argument(
        "--resolution",
        type=int,
        help="Samples per grid axis (default: 60)"
    )

    parser.add_argument(
        "--cell-size",
        type=float,
        help="Grid spacing in m, overrides --resolution"
    )

    parser.add_argument(
        "--height",
        type=float,
        help="Building height in m (default: 10.0)"
    )

    parser.add_argument(
        "--lw",
        action="append",
        default=[],
        metavar="NAME=DB",
        help="Sound power level of a facade; repeatable (default: first facade 100 dB, others 0)"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="JSON file with field configuration"
    )

    parser.add_argument(
        "--output",
        type=str,
        help="Write the grid JSON here instead of stdout"
    )

    parser.add_argument(
        "--colorscale",
        action="store_true",
        help="Include a threshold colour ramp in the output"
    )

    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress progress output"
    )

    return parser.parse_args(argv)


def parse_lw_assignments(values: List[str]) -> Dict[str, float]:
    """Parse ``NAME=DB`` pairs."""
    levels = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Expected NAME=DB, got {item!r}")
        try:
            levels[name.strip()] = float(value)
        except ValueError:
            raise ValueError(f"Invalid level in {item!r}")
    return levels


def build_config(args) -> FieldConfig:
    """Configuration file first, command line options on top."""
    values = {}
    if args.config:
        with open(args.config) as f:
            values = json.load(f)
    config = FieldConfig.from_dict(values)

    overrides = {}
    if args.area_size is not None:
        overrides["area_size"] = args.area_size
    if args.resolution is not None:
        overrides["resolution"] = args.resolution
    if args.cell_size is not None:
        overrides["cell_size"] = args.cell_size
    if args.height is not None:
        overrides["building_height"] = args.height
    return config.with_overrides(overrides)


def load_perimeter(args):
    """Footprint from the mesh argument or the parametric shape."""
    if args.mesh_path:
        return load_footprint(args.mesh_path)
    return BUILDING_SHAPES[args.shape](args.footprint)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_args(argv)

    if not args.mesh_path and not args.shape:
        print("Error: give a mesh file or --shape.")
        sys.exit(1)
    if args.mesh_path and not Path(args.mesh_path).exists():
        print(f"Error: Path '{args.mesh_path}' does not exist.")
        sys.exit(1)

    verbose = not args.quiet

    try:
        config = build_config(args)
        perimeter = load_perimeter(args)
        segments = segments_from_perimeter(perimeter)
        lw_map = ensure_lw_defaults(parse_lw_assignments(args.lw), segments)

        if verbose:
            source = args.mesh_path or f"shape {args.shape} ({args.footprint:.1f}m)"
            print(f"\nProcessing: {source}", file=sys.stderr)
            print("-" * 60, file=sys.stderr)
            for seg in segments:
                print(f"  {seg.name}: {lw_map.get(seg.name, 0.0):.1f} dB", file=sys.stderr)

        # Pipeline progress goes to stdout, so only when the grid goes to a file
        grid = compute_noise_grid(perimeter, segments, lw_map, config, verbose=verbose and bool(args.output))

        result = grid.to_dict()
        if args.colorscale:
            result["colorscale"] = [
                [pos, color] for pos, color in build_color_scale(grid.min, grid.max, config.bands)
            ]
        text = json.dumps(result, allow_nan=False)

        if args.output:
            Path(args.output).write_text(text)
            if verbose:
                print(f"\nWrote {len(grid.x)}x{len(grid.y)} grid to {args.output}", file=sys.stderr)
        else:
            print(text)

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
