#!/usr/bin/env python3
"""Scan a GeoJSON FeatureCollection of parcels for overlaps.

Usage:
    python3 scripts/scan_geojson.py parcels.geojson
    python3 scripts/scan_geojson.py parcels.geojson --output overlaps.json --workers 4

Each feature needs a Polygon geometry and ``id`` / ``owner_id`` properties
(``status`` and ``title`` are optional). Features that cannot be read are
reported and skipped.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure the project source is importable when running the script directly.
_project_root = Path(__file__).resolve().parent.parent
_src = _project_root / "src"
if str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from geoestate.core.config import OverlapConfig  # noqa: E402
from geoestate.geometry.kernel import GeometryKernel  # noqa: E402
from geoestate.overlap.reporting import compute_stats, format_area  # noqa: E402
from geoestate.overlap.scanner import OverlapScanner  # noqa: E402
from geoestate.parcels.geojson import FeatureLoadResult, parcels_from_feature_collection  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find overlapping parcels in a GeoJSON file.")
    parser.add_argument("path", type=Path, help="GeoJSON FeatureCollection of parcels.")
    parser.add_argument("--output", type=Path, default=None, help="Write records as JSON here.")
    parser.add_argument("--workers", type=int, default=1, help="Intersection worker threads.")
    parser.add_argument(
        "--source-crs",
        default="EPSG:4326",
        help="CRS of the input coordinates; 'none' if they are already in metres.",
    )
    parser.add_argument(
        "--min-percentage",
        type=float,
        default=None,
        help="Smallest overlap percentage to report (default from config).",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args()


def load_parcels(path: Path) -> FeatureLoadResult:
    with open(path) as fh:
        return parcels_from_feature_collection(json.load(fh))


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {"scan_workers": args.workers}
    if args.source_crs.lower() == "none":
        overrides["source_crs"] = None
    else:
        overrides["source_crs"] = args.source_crs
    if args.min_percentage is not None:
        overrides["min_reportable_threshold"] = args.min_percentage
    config = OverlapConfig(**overrides)

    loaded = load_parcels(args.path)
    scanner = OverlapScanner(GeometryKernel.from_config(config), config=config)
    result = scanner.scan(loaded.parcels)

    for record in result.records:
        print(
            f"{record.parcel_a_id} x {record.parcel_b_id}: "
            f"{record.overlap_percentage:.1f}% ({format_area(record.overlap_area_m2)}) "
            f"[{record.label}]{' same owner' if record.same_owner else ''}"
        )
    stats = compute_stats(result.records)
    print(
        f"\n{stats.total} overlaps ({stats.blocking} blocking) among "
        f"{result.stats.parcels_scanned} parcels; "
        f"{result.skipped_parcel_count + len(loaded.skipped)} parcels skipped "
        f"({len(loaded.skipped)} unreadable features, "
        f"{result.skipped_parcel_count} with invalid geometry)"
    )

    if args.output:
        args.output.write_text(result.model_dump_json(indent=2))
        print(f"Records written to {args.output}")


if __name__ == "__main__":
    main()
