"""Geometry kernel for parcel boundaries.

Provides typed polygon values plus validity, bounding-box, area and
intersection primitives built on shapely and pyproj.
"""

from geoestate.geometry.kernel import (
    GeometryKernel,
    OverlapMeasure,
    bounding_box,
    boxes_disjoint,
    overlap_ratio,
)
from geoestate.geometry.models import BoundingBox, MultiPolygon, Polygon

__all__ = [
    "BoundingBox",
    "GeometryKernel",
    "MultiPolygon",
    "OverlapMeasure",
    "Polygon",
    "bounding_box",
    "boxes_disjoint",
    "overlap_ratio",
]
