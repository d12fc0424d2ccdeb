"""Geometry kernel: validity, bounding boxes, area and intersection.

All primitives are pure. Polygons arrive as ``(lng, lat)`` rings; areas are
computed after projecting into an equal-area metric CRS so that the result is
in square meters. Intersections are computed in the source coordinates and
only projected for measuring.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from pyproj import Transformer
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon as ShapelyMultiPolygon
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform, unary_union

from geoestate.core.config import OverlapConfig
from geoestate.core.errors import IntersectionComputationFailed, InvalidGeometry
from geoestate.geometry.models import BoundingBox, Geometry, MultiPolygon, Polygon

logger = logging.getLogger(__name__)

# Intersections smaller than this fraction of the smaller parcel are treated as
# floating-point slivers from touching edges and clamped to zero.
AREA_EPSILON = 1e-9


@dataclass(frozen=True)
class OverlapMeasure:
    """Quantified overlap between two polygons."""

    intersection_area_m2: float
    overlap_percentage: float
    geometry: Geometry | None


def bounding_box(polygon: Polygon) -> BoundingBox:
    """Axis-aligned envelope of the exterior ring."""
    vertices = polygon.vertices
    if not vertices:
        raise InvalidGeometry("Cannot compute the bounding box of an empty polygon")
    lngs = [lng for lng, _ in vertices]
    lats = [lat for _, lat in vertices]
    return BoundingBox(min(lngs), min(lats), max(lngs), max(lats))


def boxes_disjoint(a: BoundingBox, b: BoundingBox) -> bool:
    """True iff the boxes are separated on either axis.

    Boxes that merely touch are not disjoint, so this never rejects a pair
    whose polygons share a boundary.
    """
    return (
        a.max_lng < b.min_lng
        or b.max_lng < a.min_lng
        or a.max_lat < b.min_lat
        or b.max_lat < a.min_lat
    )


def overlap_ratio(intersection_area: float, area_a: float, area_b: float) -> tuple[float, float]:
    """Return ``(clamped_area, percentage)`` relative to the smaller area.

    The area is clamped to ``[0, min(area_a, area_b)]``, slivers below
    ``AREA_EPSILON`` of the smaller area become 0, and the percentage is
    clamped to ``[0, 100]``.
    """
    smaller = min(area_a, area_b)
    if not math.isfinite(intersection_area) or smaller <= 0:
        return 0.0, 0.0
    clamped = min(max(intersection_area, 0.0), smaller)
    if clamped <= AREA_EPSILON * smaller:
        return 0.0, 0.0
    percentage = min(max(clamped / smaller * 100.0, 0.0), 100.0)
    return clamped, percentage


def _collect_polygons(g: BaseGeometry) -> list[ShapelyPolygon]:
    if g.is_empty:
        return []
    if g.geom_type == "Polygon":
        return [g]  # type: ignore[list-item]
    if g.geom_type == "MultiPolygon":
        return list(g.geoms)  # type: ignore[attr-defined]
    if g.geom_type == "GeometryCollection":
        polys: list[ShapelyPolygon] = []
        for part in g.geoms:  # type: ignore[attr-defined]
            polys.extend(_collect_polygons(part))
        return polys
    return []


def _polygon_from_shape(p: ShapelyPolygon) -> Polygon:
    return Polygon(
        exterior=tuple((float(x), float(y)) for x, y in p.exterior.coords),
        holes=tuple(tuple((float(x), float(y)) for x, y in r.coords) for r in p.interiors),
    )


def geometry_from_shape(g: BaseGeometry) -> Geometry | None:
    """Convert a shapely result into a typed value, keeping only polygonal parts."""
    polys = [p for p in _collect_polygons(g) if not p.is_empty]
    if not polys:
        return None
    if len(polys) == 1:
        return _polygon_from_shape(polys[0])
    return MultiPolygon(polygons=tuple(_polygon_from_shape(p) for p in polys))


class GeometryKernel:
    """Geometry primitives bound to a coordinate reference system.

    Args:
        source_crs: CRS of incoming coordinates. ``None`` means the
            coordinates are already planar meters and are used as-is.
        area_crs: Equal-area metric CRS used for area measurement.
    """

    def __init__(
        self,
        source_crs: str | None = "EPSG:4326",
        area_crs: str = "EPSG:6933",
    ) -> None:
        self._source_crs = source_crs
        self._area_crs = area_crs
        self._transformer: Transformer | None = None
        if source_crs is not None and source_crs != area_crs:
            self._transformer = Transformer.from_crs(source_crs, area_crs, always_xy=True)

    @classmethod
    def from_config(cls, config: OverlapConfig) -> GeometryKernel:
        return cls(source_crs=config.source_crs, area_crs=config.area_crs)

    @property
    def source_crs(self) -> str | None:
        return self._source_crs

    # -- Conversion --

    def to_shape(self, geometry: Geometry) -> BaseGeometry:
        """Build the shapely geometry for a typed value.

        Raises:
            InvalidGeometry: If shapely cannot construct the rings.
        """
        try:
            if isinstance(geometry, MultiPolygon):
                return ShapelyMultiPolygon(
                    [ShapelyPolygon(p.ring, [list(h) for h in p.holes]) for p in geometry.polygons]
                )
            return ShapelyPolygon(geometry.ring, [list(h) for h in geometry.holes])
        except (ValueError, TypeError, GEOSException) as exc:
            raise InvalidGeometry(f"Could not build polygon: {exc}") from exc

    def project(self, shape: BaseGeometry) -> BaseGeometry:
        if self._transformer is None:
            return shape
        return transform(self._transformer.transform, shape)

    # -- Validity --

    def is_valid(self, polygon: Polygon) -> bool:
        """Reject rings with fewer than 3 distinct vertices, unclosable or self-intersecting rings."""
        if polygon.distinct_vertex_count < 3:
            return False
        try:
            shape = self.to_shape(polygon)
        except InvalidGeometry:
            return False
        return self.shape_is_valid(shape)

    def shape_is_valid(self, shape: BaseGeometry) -> bool:
        try:
            return bool(shape.is_valid) and not shape.is_empty
        except GEOSException:
            return False

    # -- Area --

    def shape_area(self, shape: BaseGeometry) -> float:
        """Projected area in m²; degenerate results are reported as 0."""
        try:
            value = float(self.project(shape).area)
        except GEOSException as exc:
            logger.warning("Area computation failed: %s", exc)
            return 0.0
        if not math.isfinite(value) or value <= 0:
            return 0.0
        return value

    def area(self, geometry: Geometry) -> float:
        try:
            shape = self.to_shape(geometry)
        except InvalidGeometry:
            return 0.0
        return self.shape_area(shape)

    # -- Intersection --

    def intersect_shapes(self, a: BaseGeometry, b: BaseGeometry) -> BaseGeometry | None:
        """Polygonal part of ``a ∩ b``, or ``None`` when there is none.

        Raises:
            IntersectionComputationFailed: On GEOS topology errors.
        """
        if a.is_empty or b.is_empty:
            return None
        try:
            if not a.intersects(b):
                return None
            raw = a.intersection(b)
        except GEOSException as exc:
            raise IntersectionComputationFailed(str(exc)) from exc
        polys = _collect_polygons(raw)
        if not polys:
            return None
        if len(polys) == 1:
            return polys[0]
        try:
            return unary_union(polys)
        except GEOSException:
            return ShapelyMultiPolygon(polys)

    def intersect(self, a: Polygon, b: Polygon) -> Geometry | None:
        """Intersection of two parcels, ``None`` if disjoint, touching or invalid."""
        if not (self.is_valid(a) and self.is_valid(b)):
            return None
        shape = self.intersect_shapes(self.to_shape(a), self.to_shape(b))
        if shape is None:
            return None
        return geometry_from_shape(shape)

    def intersection_area(self, a: Polygon, b: Polygon) -> float:
        result = self.intersect(a, b)
        return 0.0 if result is None else self.area(result)

    def measure_shapes(
        self,
        a: BaseGeometry,
        b: BaseGeometry,
        area_a: float,
        area_b: float,
    ) -> OverlapMeasure:
        """Measure the overlap of two prepared shapes with known areas."""
        inter = self.intersect_shapes(a, b)
        if inter is None:
            return OverlapMeasure(0.0, 0.0, None)
        inter_area, percentage = overlap_ratio(self.shape_area(inter), area_a, area_b)
        if percentage == 0.0:
            return OverlapMeasure(0.0, 0.0, None)
        return OverlapMeasure(inter_area, percentage, geometry_from_shape(inter))

    def measure_overlap(self, a: Polygon, b: Polygon) -> OverlapMeasure:
        """Overlap of two polygons as a percentage of the smaller one.

        Symmetric in ``a`` and ``b``. Invalid inputs measure as no overlap.
        """
        if not (self.is_valid(a) and self.is_valid(b)):
            return OverlapMeasure(0.0, 0.0, None)
        sa, sb = self.to_shape(a), self.to_shape(b)
        return self.measure_shapes(sa, sb, self.shape_area(sa), self.shape_area(sb))
