"""Submission-time polygon validation with errors, warnings and shape metrics."""

from __future__ import annotations

from pydantic import BaseModel, Field
from shapely.errors import GEOSException
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from geoestate.core.config import ValidationConfig
from geoestate.core.errors import InvalidGeometry
from geoestate.geometry.kernel import GeometryKernel
from geoestate.geometry.models import Polygon


class PolygonMetrics(BaseModel):
    area_m2: float
    perimeter_m: float
    centroid: tuple[float, float]
    is_convex: bool
    num_vertices: int


class ValidationReport(BaseModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metrics: PolygonMetrics | None = None


def has_self_intersection(shape: BaseGeometry) -> bool:
    """True when GEOS reports a ring crossing itself or another ring."""
    try:
        return "Self-intersection" in explain_validity(shape)
    except GEOSException:
        return False


def validate_polygon(
    polygon: Polygon,
    kernel: GeometryKernel,
    config: ValidationConfig | None = None,
) -> ValidationReport:
    """Validate a parcel boundary before it is listed.

    Errors make the polygon unacceptable; warnings are surfaced to the
    submitter but do not block.
    """
    config = config or ValidationConfig()
    errors: list[str] = []
    warnings: list[str] = []

    num_vertices = len(polygon.vertices)
    if polygon.distinct_vertex_count < 3:
        errors.append("Polygon must have at least 3 vertices")
        return ValidationReport(is_valid=False, errors=errors, warnings=warnings)

    try:
        shape = kernel.to_shape(polygon)
    except InvalidGeometry as exc:
        errors.append(str(exc))
        return ValidationReport(is_valid=False, errors=errors, warnings=warnings)

    if not kernel.shape_is_valid(shape):
        if has_self_intersection(shape):
            errors.append("Polygon has self-intersections (invalid geometry)")
        else:
            errors.append(f"Invalid polygon geometry: {explain_validity(shape)}")

    projected = kernel.project(shape)
    area_m2 = kernel.shape_area(shape)
    if area_m2 < config.min_area_m2:
        errors.append(f"Polygon area is too small (minimum {config.min_area_m2:g} m²)")
    if area_m2 > config.large_area_warning_m2:
        warnings.append("Polygon area is very large (> 100 km²). Please verify.")

    if num_vertices > config.max_vertices_warning:
        warnings.append(
            f"Polygon has many vertices (> {config.max_vertices_warning}). Consider simplification."
        )

    minx, miny, maxx, maxy = projected.bounds
    width, height = maxx - minx, maxy - miny
    if min(width, height) > 0 and max(width, height) / min(width, height) > config.max_aspect_ratio:
        warnings.append("Polygon has unusual elongation. Please verify boundaries.")

    centroid = shape.centroid
    min_lng, min_lat, max_lng, max_lat = config.region_bounds
    if kernel.source_crs is not None and not (
        min_lng <= centroid.x <= max_lng and min_lat <= centroid.y <= max_lat
    ):
        warnings.append("Polygon centroid is outside the service region")

    hull_area = kernel.shape_area(shape.convex_hull)
    is_convex = area_m2 > 0 and abs(hull_area - area_m2) < 0.01 * area_m2

    metrics = PolygonMetrics(
        area_m2=area_m2,
        perimeter_m=float(projected.length),
        centroid=(float(centroid.x), float(centroid.y)),
        is_convex=is_convex,
        num_vertices=num_vertices,
    )
    return ValidationReport(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        metrics=metrics,
    )
