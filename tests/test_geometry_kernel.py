"""Tests for the geometry kernel: validity, boxes, area and intersection."""

from __future__ import annotations

import math

import pytest

from geoestate.core.errors import InvalidGeometry
from geoestate.geometry.kernel import (
    GeometryKernel,
    bounding_box,
    boxes_disjoint,
    overlap_ratio,
)
from geoestate.geometry.models import BoundingBox, MultiPolygon, Polygon, geometry_from_geojson

from conftest import square


class TestPolygonModel:
    def test_implicit_and_explicit_closure_are_equivalent(self, kernel: GeometryKernel) -> None:
        implicit = Polygon(exterior=((0, 0), (10, 0), (10, 10), (0, 10)))
        explicit = Polygon(exterior=((0, 0), (10, 0), (10, 10), (0, 10), (0, 0)))
        assert implicit.ring == explicit.ring
        assert implicit.vertices == explicit.vertices
        assert kernel.area(implicit) == pytest.approx(kernel.area(explicit))

    def test_from_geojson_feature(self) -> None:
        feature = {
            "type": "Feature",
            "properties": {},
            "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]},
        }
        polygon = Polygon.from_geojson(feature)
        assert polygon.vertices == ((0.0, 0.0), (1.0, 0.0), (1.0, 1.0))

    def test_from_geojson_rejects_other_types(self) -> None:
        with pytest.raises(InvalidGeometry):
            Polygon.from_geojson({"type": "Point", "coordinates": [0, 0]})

    def test_from_geojson_rejects_bad_positions(self) -> None:
        with pytest.raises(InvalidGeometry):
            Polygon.from_geojson({"type": "Polygon", "coordinates": [[[0, "x"], [1, 0], [1, 1]]]})

    def test_non_finite_coordinates_rejected(self) -> None:
        with pytest.raises(InvalidGeometry):
            Polygon.from_coordinates([[[0, 0], [math.inf, 0], [1, 1]]])

    def test_geojson_round_trip_is_closed(self) -> None:
        data = square(0, 0, 10).to_geojson()
        ring = data["coordinates"][0]
        assert ring[0] == ring[-1]
        assert Polygon.from_geojson(data) == Polygon(exterior=tuple(tuple(p) for p in ring))

    def test_geometry_from_geojson_multipolygon(self) -> None:
        data = {
            "type": "MultiPolygon",
            "coordinates": [square(0, 0, 1).to_geojson()["coordinates"]],
        }
        assert isinstance(geometry_from_geojson(data), MultiPolygon)


class TestValidity:
    def test_square_is_valid(self, kernel: GeometryKernel) -> None:
        assert kernel.is_valid(square(0, 0))

    def test_fewer_than_three_distinct_vertices(self, kernel: GeometryKernel) -> None:
        assert not kernel.is_valid(Polygon(exterior=((0, 0), (1, 1), (0, 0), (1, 1))))

    def test_bowtie_is_invalid(self, kernel: GeometryKernel) -> None:
        bowtie = Polygon(exterior=((0, 0), (10, 10), (10, 0), (0, 10)))
        assert not kernel.is_valid(bowtie)


class TestBoundingBox:
    def test_bounding_box(self) -> None:
        poly = Polygon(exterior=((3, 1), (7, 2), (5, 9)))
        assert bounding_box(poly) == BoundingBox(3, 1, 7, 9)

    def test_disjoint_boxes(self) -> None:
        assert boxes_disjoint(BoundingBox(0, 0, 1, 1), BoundingBox(2, 0, 3, 1))
        assert boxes_disjoint(BoundingBox(0, 0, 1, 1), BoundingBox(0, 2, 1, 3))

    def test_touching_boxes_are_not_disjoint(self) -> None:
        assert not boxes_disjoint(BoundingBox(0, 0, 1, 1), BoundingBox(1, 0, 2, 1))

    def test_overlapping_boxes(self) -> None:
        assert not boxes_disjoint(BoundingBox(0, 0, 2, 2), BoundingBox(1, 1, 3, 3))


class TestArea:
    def test_planar_area(self, kernel: GeometryKernel) -> None:
        assert kernel.area(square(0, 0, 100)) == pytest.approx(10_000.0)

    def test_degenerate_area_is_zero(self, kernel: GeometryKernel) -> None:
        line = Polygon(exterior=((0, 0), (1, 0), (2, 0)))
        assert kernel.area(line) == 0.0

    def test_geographic_area_is_projected(self) -> None:
        kernel = GeometryKernel(source_crs="EPSG:4326", area_crs="EPSG:6933")
        # Roughly 0.01° x 0.01° near Dar es Salaam: about 1.2 km².
        poly = Polygon(
            exterior=((39.20, -6.80), (39.21, -6.80), (39.21, -6.79), (39.20, -6.79))
        )
        area = kernel.area(poly)
        assert 1.0e6 < area < 1.4e6


class TestOverlapRatio:
    def test_clamps_to_smaller_area(self) -> None:
        area, pct = overlap_ratio(150.0, 100.0, 200.0)
        assert area == 100.0
        assert pct == 100.0

    def test_sliver_becomes_zero(self) -> None:
        assert overlap_ratio(1e-12, 100.0, 100.0) == (0.0, 0.0)

    def test_zero_area_parcel(self) -> None:
        assert overlap_ratio(10.0, 0.0, 100.0) == (0.0, 0.0)

    def test_negative_intersection(self) -> None:
        assert overlap_ratio(-5.0, 100.0, 100.0) == (0.0, 0.0)


class TestIntersection:
    def test_half_overlap(self, kernel: GeometryKernel) -> None:
        measure = kernel.measure_overlap(square(0, 0), square(50, 0))
        assert measure.overlap_percentage == pytest.approx(50.0)
        assert measure.intersection_area_m2 == pytest.approx(5_000.0)
        assert isinstance(measure.geometry, Polygon)

    def test_touching_polygons_do_not_overlap(self, kernel: GeometryKernel) -> None:
        measure = kernel.measure_overlap(square(0, 0), square(100, 0))
        assert measure.overlap_percentage == 0.0
        assert measure.geometry is None
        assert kernel.intersect(square(0, 0), square(100, 0)) is None

    def test_symmetry(self, kernel: GeometryKernel) -> None:
        a = Polygon(exterior=((0, 0), (120, 0), (120, 80), (0, 80)))
        b = Polygon(exterior=((60, 20), (200, 20), (200, 150), (60, 150)))
        ab = kernel.measure_overlap(a, b)
        ba = kernel.measure_overlap(b, a)
        assert ab.overlap_percentage == pytest.approx(ba.overlap_percentage)
        assert ab.intersection_area_m2 == pytest.approx(ba.intersection_area_m2)

    def test_contained_parcel_is_full_overlap(self, kernel: GeometryKernel) -> None:
        measure = kernel.measure_overlap(square(0, 0, 100), square(25, 25, 10))
        assert measure.overlap_percentage == pytest.approx(100.0)
        assert measure.intersection_area_m2 == pytest.approx(100.0)

    def test_non_convex_intersection_is_multipolygon(self, kernel: GeometryKernel) -> None:
        # U-shaped parcel crossed by a bar yields two separate pieces.
        u_shape = Polygon(
            exterior=((0, 0), (30, 0), (30, 30), (20, 30), (20, 10), (10, 10), (10, 30), (0, 30))
        )
        bar = Polygon(exterior=((-5, 20), (35, 20), (35, 25), (-5, 25)))
        result = kernel.intersect(u_shape, bar)
        assert isinstance(result, MultiPolygon)
        assert len(result.polygons) == 2
        assert kernel.area(result) == pytest.approx(100.0)

    def test_invalid_input_measures_as_no_overlap(self, kernel: GeometryKernel) -> None:
        bowtie = Polygon(exterior=((0, 0), (10, 10), (10, 0), (0, 10)))
        assert kernel.measure_overlap(bowtie, square(0, 0, 10)).overlap_percentage == 0.0
