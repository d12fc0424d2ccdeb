"""Typed polygon values exchanged at the GeoJSON boundary."""

from __future__ import annotations

import math
from typing import Any, NamedTuple

from pydantic import BaseModel, field_validator

from geoestate.core.errors import InvalidGeometry

Coordinate = tuple[float, float]
Ring = tuple[Coordinate, ...]


class BoundingBox(NamedTuple):
    min_lng: float
    min_lat: float
    max_lng: float
    max_lat: float


def close_ring(ring: Ring) -> Ring:
    """Return ``ring`` with the first vertex repeated at the end if needed."""
    if ring and ring[0] != ring[-1]:
        return ring + (ring[0],)
    return ring


def open_ring(ring: Ring) -> Ring:
    """Return ``ring`` without the explicit closing vertex."""
    if len(ring) > 1 and ring[0] == ring[-1]:
        return ring[:-1]
    return ring


def _parse_ring(raw: Any) -> Ring:
    if not isinstance(raw, (list, tuple)):
        raise InvalidGeometry("Ring must be an array of [lng, lat] positions")
    ring: list[Coordinate] = []
    for position in raw:
        if not isinstance(position, (list, tuple)) or len(position) < 2:
            raise InvalidGeometry(f"Invalid position {position!r}")
        try:
            lng, lat = float(position[0]), float(position[1])
        except (TypeError, ValueError) as exc:
            raise InvalidGeometry(f"Non-numeric position {position!r}") from exc
        ring.append((lng, lat))
    return tuple(ring)


class Polygon(BaseModel):
    """A simple polygon with one exterior ring and optional holes.

    Rings may be given implicitly closed (last vertex differs from the
    first) or explicitly closed; both describe the same boundary.
    """

    model_config = {"frozen": True}

    exterior: Ring
    holes: tuple[Ring, ...] = ()

    @field_validator("exterior")
    @classmethod
    def _finite(cls, ring: Ring) -> Ring:
        for lng, lat in ring:
            if not (math.isfinite(lng) and math.isfinite(lat)):
                raise ValueError("coordinates must be finite numbers")
        return ring

    @property
    def ring(self) -> Ring:
        """The exterior ring, explicitly closed."""
        return close_ring(self.exterior)

    @property
    def vertices(self) -> Ring:
        """The exterior ring without its closing vertex."""
        return open_ring(self.exterior)

    @property
    def distinct_vertex_count(self) -> int:
        return len(set(self.vertices))

    @classmethod
    def from_coordinates(cls, coordinates: Any) -> Polygon:
        """Build from a GeoJSON ``coordinates`` array (list of rings)."""
        if not isinstance(coordinates, (list, tuple)) or not coordinates:
            raise InvalidGeometry("Polygon coordinates must be a non-empty array of rings")
        rings = [_parse_ring(r) for r in coordinates]
        try:
            return cls(exterior=rings[0], holes=tuple(rings[1:]))
        except ValueError as exc:
            raise InvalidGeometry(str(exc)) from exc

    @classmethod
    def from_geojson(cls, data: Any) -> Polygon:
        """Parse a GeoJSON Polygon geometry, a Feature wrapping one, or bare coordinates.

        Raises:
            InvalidGeometry: If ``data`` is not a polygon.
        """
        if isinstance(data, (list, tuple)):
            return cls.from_coordinates(data)
        if not isinstance(data, dict):
            raise InvalidGeometry("Invalid GeoJSON format")
        if data.get("type") == "Feature":
            return cls.from_geojson(data.get("geometry"))
        if data.get("type") != "Polygon":
            raise InvalidGeometry('GeoJSON must be of type "Polygon"')
        if "coordinates" not in data:
            raise InvalidGeometry("Missing or invalid coordinates array")
        return cls.from_coordinates(data["coordinates"])

    def to_geojson(self) -> dict[str, Any]:
        rings = [self.ring, *(close_ring(h) for h in self.holes)]
        return {
            "type": "Polygon",
            "coordinates": [[[lng, lat] for lng, lat in r] for r in rings],
        }


class MultiPolygon(BaseModel):
    """A collection of polygons, produced by intersections of non-convex parcels."""

    model_config = {"frozen": True}

    polygons: tuple[Polygon, ...]

    @classmethod
    def from_geojson(cls, data: dict[str, Any]) -> MultiPolygon:
        if not isinstance(data, dict) or data.get("type") != "MultiPolygon":
            raise InvalidGeometry('GeoJSON must be of type "MultiPolygon"')
        return cls(polygons=tuple(Polygon.from_coordinates(c) for c in data.get("coordinates", [])))

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "MultiPolygon",
            "coordinates": [p.to_geojson()["coordinates"] for p in self.polygons],
        }


Geometry = Polygon | MultiPolygon


def geometry_from_geojson(data: dict[str, Any]) -> Geometry:
    """Parse either polygonal GeoJSON type."""
    if isinstance(data, dict) and data.get("type") == "MultiPolygon":
        return MultiPolygon.from_geojson(data)
    return Polygon.from_geojson(data)
