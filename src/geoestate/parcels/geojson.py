"""Read parcels from a GeoJSON FeatureCollection."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from geoestate.core.errors import InvalidGeometry
from geoestate.core.types import ParcelStatus
from geoestate.geometry.models import Polygon
from geoestate.parcels.models import Parcel

logger = logging.getLogger(__name__)


class SkippedFeature(BaseModel):
    feature_id: str
    reason: str


class FeatureLoadResult(BaseModel):
    parcels: list[Parcel] = Field(default_factory=list)
    skipped: list[SkippedFeature] = Field(default_factory=list)


def parcels_from_feature_collection(data: dict[str, Any]) -> FeatureLoadResult:
    """Build one parcel per feature.

    Each feature needs a Polygon geometry; ``id``, ``owner_id``, ``status``,
    ``title``, ``region`` and ``district`` are read from its properties. A
    feature whose geometry, id or status cannot be used is skipped and
    listed in the result rather than failing the whole file.
    """
    result = FeatureLoadResult()
    for index, feature in enumerate(data.get("features") or []):
        props = feature.get("properties") or {}
        feature_id = str(props.get("id") or feature.get("id") or f"feature-{index}")
        try:
            parcel = Parcel(
                id=feature_id,
                owner_id=str(props.get("owner_id", "")),
                status=ParcelStatus(props.get("status") or ParcelStatus.PUBLISHED),
                boundary=Polygon.from_geojson(feature),
                title=props.get("title") or "",
                region=props.get("region"),
                district=props.get("district"),
            )
        except (InvalidGeometry, ValueError) as exc:
            logger.warning("Skipping feature %s: %s", feature_id, exc)
            result.skipped.append(SkippedFeature(feature_id=feature_id, reason=str(exc)))
            continue
        result.parcels.append(parcel)
    return result
