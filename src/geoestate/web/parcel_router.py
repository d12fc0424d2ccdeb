"""FastAPI router for parcel submission and boundary checks."""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from geoestate.core.errors import InvalidGeometry, StoreUnavailable
from geoestate.geometry.models import Polygon
from geoestate.geometry.validation import validate_polygon
from geoestate.parcels.models import OwnerInfo, Parcel, check_parcel_id
from geoestate.repositories import resolve
from geoestate.web.auth import Actor, current_actor, require_roles

router = APIRouter()


class OwnerPayload(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class ParcelCreateRequest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_id: str
    title: str = ""
    region: str | None = None
    district: str | None = None
    boundary: Any
    owner: OwnerPayload | None = None

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        return check_parcel_id(value)


class BoundaryRequest(BaseModel):
    boundary: Any
    exclude_parcel_id: str | None = None


def _parse_boundary(raw: Any) -> Polygon:
    try:
        return Polygon.from_geojson(raw)
    except InvalidGeometry as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/api/parcels")
async def submit_parcel(body: ParcelCreateRequest, request: Request) -> dict[str, Any]:
    """Store a new parcel unless it overlaps an existing one too much."""
    store = request.app.state.parcel_store
    screening = request.app.state.parcel_screening
    actor = current_actor(request)

    parcel = Parcel(
        id=body.id,
        owner_id=body.owner_id,
        title=body.title,
        region=body.region,
        district=body.district,
        boundary=_parse_boundary(body.boundary),
    )
    submitter_id = body.owner_id if actor.is_anonymous else actor.actor_id
    try:
        if body.owner is not None:
            await resolve(store.save_owner(OwnerInfo(owner_id=body.owner_id, **body.owner.model_dump())))
        result = await screening.submit_parcel(parcel, submitter_id=submitter_id)
    except InvalidGeometry as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return result.model_dump(mode="json")


@router.get("/api/parcels/{parcel_id}")
async def get_parcel(parcel_id: str, request: Request) -> dict[str, Any]:
    store = request.app.state.parcel_store
    try:
        parcel = await resolve(store.get(parcel_id))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if parcel is None:
        raise HTTPException(status_code=404, detail=f"Parcel {parcel_id!r} not found")
    payload = parcel.model_dump(mode="json")
    payload["boundary"] = parcel.boundary.to_geojson()
    return payload


@router.post("/api/parcels/check-overlap")
async def check_overlap(body: BoundaryRequest, request: Request) -> dict[str, Any]:
    """Report how a proposed boundary overlaps the live parcels."""
    screening = request.app.state.parcel_screening
    polygon = _parse_boundary(body.boundary)
    try:
        result = await screening.check_overlap(polygon, exclude_parcel_id=body.exclude_parcel_id)
    except InvalidGeometry as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return result.model_dump(mode="json")


@router.post("/api/parcels/validate")
async def validate_boundary(body: BoundaryRequest, request: Request) -> dict[str, Any]:
    polygon = _parse_boundary(body.boundary)
    report = validate_polygon(
        polygon,
        request.app.state.geometry_kernel,
        request.app.state.settings.validation,
    )
    return report.model_dump(mode="json")


@router.post("/api/parcels/{parcel_id}/fraud-signals")
async def fraud_signals(
    parcel_id: str,
    request: Request,
    actor: Actor = require_roles(),
) -> dict[str, Any]:
    """Score a stored parcel's boundary against the other live parcels."""
    store = request.app.state.parcel_store
    screening = request.app.state.parcel_screening
    try:
        parcel = await resolve(store.get(parcel_id))
        if parcel is None:
            raise HTTPException(status_code=404, detail=f"Parcel {parcel_id!r} not found")
        signals = await screening.detect_fraud_signals(parcel, user_id=parcel.owner_id)
    except InvalidGeometry as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {
        "parcel_id": parcel_id,
        "signals_detected": len(signals),
        "total_score": sum(s.signal_score for s in signals),
        "signals": [s.model_dump(mode="json") for s in signals],
    }
