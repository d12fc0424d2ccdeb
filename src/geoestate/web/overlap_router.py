"""FastAPI router for overlap scanning, review and resolution."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from geoestate.core.errors import MissingReason, StoreUnavailable
from geoestate.core.types import AuditActionType, Severity, SeverityLabel
from geoestate.overlap.models import ResolutionOutcome, ResolutionResult
from geoestate.overlap.reporting import OverlapFilter, OverlapSortKey, format_area
from geoestate.overlap.service import OverlapService
from geoestate.web.auth import Actor, require_roles

router = APIRouter()


class ResolveRequest(BaseModel):
    target_parcel_id: str
    reason: str = ""


class IgnoreRequest(BaseModel):
    reason: str = ""


def _service(request: Request) -> OverlapService:
    return request.app.state.overlap_service


def _result_response(result: ResolutionResult) -> Any:
    payload = result.model_dump(mode="json")
    if result.outcome == ResolutionOutcome.ALREADY_RESOLVED:
        return JSONResponse(status_code=409, content=payload)
    return payload


@router.post("/api/overlaps/scan")
async def run_scan(request: Request, actor: Actor = require_roles()) -> dict[str, Any]:
    """Scan every eligible parcel and replace the current overlap set."""
    try:
        result = await _service(request).run_scan(actor_id=actor.actor_id)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    payload = result.model_dump(mode="json")
    payload["skipped_parcel_count"] = result.skipped_parcel_count
    return payload


@router.get("/api/overlaps")
async def list_overlaps(
    request: Request,
    severity: Severity | None = None,
    label: SeverityLabel | None = None,
    same_owner: bool | None = None,
    search: str | None = None,
    min_percentage: float | None = None,
    include_resolved: bool = True,
    sort_by: OverlapSortKey = OverlapSortKey.PERCENTAGE,
    descending: bool = True,
    limit: int | None = Query(default=None, ge=1),
    actor: Actor = require_roles(),
) -> list[dict[str, Any]]:
    service = _service(request)
    filters = OverlapFilter(
        severity=severity,
        label=label,
        same_owner=same_owner,
        search=search,
        min_percentage=min_percentage,
        include_resolved=include_resolved,
        sort_by=sort_by,
        descending=descending,
        limit=limit,
    )
    try:
        records = await service.list_overlaps(filters)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    items = []
    for record in records:
        item = record.model_dump(mode="json")
        item["state"] = service.state_of(record.id).value
        item["overlap_area_display"] = format_area(record.overlap_area_m2)
        items.append(item)
    return items


@router.get("/api/overlaps/stats")
async def overlap_stats(request: Request, actor: Actor = require_roles()) -> dict[str, Any]:
    return _service(request).stats().model_dump(mode="json")


@router.post("/api/overlaps/{overlap_id}/archive")
async def archive_parcel(
    overlap_id: str,
    body: ResolveRequest,
    request: Request,
    actor: Actor = require_roles(),
) -> Any:
    try:
        result = await _service(request).archive(
            overlap_id, body.target_parcel_id, body.reason, actor_id=actor.actor_id
        )
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return _result_response(result)


@router.post("/api/overlaps/{overlap_id}/delete")
async def delete_parcel(
    overlap_id: str,
    body: ResolveRequest,
    request: Request,
    actor: Actor = require_roles(),
) -> Any:
    try:
        result = await _service(request).delete(
            overlap_id, body.target_parcel_id, body.reason, actor_id=actor.actor_id
        )
    except MissingReason as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return _result_response(result)


@router.post("/api/overlaps/{overlap_id}/ignore")
async def ignore_overlap(
    overlap_id: str,
    body: IgnoreRequest,
    request: Request,
    actor: Actor = require_roles(),
) -> Any:
    try:
        result = await _service(request).ignore(overlap_id, body.reason, actor_id=actor.actor_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else str(exc))
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return _result_response(result)


@router.get("/api/audit")
async def audit_history(
    request: Request,
    action_type: list[AuditActionType] | None = Query(default=None),
    limit: int | None = Query(default=100, ge=1),
    actor: Actor = require_roles(),
) -> list[dict[str, Any]]:
    try:
        entries = await _service(request).get_audit_history(action_types=action_type, limit=limit)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return [e.model_dump(mode="json") for e in entries]
