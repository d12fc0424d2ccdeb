"""Shared test fixtures and helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from geoestate.core.config import AuditConfig, OverlapConfig
from geoestate.core.errors import StoreUnavailable
from geoestate.core.types import ParcelStatus
from geoestate.geometry.kernel import GeometryKernel
from geoestate.geometry.models import Polygon
from geoestate.governance.audit import AuditLogger
from geoestate.parcels.models import Parcel
from geoestate.parcels.store import ParcelStore


def square(x: float, y: float, size: float = 100.0) -> Polygon:
    """Axis-aligned square in planar meter coordinates, implicitly closed."""
    return Polygon(exterior=((x, y), (x + size, y), (x + size, y + size), (x, y + size)))


def make_parcel(
    parcel_id: str,
    x: float = 0.0,
    y: float = 0.0,
    size: float = 100.0,
    owner_id: str = "owner-1",
    status: ParcelStatus = ParcelStatus.PUBLISHED,
    **kwargs,
) -> Parcel:
    return Parcel(
        id=parcel_id,
        owner_id=owner_id,
        status=status,
        boundary=square(x, y, size),
        title=kwargs.pop("title", f"Plot {parcel_id}"),
        **kwargs,
    )


class FailingAudit:
    """Audit log that rejects writes while ``failing`` is set."""

    def __init__(self, inner: AuditLogger) -> None:
        self.inner = inner
        self.failing = True

    def log(self, entry):
        if self.failing:
            raise StoreUnavailable("audit log unreachable")
        return self.inner.log(entry)

    def query(self, *args, **kwargs):
        return self.inner.query(*args, **kwargs)


@pytest.fixture()
def kernel() -> GeometryKernel:
    """Kernel for planar meter coordinates (no projection)."""
    return GeometryKernel(source_crs=None)


@pytest.fixture()
def overlap_config() -> OverlapConfig:
    return OverlapConfig(source_crs=None)


@pytest.fixture()
def audit_logger(tmp_path: Path) -> AuditLogger:
    return AuditLogger(config=AuditConfig(log_dir=str(tmp_path / "audit")))


@pytest.fixture()
def store() -> ParcelStore:
    return ParcelStore()
