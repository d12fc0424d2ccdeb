"""Error taxonomy for the overlap engine.

Scan-level errors (``InvalidGeometry``, ``IntersectionComputationFailed``) are
recovered by the scanner and reported as warnings. ``MissingReason`` rejects a
request before any mutation. ``AlreadyResolved`` is raised by stores and turned
into a non-fatal result by the resolution workflow. ``StoreUnavailable`` is
fatal for the current operation.
"""

from __future__ import annotations


class OverlapEngineError(Exception):
    """Base class for all overlap engine errors."""


class InvalidGeometry(OverlapEngineError):
    """A parcel boundary failed validity checks."""

    def __init__(self, message: str, parcel_id: str | None = None) -> None:
        super().__init__(message)
        self.parcel_id = parcel_id


class IntersectionComputationFailed(OverlapEngineError):
    """GEOS failed to compute an intersection for a pair of parcels."""


class AlreadyResolved(OverlapEngineError):
    """The target parcel has already been archived or deleted."""

    def __init__(self, parcel_id: str, state: str) -> None:
        super().__init__(f"Parcel {parcel_id!r} is already {state}.")
        self.parcel_id = parcel_id
        self.state = state


class MissingReason(OverlapEngineError):
    """A destructive action was submitted without a reason."""


class StoreUnavailable(OverlapEngineError):
    """The parcel or audit store cannot be reached."""
