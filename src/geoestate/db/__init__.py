"""Database layer for GeoEstate (SQLAlchemy 2.0 async)."""

from __future__ import annotations

from geoestate.db.base import Base
from geoestate.db.engine import DatabaseManager

__all__ = ["Base", "DatabaseManager"]
