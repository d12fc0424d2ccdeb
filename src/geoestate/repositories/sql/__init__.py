"""SQLAlchemy-backed repositories.

Driver-level connection failures are translated to
:class:`geoestate.core.errors.StoreUnavailable` so that callers never see
SQLAlchemy exceptions.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy.exc import InterfaceError, OperationalError

from geoestate.core.errors import StoreUnavailable


@contextmanager
def translate_store_errors(store: str) -> Iterator[None]:
    try:
        yield
    except (OperationalError, InterfaceError) as exc:
        raise StoreUnavailable(f"{store} store unavailable: {exc}") from exc


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
