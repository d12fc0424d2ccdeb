"""Governance module for GeoEstate.

Provides the immutable, hash-chained audit log written by every automatic and
manual overlap resolution.
"""

from geoestate.governance.audit import AuditLogger, AuditRecord

__all__ = ["AuditLogger", "AuditRecord"]
