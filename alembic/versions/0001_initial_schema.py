"""Initial schema: parcels, owners, deleted parcels and audit events.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Owners --
    op.create_table(
        "owners",
        sa.Column("owner_id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(256), server_default=""),
        sa.Column("email", sa.String(256), server_default=""),
        sa.Column("phone", sa.String(64), server_default=""),
    )

    # -- Parcels --
    op.create_table(
        "parcels",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), server_default="published"),
        sa.Column("boundary", sa.JSON, nullable=False),
        sa.Column("area_m2", sa.Float, nullable=True),
        sa.Column("title", sa.Text, server_default=""),
        sa.Column("region", sa.String(128), nullable=True),
        sa.Column("district", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_parcels_status", "parcels", ["status"])
    op.create_index("ix_parcels_owner_id", "parcels", ["owner_id"])

    # -- Deleted parcel tombstones --
    op.create_table(
        "deleted_parcels",
        sa.Column("parcel_id", sa.String(64), primary_key=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
    )

    # -- Audit Events --
    op.create_table(
        "audit_events",
        sa.Column("entry_id", sa.String(64), primary_key=True),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_type", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("subject_ids", sa.JSON, nullable=False),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("previous_hash", sa.String(128), nullable=False),
        sa.Column("entry_hash", sa.String(128), nullable=False),
    )
    op.create_index("ix_audit_events_action_type", "audit_events", ["action_type"])
    op.create_index("ix_audit_events_seq", "audit_events", ["seq"], unique=True)


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("deleted_parcels")
    op.drop_table("parcels")
    op.drop_table("owners")
