"""Add status_uptime_history table for daily uptime rollups.

Revision ID: 002
Revises: 001
Create Date: 2026-10-09
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "status_uptime_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "app_id", sa.String(36),
            sa.ForeignKey("status_apps.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column(
            "component_id", sa.String(36),
            sa.ForeignKey("status_components.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column(
            "platform_id", sa.String(36),
            sa.ForeignKey("status_platforms.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("record_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="OPERATIONAL"),
        sa.Column("uptime_percentage", sa.Numeric(6, 3), nullable=False, server_default="100.000"),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default="1440"),
        sa.Column("operational_minutes", sa.Integer(), nullable=False, server_default="1440"),
        sa.Column("degraded_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outage_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("maintenance_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("incident_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("maintenance_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "(CASE WHEN app_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN component_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN platform_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="ck_uptime_history_single_scope",
        ),
    )
    op.create_index("ix_status_uptime_history_record_date", "status_uptime_history", ["record_date"])

    # One row per scope and day; partial so NULL scope columns never collide
    for scope in ("app", "component", "platform"):
        op.create_index(
            f"uq_uptime_history_{scope}_date",
            "status_uptime_history",
            [f"{scope}_id", "record_date"],
            unique=True,
            sqlite_where=sa.text(f"{scope}_id IS NOT NULL"),
            postgresql_where=sa.text(f"{scope}_id IS NOT NULL"),
        )


def downgrade() -> None:
    for scope in ("app", "component", "platform"):
        op.drop_index(f"uq_uptime_history_{scope}_date", table_name="status_uptime_history")
    op.drop_index("ix_status_uptime_history_record_date", table_name="status_uptime_history")
    op.drop_table("status_uptime_history")
