"""Baseline schema: access, settings, checkable entities, incidents and maintenance.

Revision ID: 001
Revises: None
Create Date: 2026-10-05
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _check_columns() -> list[sa.Column]:
    """Check configuration and last-probe state shared by every checkable entity."""
    return [
        sa.Column("status", sa.String(50), nullable=False, server_default="OPERATIONAL"),
        sa.Column("check_enabled", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("check_type", sa.String(50), nullable=False, server_default="NONE"),
        sa.Column("check_url", sa.String(500), nullable=True),
        sa.Column("check_interval_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("check_timeout_seconds", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("check_expected_status", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("check_failure_threshold", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("check_status", sa.String(50), nullable=False, server_default="OPERATIONAL"),
        sa.Column("last_check_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_check_success", sa.Boolean(), nullable=True),
        sa.Column("last_check_message", sa.String(1000), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ── api_keys ─────────────────────────────────────────────────────────────
    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("key_prefix", sa.String(20), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    # ── system_config ────────────────────────────────────────────────────────
    op.create_table(
        "system_config",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── status_platforms ─────────────────────────────────────────────────────
    op.create_table(
        "status_platforms",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="1"),
        *_check_columns(),
    )
    op.create_index("ix_status_platforms_slug", "status_platforms", ["slug"])
    op.create_index("ix_status_platforms_organization_id", "status_platforms", ["organization_id"])

    # ── status_apps ──────────────────────────────────────────────────────────
    op.create_table(
        "status_apps",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "platform_id", sa.String(36),
            sa.ForeignKey("status_platforms.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("organization_id", sa.String(36), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="1"),
        *_check_columns(),
    )
    op.create_index("ix_status_apps_platform_id", "status_apps", ["platform_id"])
    op.create_index("ix_status_apps_slug", "status_apps", ["slug"])
    op.create_index("ix_status_apps_organization_id", "status_apps", ["organization_id"])

    # ── status_components ────────────────────────────────────────────────────
    op.create_table(
        "status_components",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "app_id", sa.String(36),
            sa.ForeignKey("status_apps.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("group_name", sa.String(255), nullable=True),
        sa.Column("check_inherit_from_app", sa.Boolean(), nullable=False, server_default="1"),
        *_check_columns(),
    )
    op.create_index("ix_status_components_app_id", "status_components", ["app_id"])

    # ── status_incidents ─────────────────────────────────────────────────────
    op.create_table(
        "status_incidents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "app_id", sa.String(36),
            sa.ForeignKey("status_apps.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="INVESTIGATING"),
        sa.Column("severity", sa.String(20), nullable=False, server_default="MINOR"),
        sa.Column("impact", sa.String(50), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_status_incidents_app_id", "status_incidents", ["app_id"])
    op.create_index("ix_status_incidents_started_at", "status_incidents", ["started_at"])

    op.create_table(
        "status_incident_updates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "incident_id", sa.String(36),
            sa.ForeignKey("status_incidents.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("update_time", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_status_incident_updates_incident_id", "status_incident_updates", ["incident_id"])

    op.create_table(
        "status_incident_components",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "incident_id", sa.String(36),
            sa.ForeignKey("status_incidents.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "component_id", sa.String(36),
            sa.ForeignKey("status_components.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("component_status", sa.String(50), nullable=False, server_default="DEGRADED"),
    )
    op.create_index("ix_status_incident_components_incident_id", "status_incident_components", ["incident_id"])
    op.create_index("ix_status_incident_components_component_id", "status_incident_components", ["component_id"])

    # ── status_maintenance ───────────────────────────────────────────────────
    op.create_table(
        "status_maintenance",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "app_id", sa.String(36),
            sa.ForeignKey("status_apps.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="SCHEDULED"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_status_maintenance_app_id", "status_maintenance", ["app_id"])
    op.create_index("ix_status_maintenance_starts_at", "status_maintenance", ["starts_at"])

    op.create_table(
        "status_maintenance_components",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "maintenance_id", sa.String(36),
            sa.ForeignKey("status_maintenance.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "component_id", sa.String(36),
            sa.ForeignKey("status_components.id", ondelete="CASCADE"), nullable=False,
        ),
    )
    op.create_index(
        "ix_status_maintenance_components_maintenance_id", "status_maintenance_components", ["maintenance_id"]
    )
    op.create_index(
        "ix_status_maintenance_components_component_id", "status_maintenance_components", ["component_id"]
    )


def downgrade() -> None:
    op.drop_table("status_maintenance_components")
    op.drop_table("status_maintenance")
    op.drop_table("status_incident_components")
    op.drop_table("status_incident_updates")
    op.drop_table("status_incidents")
    op.drop_table("status_components")
    op.drop_table("status_apps")
    op.drop_table("status_platforms")
    op.drop_table("system_config")
    op.drop_table("api_keys")
