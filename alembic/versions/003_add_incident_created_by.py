"""Add created_by to status_incidents so health-check incidents can be told apart.

Revision ID: 003
Revises: 002
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("status_incidents") as batch_op:
        batch_op.add_column(sa.Column("created_by", sa.String(100), nullable=True))
        batch_op.create_index("ix_status_incidents_created_by", ["created_by"])


def downgrade() -> None:
    with op.batch_alter_table("status_incidents") as batch_op:
        batch_op.drop_index("ix_status_incidents_created_by")
        batch_op.drop_column("created_by")
