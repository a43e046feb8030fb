"""create destination_sessions table

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 10:05:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "destination_sessions",
        sa.Column("account_key", sa.String(length=255), nullable=False, comment="Destination account identifier"),
        sa.Column(
            "cookies",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            comment="Browser cookie set as captured after login",
        ),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("account_key", name="pk_destination_sessions"),
    )


def downgrade() -> None:
    op.drop_table("destination_sessions")
