"""email_delivery_tracking

Revision ID: 8d4f2b6a1c57
Revises: 5c1e2a7b9d30
Create Date: 2026-10-17 09:30:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "8d4f2b6a1c57"
down_revision: str | None = "5c1e2a7b9d30"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("side_effect_claims", sa.Column("delivery_status", sa.String(16), nullable=True))
    op.add_column(
        "side_effect_claims",
        sa.Column("delivery_event_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column("side_effect_claims", sa.Column("delivery_error", sa.Text(), nullable=True))
    op.add_column(
        "side_effect_claims",
        sa.Column("provider_message_id", sa.String(128), nullable=True),
    )

    op.drop_index("idx_side_effect_claims_user", table_name="side_effect_claims")
    op.create_index(
        "idx_side_effect_claims_user_kind_created",
        "side_effect_claims",
        ["user_id", "kind", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_side_effect_claims_user_kind_created", table_name="side_effect_claims")
    op.create_index("idx_side_effect_claims_user", "side_effect_claims", ["user_id"])

    op.drop_column("side_effect_claims", "provider_message_id")
    op.drop_column("side_effect_claims", "delivery_error")
    op.drop_column("side_effect_claims", "delivery_event_at")
    op.drop_column("side_effect_claims", "delivery_status")
