"""access_core_schema

Revision ID: 5c1e2a7b9d30
Revises:
Create Date: 2026-09-02 10:20:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2a7b9d30"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("push_token", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "idx_users_push_token",
        "users",
        ["id"],
        postgresql_where=sa.text("push_token IS NOT NULL"),
    )

    op.create_table(
        "access_codes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("uses_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grant_days", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tier IN ('pro','premium')", name="ck_access_codes_tier"),
        sa.CheckConstraint("max_uses >= 1", name="ck_access_codes_max_uses_positive"),
        sa.CheckConstraint("uses_count >= 0", name="ck_access_codes_uses_count_non_negative"),
        sa.CheckConstraint("uses_count <= max_uses", name="ck_access_codes_uses_count_le_max"),
        sa.CheckConstraint(
            "grant_days IS NULL OR grant_days > 0",
            name="ck_access_codes_grant_days_positive",
        ),
        sa.CheckConstraint("char_length(code) >= 8", name="ck_access_codes_code_length"),
        sa.UniqueConstraint("code", name="access_codes_code_key"),
    )
    op.create_index("idx_access_codes_expires_at", "access_codes", ["expires_at"])
    op.create_index("idx_access_codes_note", "access_codes", ["note"])

    op.create_table(
        "access_code_redemptions",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tier IN ('pro','premium')", name="ck_access_code_redemptions_tier"),
        sa.ForeignKeyConstraint(["code_id"], ["access_codes.id"]),
        sa.UniqueConstraint("code_id", "user_id", name="uq_access_code_redemptions_code_user"),
    )
    op.create_index("idx_access_code_redemptions_user", "access_code_redemptions", ["user_id"])

    op.create_table(
        "parent_claims",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("claim_code", sa.String(32), nullable=False),
        sa.Column("beneficiary_email", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'created'")),
        sa.Column("paid_expires_at_ms", sa.BigInteger(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_by", sa.String(64), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checkout_session_id", sa.String(255), nullable=True),
        sa.Column("payment_subscription_id", sa.String(255), nullable=True),
        sa.Column("livemode", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('created','paid','claimed')", name="ck_parent_claims_status"),
        sa.CheckConstraint(
            "status = 'created' OR paid_at IS NOT NULL",
            name="ck_parent_claims_paid_at_after_payment",
        ),
        sa.ForeignKeyConstraint(["claimed_by"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("claim_code", name="parent_claims_claim_code_key"),
        sa.UniqueConstraint("checkout_session_id", name="parent_claims_checkout_session_id_key"),
    )
    op.create_index("idx_parent_claims_claimed_by", "parent_claims", ["claimed_by"])
    op.create_index("idx_parent_claims_subscription", "parent_claims", ["payment_subscription_id"])
    op.create_index("idx_parent_claims_beneficiary_email", "parent_claims", ["beneficiary_email"])

    op.create_table(
        "entitlement_mirrors",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("trial_last_warning_days_remaining", sa.SmallInteger(), nullable=True),
        sa.Column("trial_last_warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tier IN ('free','pro','premium')", name="ck_entitlement_mirrors_tier"),
        sa.CheckConstraint(
            "source IN ('code','claim','trial','server')",
            name="ck_entitlement_mirrors_source",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(
        "idx_entitlement_mirrors_trial_expiry",
        "entitlement_mirrors",
        ["expires_at"],
        postgresql_where=sa.text("source = 'trial' AND expired_processed_at IS NULL"),
    )

    op.create_table(
        "entitlement_overrides",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("tier", sa.String(16), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("granted_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("tier IN ('pro','premium')", name="ck_entitlement_overrides_tier"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "promo_grants",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("promo_key", sa.String(64), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("environment", sa.String(32), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "raw_event",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "promo_key", name="uq_promo_grants_user_promo"),
    )
    op.create_index("idx_promo_grants_event_id", "promo_grants", ["event_id"])

    op.create_table(
        "side_effect_claims",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("subject_key", sa.String(128), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending','sending','sent','failed')",
            name="ck_side_effect_claims_status",
        ),
        sa.CheckConstraint(
            "(status = 'sent') = (sent_at IS NOT NULL)",
            name="ck_side_effect_claims_sent_at_consistency",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("kind", "subject_key", name="uq_side_effect_claims_kind_subject"),
    )
    op.create_index("idx_side_effect_claims_user", "side_effect_claims", ["user_id"])
    op.create_index(
        "idx_side_effect_claims_failed",
        "side_effect_claims",
        ["kind", "updated_at"],
        postgresql_where=sa.text("status = 'failed'"),
    )


def downgrade() -> None:
    op.drop_index("idx_side_effect_claims_failed", table_name="side_effect_claims")
    op.drop_index("idx_side_effect_claims_user", table_name="side_effect_claims")
    op.drop_table("side_effect_claims")

    op.drop_index("idx_promo_grants_event_id", table_name="promo_grants")
    op.drop_table("promo_grants")

    op.drop_table("entitlement_overrides")

    op.drop_index("idx_entitlement_mirrors_trial_expiry", table_name="entitlement_mirrors")
    op.drop_table("entitlement_mirrors")

    op.drop_index("idx_parent_claims_beneficiary_email", table_name="parent_claims")
    op.drop_index("idx_parent_claims_subscription", table_name="parent_claims")
    op.drop_index("idx_parent_claims_claimed_by", table_name="parent_claims")
    op.drop_table("parent_claims")

    op.drop_index("idx_access_code_redemptions_user", table_name="access_code_redemptions")
    op.drop_table("access_code_redemptions")

    op.drop_index("idx_access_codes_note", table_name="access_codes")
    op.drop_index("idx_access_codes_expires_at", table_name="access_codes")
    op.drop_table("access_codes")

    op.drop_index("idx_users_push_token", table_name="users")
    op.drop_table("users")
