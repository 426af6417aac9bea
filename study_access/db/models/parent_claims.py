from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BOOLEAN,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from study_access.db.models.base import Base


class ParentClaim(Base):
    __tablename__ = "parent_claims"
    __table_args__ = (
        CheckConstraint(
            "status IN ('created','paid','claimed')",
            name="ck_parent_claims_status",
        ),
        CheckConstraint(
            "status = 'created' OR paid_at IS NOT NULL",
            name="ck_parent_claims_paid_at_after_payment",
        ),
        Index("idx_parent_claims_claimed_by", "claimed_by"),
        Index("idx_parent_claims_subscription", "payment_subscription_id"),
        Index("idx_parent_claims_beneficiary_email", "beneficiary_email"),
    )

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    claim_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    beneficiary_email: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'created'"))
    paid_expires_at_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    payment_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    livemode: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
