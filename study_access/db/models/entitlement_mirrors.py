from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, SmallInteger, String, text
from sqlalchemy.orm import Mapped, mapped_column

from study_access.db.models.base import Base


class EntitlementMirror(Base):
    __tablename__ = "entitlement_mirrors"
    __table_args__ = (
        CheckConstraint("tier IN ('free','pro','premium')", name="ck_entitlement_mirrors_tier"),
        CheckConstraint(
            "source IN ('code','claim','trial','server')",
            name="ck_entitlement_mirrors_source",
        ),
        Index(
            "idx_entitlement_mirrors_trial_expiry",
            "expires_at",
            postgresql_where=text("source = 'trial' AND expired_processed_at IS NULL"),
        ),
    )

    user_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    trial_last_warning_days_remaining: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    trial_last_warning_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expired_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
