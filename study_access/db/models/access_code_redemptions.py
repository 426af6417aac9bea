from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from study_access.db.models.base import Base


class AccessCodeRedemption(Base):
    __tablename__ = "access_code_redemptions"
    __table_args__ = (
        CheckConstraint("tier IN ('pro','premium')", name="ck_access_code_redemptions_tier"),
        UniqueConstraint("code_id", "user_id", name="uq_access_code_redemptions_code_user"),
        Index("idx_access_code_redemptions_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("access_codes.id"), nullable=False)
    # no FK: redemption history outlives deleted accounts
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
