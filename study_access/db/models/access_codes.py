from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from study_access.db.models.base import Base


class AccessCode(Base):
    __tablename__ = "access_codes"
    __table_args__ = (
        CheckConstraint("tier IN ('pro','premium')", name="ck_access_codes_tier"),
        CheckConstraint("max_uses >= 1", name="ck_access_codes_max_uses_positive"),
        CheckConstraint("uses_count >= 0", name="ck_access_codes_uses_count_non_negative"),
        CheckConstraint("uses_count <= max_uses", name="ck_access_codes_uses_count_le_max"),
        CheckConstraint(
            "grant_days IS NULL OR grant_days > 0",
            name="ck_access_codes_grant_days_positive",
        ),
        CheckConstraint("char_length(code) >= 8", name="ck_access_codes_code_length"),
        Index("idx_access_codes_expires_at", "expires_at"),
        Index("idx_access_codes_note", "note"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    uses_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    grant_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
