"""Per-scope token counter."""

from __future__ import annotations

from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from clinicq.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCounter(Base):
    """Highest token handed out for one (clinic, date) scope.

    The row doubles as the scope lock: allocation and check-in both hold its
    row lock until their transaction ends. It is never decremented.
    """

    __tablename__ = "token_counters"

    clinic_id: Mapped[str] = mapped_column(
        ForeignKey("clinics.id"),
        primary_key=True,
    )
    appointment_date: Mapped[date] = mapped_column(Date, primary_key=True)
    last_token: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )
