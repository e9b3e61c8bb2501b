"""SQLAlchemy ORM models for the LLM gateway."""

from datetime import date, datetime
from sqlalchemy import String, Date, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column
from .database import Base


class UsageRecord(Base):
    """Persisted usage counters, one row per gateway instance.

    Holds counters only; request and response content is never stored.
    """

    __tablename__ = "usage_state"

    gateway_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tokens_used_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    last_reset_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_requests: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )
