"""Per-user rate and budget counters."""

from sqlalchemy import Column, String, Integer, Boolean, Numeric, Index
from ..database import Base, UTCDateTime, utcnow


class RateLimitRecord(Base):
    """
    Request and spend counters for one user.

    Both windows are rolled lazily: every guard call compares the stored
    boundary with the current time. ``version`` guards read-modify-write
    cycles from concurrent workers (optimistic concurrency).

    ``budget_blocked`` is set on the first budget denial and holds until the
    next daily reset, so a denied user is not partially admitted later that day.
    """

    __tablename__ = "rate_limits"

    user_id = Column(String(50), primary_key=True)

    requests_this_minute = Column(Integer, nullable=False, default=0)
    minute_window_start = Column(UTCDateTime, nullable=False, default=utcnow)

    daily_cost_usd = Column(Numeric(10, 6, asdecimal=False), nullable=False, default=0.0)
    daily_reset_at = Column(UTCDateTime, nullable=False)
    budget_blocked = Column(Boolean, nullable=False, default=False)
    # Estimates of admitted calls not yet booked into daily_cost_usd.
    reserved_cost_usd = Column(Numeric(10, 6, asdecimal=False), nullable=False, default=0.0)

    version = Column(Integer, nullable=False, default=1)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_rate_limits_reset", "daily_reset_at"),
    )
