from sqlalchemy import Column, Text, TIMESTAMP, Integer, Index, CheckConstraint

from .base import Base, utcnow

class RateLimitBucket(Base):
    """One fixed-window counter per `rl:{action}:{scope}:{identifier}` key.

    Only ever written by `services.rate_limit_store.consume` and its cleanup.
    """
    __tablename__ = "rate_limit_buckets"

    bucket_key = Column(Text, primary_key=True)
    window_started_at = Column(TIMESTAMP, nullable=False)
    window_seconds = Column(Integer, nullable=False)
    request_count = Column(Integer, nullable=False)
    window_ends_at = Column(TIMESTAMP, nullable=False)
    expires_at = Column(TIMESTAMP, nullable=False)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("window_seconds > 0", name="rate_limit_buckets_window_seconds_positive"),
        CheckConstraint("request_count > 0", name="rate_limit_buckets_request_count_positive"),
        CheckConstraint("window_ends_at > window_started_at", name="rate_limit_buckets_window_order"),
        CheckConstraint("expires_at >= window_ends_at", name="rate_limit_buckets_expiry_after_window"),
        Index("rate_limit_buckets_expires_at_idx", "expires_at"),
    )
