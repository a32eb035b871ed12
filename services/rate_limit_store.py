# services/rate_limit_store.py
"""
Durable fixed-window counters.

`consume` is a single INSERT .. ON CONFLICT DO UPDATE .. RETURNING statement: the
conflict branch either increments the stored counter (same aligned window) or
resets it to 1 (stale window), so concurrent callers on one key are serialized by
the database and never lose an increment.
"""
import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, case, delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from db import SessionLocal
from models import RateLimitBucket, utcnow

logger = logging.getLogger(__name__)

MIN_WINDOW_SECONDS = 1
MAX_WINDOW_SECONDS = 86_400
MIN_REQUESTS = 1
MAX_REQUESTS = 100_000
MIN_EXPIRY_GRACE_SECONDS = 600

CLEANUP_PROBABILITY = 0.02
INLINE_CLEANUP_ROWS = 200
MAX_CLEANUP_ROWS = 5_000

_EPOCH = datetime(1970, 1, 1)
_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int
    window_ends_at: datetime


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def _as_naive_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def window_bounds(now: datetime, window_seconds: int):
    """Aligned [start, end) of the fixed window containing `now`."""
    epoch = (now - _EPOCH).total_seconds()
    start = _EPOCH + timedelta(seconds=math.floor(epoch / window_seconds) * window_seconds)
    return start, start + timedelta(seconds=window_seconds)


def _upsert(db, table, values: dict):
    insert = _INSERTS.get(db.get_bind().dialect.name)
    if insert is None:
        raise RuntimeError(f"rate limit store does not support {db.get_bind().dialect.name}")

    stmt = insert(table).values(**values)
    same_window = and_(
        table.c.window_started_at == stmt.excluded.window_started_at,
        table.c.window_seconds == stmt.excluded.window_seconds,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.bucket_key],
        set_={
            "request_count": case((same_window, table.c.request_count + 1), else_=1),
            "window_started_at": stmt.excluded.window_started_at,
            "window_seconds": stmt.excluded.window_seconds,
            "window_ends_at": stmt.excluded.window_ends_at,
            "expires_at": stmt.excluded.expires_at,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    return stmt.returning(table.c.request_count, table.c.window_ends_at)


def consume(bucket_key: str, max_requests: int, window_seconds: int, *, now: Optional[datetime] = None) -> ConsumeResult:
    """Count one request against `bucket_key` and report whether it fits the window."""
    if not bucket_key or not bucket_key.strip():
        raise ValueError("bucket_key is required")

    window_seconds = _clamp(window_seconds, MIN_WINDOW_SECONDS, MAX_WINDOW_SECONDS)
    max_requests = _clamp(max_requests, MIN_REQUESTS, MAX_REQUESTS)
    now = _as_naive_utc(now)
    started_at, ends_at = window_bounds(now, window_seconds)

    table = RateLimitBucket.__table__
    with SessionLocal() as db:
        row = db.execute(
            _upsert(db, table, {
                "bucket_key": bucket_key,
                "window_started_at": started_at,
                "window_seconds": window_seconds,
                "request_count": 1,
                "window_ends_at": ends_at,
                "expires_at": ends_at + timedelta(seconds=max(window_seconds, MIN_EXPIRY_GRACE_SECONDS)),
                "updated_at": now,
            })
        ).one()
        db.commit()

    request_count, window_ends_at = row
    allowed = request_count <= max_requests
    retry_after = 0
    if not allowed:
        retry_after = max(1, math.ceil((window_ends_at - now).total_seconds()))

    if random.random() < CLEANUP_PROBABILITY:
        try:
            cleanup_expired(INLINE_CLEANUP_ROWS, now=now)
        except Exception:
            # the consume already committed; expired rows are swept on a later call
            logger.exception("Inline rate limit cleanup failed")

    return ConsumeResult(
        allowed=allowed,
        remaining=max(max_requests - request_count, 0),
        retry_after_seconds=retry_after,
        window_ends_at=window_ends_at,
    )


def cleanup_expired(max_rows: int = 500, *, now: Optional[datetime] = None) -> int:
    """Delete at most `max_rows` expired buckets, oldest first. Returns the number deleted."""
    max_rows = _clamp(max_rows, 1, MAX_CLEANUP_ROWS)
    now = _as_naive_utc(now)
    table = RateLimitBucket.__table__

    doomed = (
        select(table.c.bucket_key)
        .where(table.c.expires_at < now)
        .order_by(table.c.expires_at)
        .limit(max_rows)
    )
    with SessionLocal() as db:
        result = db.execute(delete(table).where(table.c.bucket_key.in_(doomed)))
        db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Removed %d expired rate limit buckets", deleted)
    return deleted
