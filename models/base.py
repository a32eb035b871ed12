from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; every TIMESTAMP column in this schema is UTC without tz info."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
