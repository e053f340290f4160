"""SQLAlchemy ORM models -- failure store schema."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase


def _utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserFailureModel(Base):
    __tablename__ = "user_failures"

    user_id = Column(String(255), primary_key=True)
    failure_count = Column(Integer, nullable=False, default=0)
    # NULL until the count first reaches the lockout threshold
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_failure = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_user_failures_locked_until", "locked_until"),
        Index("idx_user_failures_last_failure", "last_failure"),
    )
