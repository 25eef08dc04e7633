"""
Postcard usage repository backed by SQLAlchemy.
"""
from datetime import datetime
from sqlalchemy import func
from sqlalchemy.orm import Session

from repositories.models import PostcardUsageORM


class UsageRepository:
    """Counts and records postcard sends per sender email."""

    def count_between(self, session: Session, sender_email: str, start: datetime, end: datetime) -> int:
        """Count rows with start <= created_at < end (naive UTC bounds)."""
        return (
            session.query(func.count(PostcardUsageORM.id))
            .filter(
                PostcardUsageORM.sender_email == sender_email,
                PostcardUsageORM.created_at >= start,
                PostcardUsageORM.created_at < end,
            )
            .scalar()
            or 0
        )

    def add(self, session: Session, sender_email: str, created_at: datetime) -> None:
        session.add(PostcardUsageORM(sender_email=sender_email, created_at=created_at))
        session.commit()

