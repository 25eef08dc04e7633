"""
SQLAlchemy ORM models for persistence.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String

from db import Base


class PostcardUsageORM(Base):
    """One row per successfully delivered postcard (creators never get rows)."""

    __tablename__ = "postcard_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_email = Column(String, nullable=False, index=True)
    # naive UTC
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_postcard_usage_sender_created", "sender_email", "created_at"),
    )
