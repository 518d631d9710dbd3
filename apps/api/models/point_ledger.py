"""PointLedger model for append-only point balance history."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class PointLedger(Base):
    """Immutable point ledger entry. Positive delta credits, negative debits."""

    __tablename__ = "point_ledger"
    __table_args__ = (
        Index("ix_point_ledger_account_created", "account_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    memo = Column(String, nullable=True)
    distribution_id = Column(String, nullable=True, index=True)
    download_id = Column(String, nullable=True)
    bucket_minute = Column(Integer, nullable=True)
    platform = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="point_entries")
