"""PointDedupe model guarding against double-billed downloads."""

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from database import Base


class PointDedupe(Base):
    """Marker row: this download unit was already billed in this minute bucket."""

    __tablename__ = "point_dedupe"

    account_id = Column(String, primary_key=True)
    distribution_id = Column(String, primary_key=True)
    platform = Column(String, primary_key=True)
    bucket_minute = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
