"""MonitorRecord model for Telegram threshold alerts."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class MonitorRecord(Base):
    """Threshold monitor on a member's point balance or a distribution's downloads."""

    __tablename__ = "monitor_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String, nullable=False)  # points | downloads
    threshold = Column(Integer, nullable=False)
    metric = Column(String, nullable=True)  # total | apk | ipa (downloads only)
    distribution_code = Column(String, nullable=True)
    target = Column(String, nullable=False)
    message = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="monitors")
