"""User (billable account) model."""

from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Member account holding a point balance.

    ``balance`` is a cached projection of the account's ``point_ledger``
    rows and is only written through ``services.points.apply_points_delta``.
    """

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="user", server_default="user")
    balance = Column(Integer, nullable=False, default=0, server_default="0")
    telegram_bot_token = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    distributions = relationship("Distribution", back_populates="owner", cascade="all, delete-orphan")
    point_entries = relationship("PointLedger", back_populates="user", cascade="all, delete-orphan")
    monitors = relationship("MonitorRecord", back_populates="user", cascade="all, delete-orphan")
    recharge_orders = relationship("RechargeOrder", back_populates="user", cascade="all, delete-orphan")
