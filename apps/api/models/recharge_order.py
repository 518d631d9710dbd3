"""RechargeOrder model for ECPay checkout orders."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class RechargeOrder(Base):
    """Point recharge order settled through an ECPay payment callback."""

    __tablename__ = "recharge_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_trade_no = Column(String, nullable=False, unique=True, index=True)
    account_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    points = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)
    item_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending | paid | failed
    ledger_id = Column(String, nullable=True)
    trade_no = Column(String, nullable=True)
    payment_type = Column(String, nullable=True)
    rtn_code = Column(String, nullable=True)
    rtn_msg = Column(String, nullable=True)
    raw_notify = Column(JSON, nullable=True)
    payment_info = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="recharge_orders")
