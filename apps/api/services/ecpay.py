"""ECPay point recharge: checkout signing, payment notify settlement, order lookup."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import hmac
import logging
import secrets
import time
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote_plus

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.recharge_order import RechargeOrder
from services.errors import InvalidInputError, OrderNotFoundError
from services.points import REASON_RECHARGE, apply_recharge, atomic_points_unit, get_balance, parse_point_amount

logger = logging.getLogger(__name__)

TAIPEI_TZ = timezone(timedelta(hours=8))
PAYMENT_METHODS = {"ALL", "Credit", "ATM", "CVS", "BARCODE", "WebATM"}
_URL_SAFE_CHARACTERS = "-_.!*()"
# Fields ECPay posts once an ATM virtual account or CVS payment code is issued.
PAYMENT_INFO_FIELDS = (
    "PaymentType",
    "TradeAmt",
    "ExpireDate",
    "BankCode",
    "vAccount",
    "PaymentNo",
    "Barcode1",
    "Barcode2",
    "Barcode3",
)
ORDER_STATUSES = ("pending", "paid", "failed")


@dataclass(frozen=True)
class EcpayConfig:
    merchant_id: str
    hash_key: str
    hash_iv: str
    checkout_url: str
    return_url: str
    client_back_url: str
    payment_method: str = "ALL"

    @classmethod
    def from_settings(cls) -> "EcpayConfig":
        method = settings.ECPAY_PAYMENT_METHOD
        return cls(
            merchant_id=settings.ECPAY_MERCHANT_ID,
            hash_key=settings.ECPAY_HASH_KEY,
            hash_iv=settings.ECPAY_HASH_IV,
            checkout_url=settings.ECPAY_CHECKOUT_URL,
            return_url=settings.ECPAY_RETURN_URL,
            client_back_url=settings.ECPAY_CLIENT_BACK_URL,
            payment_method=method if method in PAYMENT_METHODS else "ALL",
        )


@dataclass(frozen=True)
class NotifyOutcome:
    merchant_trade_no: str
    status: str  # credited | already_processed | failed
    ledger_id: Optional[str] = None
    balance: Optional[int] = None


def compute_check_mac_value(params: Mapping[str, Any], hash_key: str, hash_iv: str) -> str:
    """ECPay CheckMacValue (EncryptType=1, SHA256)."""
    fields = {key: value for key, value in params.items() if key != "CheckMacValue"}
    ordered = sorted(fields.items(), key=lambda item: item[0].lower())
    raw = f"HashKey={hash_key}&" + "".join(f"{key}={value}&" for key, value in ordered) + f"HashIV={hash_iv}"
    # quote_plus never escapes "~"; ECPay (.NET UrlEncode) expects %7e.
    encoded = quote_plus(raw, safe=_URL_SAFE_CHARACTERS).replace("~", "%7e").lower()
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest().upper()


def verify_check_mac_value(params: Mapping[str, Any], hash_key: str, hash_iv: str) -> bool:
    supplied = str(params.get("CheckMacValue") or "")
    if not supplied:
        return False
    expected = compute_check_mac_value(params, hash_key, hash_iv)
    return hmac.compare_digest(supplied.upper(), expected)


def generate_merchant_trade_no() -> str:
    # ECPay allows at most 20 alphanumeric characters.
    return f"PT{int(time.time())}{secrets.token_hex(4).upper()}"[:20]


def build_checkout_form(order: RechargeOrder, config: EcpayConfig, *, trade_desc: str = "Point recharge") -> Dict[str, str]:
    form = {
        "MerchantID": config.merchant_id,
        "MerchantTradeNo": order.merchant_trade_no,
        "MerchantTradeDate": datetime.now(TAIPEI_TZ).strftime("%Y/%m/%d %H:%M:%S"),
        "PaymentType": "aio",
        "TotalAmount": str(order.amount),
        "TradeDesc": trade_desc,
        "ItemName": order.item_name or f"Points {order.points}",
        "ReturnURL": config.return_url,
        "ClientBackURL": config.client_back_url,
        "ChoosePayment": config.payment_method,
        "EncryptType": "1",
        "CustomField1": order.account_id,
        "CustomField2": str(order.points),
        "CustomField3": str(order.amount),
    }
    form["CheckMacValue"] = compute_check_mac_value(form, config.hash_key, config.hash_iv)
    return form


async def create_recharge_order(
    db: AsyncSession,
    account_id: str,
    amount: Any,
    points: Any = None,
    *,
    item_name: Optional[str] = None,
) -> RechargeOrder:
    """Create a pending order. ``points`` defaults to one point per currency unit."""
    amount_value = parse_point_amount(amount)
    if amount_value <= 0:
        raise InvalidInputError("INVALID_AMOUNT")
    points_value = parse_point_amount(points) if points is not None else amount_value
    if points_value <= 0:
        raise InvalidInputError("INVALID_AMOUNT")
    await get_balance(db, account_id)

    order = RechargeOrder(
        merchant_trade_no=generate_merchant_trade_no(),
        account_id=account_id,
        points=points_value,
        amount=amount_value,
        item_name=(item_name or "").strip() or f"Points {points_value}",
        status="pending",
    )
    db.add(order)
    await db.commit()
    logger.info("ecpay order created trade_no=%s account=%s points=%s", order.merchant_trade_no, account_id, points_value)
    return order


async def get_order(db: AsyncSession, merchant_trade_no: str) -> RechargeOrder:
    result = await db.execute(
        select(RechargeOrder)
        .where(RechargeOrder.merchant_trade_no == merchant_trade_no)
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError()
    return order


async def handle_payment_notify(
    db: AsyncSession,
    payload: Mapping[str, Any],
    config: EcpayConfig,
) -> NotifyOutcome:
    """Settle an order from ECPay's server-to-server notify.

    Only the request that moves the order out of ``pending`` credits points,
    so replayed notifies are acknowledged without a second recharge.
    """
    if not verify_check_mac_value(payload, config.hash_key, config.hash_iv):
        raise InvalidInputError("INVALID_SIGNATURE")
    merchant_trade_no = str(payload.get("MerchantTradeNo") or "").strip()
    if not merchant_trade_no:
        raise InvalidInputError("MISSING_TRADE_NO")

    order = await get_order(db, merchant_trade_no)
    rtn_code = str(payload.get("RtnCode") or "")
    paid = rtn_code == "1"
    trade_amount = payload.get("TradeAmt")
    if paid and trade_amount is not None and str(trade_amount) != str(order.amount):
        logger.warning("ecpay amount mismatch trade_no=%s expected=%s got=%s", merchant_trade_no, order.amount, trade_amount)
        raise InvalidInputError("AMOUNT_MISMATCH")

    outcome = NotifyOutcome(merchant_trade_no=merchant_trade_no, status="already_processed", ledger_id=order.ledger_id)
    async with atomic_points_unit(db):
        transition = await db.execute(
            update(RechargeOrder)
            .where(RechargeOrder.id == order.id, RechargeOrder.status == "pending")
            .values(
                status="paid" if paid else "failed",
                trade_no=payload.get("TradeNo"),
                payment_type=payload.get("PaymentType"),
                rtn_code=rtn_code,
                rtn_msg=payload.get("RtnMsg"),
                raw_notify=dict(payload),
                paid_at=datetime.now(timezone.utc) if paid else None,
            )
            .execution_options(synchronize_session=False)
        )
        if transition.rowcount == 1 and paid:
            recharge = await apply_recharge(
                db,
                order.account_id,
                order.points,
                REASON_RECHARGE,
                memo=f"ecpay:{merchant_trade_no}",
                commit=False,
            )
            await db.execute(
                update(RechargeOrder)
                .where(RechargeOrder.id == order.id)
                .values(ledger_id=recharge.ledger_id)
                .execution_options(synchronize_session=False)
            )
            outcome = NotifyOutcome(
                merchant_trade_no=merchant_trade_no,
                status="credited",
                ledger_id=recharge.ledger_id,
                balance=recharge.balance,
            )
        elif transition.rowcount == 1:
            outcome = NotifyOutcome(merchant_trade_no=merchant_trade_no, status="failed")

    logger.info("ecpay notify trade_no=%s rtn_code=%s outcome=%s", merchant_trade_no, rtn_code, outcome.status)
    return outcome


async def list_orders(
    db: AsyncSession,
    *,
    account_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> List[RechargeOrder]:
    """Newest orders first, optionally scoped to one account and/or status."""
    if status is not None and status not in ORDER_STATUSES:
        raise InvalidInputError("INVALID_STATUS")
    query = select(RechargeOrder)
    if account_id is not None:
        query = query.where(RechargeOrder.account_id == account_id)
    if status is not None:
        query = query.where(RechargeOrder.status == status)
    query = query.order_by(RechargeOrder.created_at.desc(), RechargeOrder.merchant_trade_no.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def record_payment_info(
    db: AsyncSession,
    payload: Mapping[str, Any],
    config: EcpayConfig,
) -> RechargeOrder:
    """Store the ATM/CVS payment instructions ECPay issued for an order.

    The order stays ``pending``; only the payment notify settles it.
    """
    if not verify_check_mac_value(payload, config.hash_key, config.hash_iv):
        raise InvalidInputError("INVALID_SIGNATURE")
    merchant_trade_no = str(payload.get("MerchantTradeNo") or "").strip()
    if not merchant_trade_no:
        raise InvalidInputError("MISSING_TRADE_NO")

    order = await get_order(db, merchant_trade_no)
    info = {field: str(payload[field]) for field in PAYMENT_INFO_FIELDS if payload.get(field)}
    await db.execute(
        update(RechargeOrder)
        .where(RechargeOrder.id == order.id)
        .values(
            payment_info=info,
            payment_type=payload.get("PaymentType") or order.payment_type,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info(
        "ecpay payment info stored trade_no=%s payment_type=%s rtn_code=%s",
        merchant_trade_no,
        payload.get("PaymentType"),
        payload.get("RtnCode"),
    )
    return await get_order(db, merchant_trade_no)


def serialize_order(order: RechargeOrder) -> Dict[str, Any]:
    return {
        "merchant_trade_no": order.merchant_trade_no,
        "status": order.status,
        "points": order.points,
        "amount": order.amount,
        "ledger_id": order.ledger_id,
        "trade_no": order.trade_no,
        "payment_type": order.payment_type,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "payment_info": order.payment_info or None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
