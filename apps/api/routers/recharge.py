"""Point recharge router: admin credit and ECPay checkout."""

from __future__ import annotations

import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import AliasChoices, BaseModel, Field, StrictFloat, StrictInt
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_admin_context, get_auth_context
from services.ecpay import (
    EcpayConfig,
    build_checkout_form,
    create_recharge_order,
    get_order,
    handle_payment_notify,
    list_orders,
    record_payment_info,
    serialize_order,
)
from services.errors import PointsError
from services.points import REASON_RECHARGE, apply_recharge

router = APIRouter()
logger = logging.getLogger(__name__)


class RechargeRequest(BaseModel):
    account_id: str = Field(min_length=1, validation_alias=AliasChoices("account_id", "accountId"))
    amount: Union[StrictInt, StrictFloat]
    memo: Optional[str] = Field(default=None, max_length=200)


class EcpayCheckoutRequest(BaseModel):
    amount: int = Field(ge=1, le=1_000_000)
    points: Optional[int] = Field(default=None, ge=1)
    item_name: Optional[str] = Field(default=None, max_length=200)


def get_ecpay_config() -> EcpayConfig:
    return EcpayConfig.from_settings()


@router.post("")
async def recharge_account(
    request: RechargeRequest,
    _admin: AuthContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db),
):
    """Credit points to an account and record the ledger row."""
    memo = (request.memo or "").strip() or None
    result = await apply_recharge(db, request.account_id, request.amount, REASON_RECHARGE, memo=memo)
    return {
        "ok": True,
        "amount": result.amount,
        "balance": result.balance,
        "ledger_id": result.ledger_id,
    }


@router.post("/ecpay")
async def create_ecpay_checkout(
    request: EcpayCheckoutRequest,
    auth: AuthContext = Depends(get_auth_context),
    config: EcpayConfig = Depends(get_ecpay_config),
    db: AsyncSession = Depends(get_db),
):
    order = await create_recharge_order(
        db,
        auth.user_id,
        request.amount,
        request.points,
        item_name=request.item_name,
    )
    return {
        "ok": True,
        "action": config.checkout_url,
        "form": build_checkout_form(order, config),
        "merchant_trade_no": order.merchant_trade_no,
        "points": order.points,
    }


@router.post("/ecpay/notify", response_class=PlainTextResponse)
async def ecpay_notify(
    request: Request,
    config: EcpayConfig = Depends(get_ecpay_config),
    db: AsyncSession = Depends(get_db),
):
    """ECPay server-to-server payment result. ECPay expects ``1|OK`` on success."""
    form = await request.form()
    payload = {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        outcome = await handle_payment_notify(db, payload, config)
    except PointsError as exc:
        logger.warning("ecpay notify rejected trade_no=%s: %s", payload.get("MerchantTradeNo"), exc.code)
        return PlainTextResponse(f"0|{exc.code}", status_code=exc.status_code)
    logger.info("ecpay notify handled trade_no=%s status=%s", outcome.merchant_trade_no, outcome.status)
    return PlainTextResponse("1|OK")


@router.post("/ecpay/payment-info", response_class=PlainTextResponse)
async def ecpay_payment_info(
    request: Request,
    config: EcpayConfig = Depends(get_ecpay_config),
    db: AsyncSession = Depends(get_db),
):
    """ECPay callback carrying ATM/CVS payment instructions for a pending order."""
    form = await request.form()
    payload = {key: value for key, value in form.items() if isinstance(value, str)}
    try:
        await record_payment_info(db, payload, config)
    except PointsError as exc:
        logger.warning("ecpay payment info rejected trade_no=%s: %s", payload.get("MerchantTradeNo"), exc.code)
        return PlainTextResponse(f"0|{exc.code}", status_code=exc.status_code)
    return PlainTextResponse("1|OK")


@router.get("/ecpay/orders")
async def ecpay_order_history(
    limit: int = Query(50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    orders = await list_orders(db, account_id=auth.user_id, limit=limit)
    return {"ok": True, "orders": [serialize_order(order) for order in orders]}


@router.get("/ecpay/orders/{trade_no}")
async def ecpay_order_status(
    trade_no: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    order = await get_order(db, trade_no)
    if order.account_id != auth.user_id:
        raise HTTPException(status_code=403, detail="Order belongs to another member.")
    return {"ok": True, "order": serialize_order(order)}
