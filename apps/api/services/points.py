"""Point balance store and recharge/adjustment applier.

``users.balance`` is a projection of the account's ledger rows. Every change
goes through :func:`apply_points_delta`, which pairs a single server-side
``balance = balance + delta`` UPDATE with the matching ledger append so that
``balance == SUM(point_ledger.delta)`` holds once the unit of work commits.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
import math
from typing import Any, AsyncIterator, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.point_ledger import PointLedger
from models.user import User
from services.errors import (
    AccountNotFoundError,
    InsufficientPointsError,
    InvalidInputError,
    StorageUnavailableError,
)
from services.ledger import append_ledger_entry

logger = logging.getLogger(__name__)

REASON_DOWNLOAD = "download"
REASON_RECHARGE = "recharge"
REASON_ADMIN_SET = "admin:set"
REASON_ADMIN_ADJUST = "admin:adjust"


@dataclass(frozen=True)
class RechargeResult:
    amount: int
    balance: int
    ledger_id: str


@asynccontextmanager
async def atomic_points_unit(db: AsyncSession, *, commit: bool = True) -> AsyncIterator[None]:
    """Commit the enclosed writes together or roll all of them back.

    Unexpected storage errors surface as ``StorageUnavailableError``.
    """
    try:
        yield
        if commit:
            await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Point storage failure: %s", exc)
        raise StorageUnavailableError() from exc
    except Exception:
        await db.rollback()
        raise


def parse_point_amount(value: Any) -> int:
    """Accept whole, finite numbers; reject booleans, fractions, NaN and infinities."""
    if isinstance(value, bool):
        raise InvalidInputError("INVALID_AMOUNT")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise InvalidInputError("INVALID_AMOUNT")


async def get_balance(db: AsyncSession, account_id: str, *, for_update: bool = False) -> int:
    stmt = select(User.balance).where(User.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    row = result.first()
    if row is None:
        raise AccountNotFoundError()
    return int(row[0] or 0)


async def _account_exists(db: AsyncSession, account_id: str) -> bool:
    result = await db.execute(select(User.id).where(User.id == account_id))
    return result.scalar_one_or_none() is not None


async def apply_points_delta(
    db: AsyncSession,
    account_id: str,
    delta: int,
    reason: str,
    *,
    memo: Optional[str] = None,
    distribution_id: Optional[str] = None,
    download_id: Optional[str] = None,
    bucket_minute: Optional[int] = None,
    platform: Optional[str] = None,
    require_funds: bool = False,
) -> Tuple[PointLedger, int]:
    """Move the balance by ``delta`` and append the matching ledger row.

    Nothing is committed here. With ``require_funds`` the UPDATE only matches
    when the resulting balance stays non-negative; when it does not match,
    no ledger row is written and ``InsufficientPointsError`` is raised.
    """
    delta = int(delta)
    stmt = update(User).where(User.id == account_id)
    if require_funds:
        stmt = stmt.where(User.balance + delta >= 0)
    stmt = stmt.values(balance=User.balance + delta).execution_options(synchronize_session=False)

    result = await db.execute(stmt)
    if result.rowcount != 1:
        if require_funds and await _account_exists(db, account_id):
            raise InsufficientPointsError()
        raise AccountNotFoundError()

    entry = await append_ledger_entry(
        db,
        account_id=account_id,
        delta=delta,
        reason=reason,
        memo=memo,
        distribution_id=distribution_id,
        download_id=download_id,
        bucket_minute=bucket_minute,
        platform=platform,
    )
    return entry, await get_balance(db, account_id)


async def apply_recharge(
    db: AsyncSession,
    account_id: str,
    amount: Any,
    reason: str = REASON_RECHARGE,
    *,
    memo: Optional[str] = None,
    commit: bool = True,
) -> RechargeResult:
    """Credit ``amount`` points. Each call appends its own ledger row."""
    value = parse_point_amount(amount)
    if value <= 0:
        raise InvalidInputError("INVALID_AMOUNT")
    if not account_id:
        raise AccountNotFoundError()

    logger.info("recharge start account=%s amount=%s reason=%s memo=%s", account_id, value, reason, memo)
    async with atomic_points_unit(db, commit=commit):
        entry, balance = await apply_points_delta(db, account_id, value, reason, memo=memo)
    logger.info("recharge completed account=%s ledger=%s balance=%s", account_id, entry.id, balance)
    return RechargeResult(amount=value, balance=balance, ledger_id=entry.id)


async def update_member_points(
    db: AsyncSession,
    account_id: str,
    *,
    set_balance: Any = None,
    adjust_balance: Any = None,
) -> int:
    """Admin balance edit: optional absolute set, then optional relative adjust.

    The set step records the computed difference from the current balance,
    never the absolute target.
    """
    target = parse_point_amount(set_balance) if set_balance is not None else None
    adjustment = parse_point_amount(adjust_balance) if adjust_balance is not None else None

    async with atomic_points_unit(db):
        balance = await get_balance(db, account_id, for_update=True)
        if target is not None and target != balance:
            _, balance = await apply_points_delta(db, account_id, target - balance, REASON_ADMIN_SET)
        if adjustment:
            _, balance = await apply_points_delta(db, account_id, adjustment, REASON_ADMIN_ADJUST)

    logger.info(
        "admin balance update account=%s set=%s adjust=%s balance=%s",
        account_id,
        target,
        adjustment,
        balance,
    )
    return balance


async def set_balance(db: AsyncSession, account_id: str, target: Any) -> int:
    return await update_member_points(db, account_id, set_balance=target)


async def adjust_balance(db: AsyncSession, account_id: str, delta: Any) -> int:
    return await update_member_points(db, account_id, adjust_balance=delta)
