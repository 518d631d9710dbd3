"""Admin member management router."""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, BaseModel, Field, StrictFloat, StrictInt
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_admin_context
from services.ecpay import list_orders, serialize_order
from services.errors import AccountNotFoundError, InvalidInputError
from services.points import update_member_points

router = APIRouter()

MEMBER_ROLES = ("user", "admin")


class MemberUpdateRequest(BaseModel):
    role: Optional[str] = None
    set_balance: Optional[Union[StrictInt, StrictFloat]] = Field(
        default=None, validation_alias=AliasChoices("setBalance", "set_balance")
    )
    adjust_balance: Optional[Union[StrictInt, StrictFloat]] = Field(
        default=None, validation_alias=AliasChoices("adjustBalance", "adjust_balance")
    )


def _serialize_member(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "balance": user.balance,
        "telegram_configured": bool(user.telegram_bot_token),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def _load_member(db: AsyncSession, member_id: str) -> User:
    result = await db.execute(
        select(User).where(User.id == member_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise AccountNotFoundError()
    return user


@router.get("/members")
async def list_members(
    q: Optional[str] = Query(None, max_length=200),
    limit: int = Query(100, ge=1, le=500),
    _admin: AuthContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db),
):
    """List members, newest first. ``q`` matches a substring of email or name."""
    query = select(User)
    term = (q or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.where(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    result = await db.execute(query.order_by(User.created_at.desc(), User.id).limit(limit))
    return {"ok": True, "members": [_serialize_member(user) for user in result.scalars().all()]}


@router.get("/members/{member_id}")
async def get_member(
    member_id: str,
    _admin: AuthContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db),
):
    return {"ok": True, "member": _serialize_member(await _load_member(db, member_id))}


@router.patch("/members/{member_id}")
async def update_member(
    member_id: str,
    request: MemberUpdateRequest,
    _admin: AuthContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db),
):
    """Change a member's role and/or balance.

    ``setBalance`` is applied before ``adjustBalance``; both land in the ledger
    as deltas so the balance stays equal to the sum of ledger rows.
    """
    await _load_member(db, member_id)
    if request.role is not None:
        role = request.role.strip().lower()
        if role not in MEMBER_ROLES:
            raise InvalidInputError("INVALID_ROLE")
        await db.execute(
            update(User)
            .where(User.id == member_id)
            .values(role=role)
            .execution_options(synchronize_session=False)
        )
    await update_member_points(
        db,
        member_id,
        set_balance=request.set_balance,
        adjust_balance=request.adjust_balance,
    )
    return {"ok": True, "member": _serialize_member(await _load_member(db, member_id))}


@router.get("/orders")
async def list_recharge_orders(
    status: Optional[str] = Query(None),
    account_id: Optional[str] = Query(None, alias="accountId"),
    limit: int = Query(100, ge=1, le=500),
    _admin: AuthContext = Depends(get_admin_context),
    db: AsyncSession = Depends(get_db),
):
    orders = await list_orders(db, account_id=account_id, status=status, limit=limit)
    return {
        "ok": True,
        "orders": [dict(serialize_order(order), account_id=order.account_id) for order in orders],
    }
