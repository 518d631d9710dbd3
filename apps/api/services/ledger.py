"""Append-only point ledger helpers."""

from __future__ import annotations

from typing import List, Optional
import uuid

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.point_ledger import PointLedger


async def append_ledger_entry(
    db: AsyncSession,
    *,
    account_id: str,
    delta: int,
    reason: str,
    memo: Optional[str] = None,
    distribution_id: Optional[str] = None,
    download_id: Optional[str] = None,
    bucket_minute: Optional[int] = None,
    platform: Optional[str] = None,
) -> PointLedger:
    """Stage a ledger row in the current transaction. The caller commits."""
    entry = PointLedger(
        id=str(uuid.uuid4()),
        account_id=account_id,
        delta=int(delta),
        reason=reason,
        memo=memo,
        distribution_id=distribution_id,
        download_id=download_id,
        bucket_minute=bucket_minute,
        platform=platform,
    )
    db.add(entry)
    await db.flush()
    return entry


async def sum_ledger_deltas(db: AsyncSession, account_id: str) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(PointLedger.delta), 0)).where(PointLedger.account_id == account_id)
    )
    return int(result.scalar() or 0)


async def list_ledger_entries(db: AsyncSession, account_id: str, limit: int = 30) -> List[PointLedger]:
    result = await db.execute(
        select(PointLedger)
        .where(PointLedger.account_id == account_id)
        .order_by(PointLedger.created_at.desc(), PointLedger.id)
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())


def serialize_ledger_entry(entry: PointLedger) -> dict:
    return {
        "id": entry.id,
        "delta": entry.delta,
        "reason": entry.reason,
        "memo": entry.memo,
        "distribution_id": entry.distribution_id,
        "platform": entry.platform,
        "bucket_minute": entry.bucket_minute,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
