"""Download billing and points summary router."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import async_session_maker, get_db
from models.distribution import Distribution
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.billing import DownloadBillingService, build_billing_service
from services.download_stats import fetch_download_stats
from services.ledger import list_ledger_entries, serialize_ledger_entry
from services.points import get_balance
from services.pricing import cost_table

router = APIRouter()


class BillDownloadRequest(BaseModel):
    account_id: str = Field(min_length=1, validation_alias=AliasChoices("account_id", "accountId"))
    distribution_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("distribution_id", "distributionId", "link_id"),
    )
    platform: str = Field(min_length=1)


def get_billing_service(request: Request) -> DownloadBillingService:
    service = getattr(request.app.state, "billing_service", None)
    if service is None:
        service = build_billing_service(async_session_maker)
        request.app.state.billing_service = service
    return service


@router.post("/bill")
async def bill_download(
    request: BillDownloadRequest,
    _rate_limit: None = Depends(rate_limit("billing_bill", limit=settings.BILLING_RATE_LIMIT_PER_MINUTE, window_seconds=60)),
    service: DownloadBillingService = Depends(get_billing_service),
    db: AsyncSession = Depends(get_db),
):
    """Charge the distribution owner's account for one download."""
    result = await service.bill_download(db, request.account_id, request.distribution_id, request.platform)
    return result.to_response()


@router.get("/points")
async def points_summary(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    balance = await get_balance(db, auth.user_id)
    entries = await list_ledger_entries(db, auth.user_id, limit=settings.POINT_SUMMARY_RECENT_ENTRIES)
    return {
        "balance": balance,
        "costs": cost_table(),
        "recent_entries": [serialize_ledger_entry(entry) for entry in entries],
    }


@router.get("/distributions/{distribution_id}/downloads")
async def distribution_downloads(
    distribution_id: str,
    start_date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    end_date: Optional[str] = Query(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Daily download counts for a distribution owned by the caller (last 30 days by default)."""
    result = await db.execute(select(Distribution.owner_id).where(Distribution.id == distribution_id))
    owner_id = result.scalar_one_or_none()
    if owner_id is None:
        raise HTTPException(status_code=404, detail="Distribution not found.")
    if owner_id != auth.user_id:
        raise HTTPException(status_code=403, detail="Distribution belongs to another member.")

    today = datetime.now(timezone.utc).date()
    end = end_date or today.isoformat()
    start = start_date or (today - timedelta(days=29)).isoformat()
    return {
        "distribution_id": distribution_id,
        "start_date": start,
        "end_date": end,
        "days": await fetch_download_stats(db, distribution_id, start, end),
    }
