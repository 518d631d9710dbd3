"""Per-distribution daily download counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import insert_ignoring_conflicts
from models.download_stat import DownloadStat
from services.pricing import normalize_platform


@dataclass(frozen=True)
class DownloadTotals:
    today_apk: int = 0
    today_ipa: int = 0
    today_total: int = 0
    total_apk: int = 0
    total_ipa: int = 0
    total_total: int = 0


def _date_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    return current.astimezone(timezone.utc).strftime("%Y-%m-%d")


async def record_download(
    db: AsyncSession,
    distribution_id: str,
    platform: str,
    now: Optional[datetime] = None,
) -> DownloadTotals:
    """Count one download and return today's and all-time totals."""
    platform = normalize_platform(platform)
    today = _date_key(now)
    column = "apk_downloads" if platform == "apk" else "ipa_downloads"

    await db.execute(
        insert_ignoring_conflicts(db, DownloadStat.__table__).values(
            distribution_id=distribution_id,
            date=today,
            apk_downloads=0,
            ipa_downloads=0,
        )
    )
    await db.execute(
        update(DownloadStat)
        .where(DownloadStat.distribution_id == distribution_id, DownloadStat.date == today)
        .values(**{column: getattr(DownloadStat, column) + 1})
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    today_result = await db.execute(
        select(DownloadStat.apk_downloads, DownloadStat.ipa_downloads).where(
            DownloadStat.distribution_id == distribution_id,
            DownloadStat.date == today,
        )
    )
    today_row = today_result.first()
    totals_result = await db.execute(
        select(
            func.coalesce(func.sum(DownloadStat.apk_downloads), 0),
            func.coalesce(func.sum(DownloadStat.ipa_downloads), 0),
        ).where(DownloadStat.distribution_id == distribution_id)
    )
    total_apk, total_ipa = (int(value or 0) for value in totals_result.one())
    today_apk = int(today_row[0] or 0) if today_row else 0
    today_ipa = int(today_row[1] or 0) if today_row else 0

    return DownloadTotals(
        today_apk=today_apk,
        today_ipa=today_ipa,
        today_total=today_apk + today_ipa,
        total_apk=total_apk,
        total_ipa=total_ipa,
        total_total=total_apk + total_ipa,
    )


async def fetch_download_stats(
    db: AsyncSession,
    distribution_id: str,
    start_date: str,
    end_date: str,
) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(DownloadStat)
        .where(
            DownloadStat.distribution_id == distribution_id,
            DownloadStat.date >= start_date,
            DownloadStat.date <= end_date,
        )
        .order_by(DownloadStat.date.asc())
    )
    return [
        {
            "date": row.date,
            "apk_downloads": int(row.apk_downloads or 0),
            "ipa_downloads": int(row.ipa_downloads or 0),
        }
        for row in result.scalars().all()
    ]
