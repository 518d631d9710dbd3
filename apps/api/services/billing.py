"""Download billing orchestrator.

Bills one download of a distribution build to an account:

    PENDING -> dedupe -> DEDUPED | balance check -> INSUFFICIENT | DEBIT -> COMMITTED

The dedupe marker, the debit and its ledger row share one transaction, so a
retried or double-clicked download is charged at most once per minute bucket.
An attempt rejected for insufficient points still commits its dedupe marker.
Monitor notifications and download counting run after commit as detached
tasks and never affect the billing outcome.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

import redis.asyncio as redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from services.dedupe import AcquireResult, CacheDedupeGuard, DedupeGuard, DedupeKey, TableDedupeGuard
from services.distributions import DistributionDirectory, DistributionRef
from services.download_stats import record_download
from services.errors import (
    AccountNotFoundError,
    DistributionNotFoundError,
    InsufficientPointsError,
    InvalidInputError,
    PointsError,
    StorageUnavailableError,
)
from services.monitor import MonitorNotifier, TelegramMonitorNotifier
from services.points import REASON_DOWNLOAD, apply_points_delta, get_balance
from services.pricing import normalize_platform, resolve_cost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingResult:
    cost: int
    deduped: bool = False
    balance: Optional[int] = None
    ledger_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": True, "cost": self.cost}
        if self.deduped:
            payload["deduped"] = True
        return payload


def bucket_minute_for(timestamp: float) -> int:
    return int(timestamp // 60)


class DownloadBillingService:
    def __init__(
        self,
        *,
        guard: DedupeGuard,
        distributions: DistributionDirectory,
        notifier: Optional[MonitorNotifier] = None,
        session_maker: Optional[async_sessionmaker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._guard = guard
        self._distributions = distributions
        self._notifier = notifier
        self._session_maker = session_maker
        self._clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def bill_download(
        self,
        db: AsyncSession,
        account_id: str,
        distribution_id: str,
        platform: Any,
    ) -> BillingResult:
        platform = normalize_platform(platform)
        if not account_id or not distribution_id:
            raise InvalidInputError("BAD_REQUEST")

        try:
            distribution = await self._distributions.get_distribution(db, distribution_id)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Distribution lookup failed for %s: %s", distribution_id, exc)
            raise StorageUnavailableError() from exc
        if distribution is None or not distribution.is_active:
            raise DistributionNotFoundError()

        cost = resolve_cost(platform, distribution.is_regional)
        now = self._clock()
        key = DedupeKey(
            account_id=account_id,
            distribution_id=distribution.id,
            platform=platform,
            bucket_minute=bucket_minute_for(now),
        )

        entry = None
        try:
            if await self._guard.try_acquire(db, key) is AcquireResult.ALREADY_BILLED:
                await db.rollback()
                logger.info(
                    "download billing deduped account=%s distribution=%s platform=%s bucket=%s",
                    account_id,
                    distribution.id,
                    platform,
                    key.bucket_minute,
                )
                return BillingResult(cost=0, deduped=True)

            available = await get_balance(db, account_id)
            if available >= cost:
                try:
                    entry, current = await apply_points_delta(
                        db,
                        account_id,
                        -cost,
                        REASON_DOWNLOAD,
                        distribution_id=distribution.id,
                        bucket_minute=key.bucket_minute,
                        platform=platform,
                        require_funds=True,
                    )
                    # Pre-debit balance as seen by the guarded UPDATE, not the earlier read.
                    previous = current + cost
                except InsufficientPointsError:
                    # Drained by a concurrent debit; nothing but the marker was written.
                    entry = None
            await db.commit()
        except AccountNotFoundError:
            await db.rollback()
            await self._guard.release(key)
            raise
        except PointsError:
            await db.rollback()
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            await self._guard.release(key)
            logger.exception("Download billing failed for account %s: %s", account_id, exc)
            raise StorageUnavailableError() from exc

        if entry is None:
            logger.info(
                "download billing rejected account=%s distribution=%s cost=%s balance=%s",
                account_id,
                distribution.id,
                cost,
                available,
            )
            raise InsufficientPointsError()

        logger.info(
            "download billed account=%s distribution=%s platform=%s cost=%s balance=%s",
            account_id,
            distribution.id,
            platform,
            cost,
            current,
        )
        self._dispatch(
            self._after_commit(
                account_id=account_id,
                previous_balance=previous,
                current_balance=current,
                distribution=distribution,
                platform=platform,
                billed_at=datetime.fromtimestamp(now, tz=timezone.utc),
            )
        )
        return BillingResult(cost=cost, balance=current, ledger_id=entry.id)

    def _dispatch(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for detached post-billing work to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _after_commit(
        self,
        *,
        account_id: str,
        previous_balance: int,
        current_balance: int,
        distribution: DistributionRef,
        platform: str,
        billed_at: datetime,
    ) -> None:
        if self._notifier is not None:
            try:
                await self._notifier.notify_point_threshold(account_id, previous_balance, current_balance)
            except Exception:
                logger.exception("Point threshold notification failed for account %s", account_id)

        if self._session_maker is None:
            return
        try:
            async with self._session_maker() as db:
                totals = await record_download(db, distribution.id, platform, now=billed_at)
        except Exception:
            logger.exception("Download counter update failed for distribution %s", distribution.id)
            return

        if self._notifier is not None:
            try:
                await self._notifier.notify_download_threshold(account_id, distribution.code, platform, totals)
            except Exception:
                logger.exception("Download threshold notification failed for distribution %s", distribution.code)


def build_billing_service(session_maker: async_sessionmaker) -> DownloadBillingService:
    """Wire the billing service from application settings."""
    if settings.POINT_DEDUPE_STRATEGY == "cache":
        guard: DedupeGuard = CacheDedupeGuard(
            redis.from_url(settings.REDIS_URL, decode_responses=True),
            ttl_seconds=settings.POINT_DEDUPE_CACHE_TTL_SECONDS,
        )
    else:
        guard = TableDedupeGuard()

    return DownloadBillingService(
        guard=guard,
        distributions=DistributionDirectory(settings.REGIONAL_DOWNLOAD_BASE_URLS),
        notifier=TelegramMonitorNotifier(
            session_maker,
            api_base=settings.TELEGRAM_API_BASE,
            timeout=settings.TELEGRAM_TIMEOUT_SECONDS,
        ),
        session_maker=session_maker,
    )
