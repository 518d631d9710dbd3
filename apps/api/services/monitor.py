"""Threshold monitors and Telegram delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from models.monitor_record import MonitorRecord
from models.user import User
from services.crypto import decrypt_secret, encrypt_secret
from services.errors import AccountNotFoundError, InvalidInputError

logger = logging.getLogger(__name__)

MONITOR_KINDS = ("points", "downloads")
DOWNLOAD_METRICS = ("total", "apk", "ipa")


class MonitorNotifier(Protocol):
    async def notify_point_threshold(self, account_id: str, previous_balance: int, current_balance: int) -> None:
        ...

    async def notify_download_threshold(
        self,
        account_id: str,
        distribution_code: str,
        platform: str,
        totals: Any,
    ) -> None:
        ...


@dataclass(frozen=True)
class Notification:
    target: str
    message: str


def point_crossings(monitors: List[MonitorRecord], previous: int, current: int) -> List[Notification]:
    """Point monitors fire when the balance drops onto or below the threshold."""
    return [
        Notification(target=monitor.target, message=monitor.message)
        for monitor in monitors
        if monitor.kind == "points"
        and monitor.is_active
        and previous > monitor.threshold >= current
    ]


def download_crossings(
    monitors: List[MonitorRecord],
    distribution_code: str,
    platform: str,
    totals: Any,
) -> List[Notification]:
    """Download monitors fire when this download moved the metric up to the threshold."""
    current_by_metric = {
        "total": int(totals.total_total),
        "apk": int(totals.total_apk),
        "ipa": int(totals.total_ipa),
    }
    increments = {
        "total": 1,
        "apk": 1 if platform == "apk" else 0,
        "ipa": 1 if platform == "ipa" else 0,
    }
    notifications = []
    for monitor in monitors:
        if monitor.kind != "downloads" or not monitor.is_active:
            continue
        if monitor.distribution_code != distribution_code:
            continue
        increment = increments.get(monitor.metric or "", 0)
        if not increment:
            continue
        current = current_by_metric[monitor.metric]
        previous = current - increment
        if previous < monitor.threshold <= current:
            notifications.append(Notification(target=monitor.target, message=monitor.message))
    return notifications


class TelegramMonitorNotifier:
    """Evaluates a member's monitors and posts crossings to Telegram."""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_maker = session_maker
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def notify_point_threshold(self, account_id: str, previous_balance: int, current_balance: int) -> None:
        if not account_id:
            return
        monitors, token = await self._load(account_id)
        await self._send_all(account_id, token, point_crossings(monitors, previous_balance, current_balance))

    async def notify_download_threshold(
        self,
        account_id: str,
        distribution_code: str,
        platform: str,
        totals: Any,
    ) -> None:
        if not account_id or not distribution_code or totals is None:
            return
        monitors, token = await self._load(account_id)
        await self._send_all(
            account_id,
            token,
            download_crossings(monitors, distribution_code, platform, totals),
        )

    async def _load(self, account_id: str):
        async with self._session_maker() as db:
            monitors = await list_monitors(db, account_id)
            token = (await get_telegram_settings(db, account_id)).get("telegram_bot_token")
        return monitors, token

    async def _send_all(self, account_id: str, token: Optional[str], notifications: List[Notification]) -> None:
        if not notifications:
            return
        token = (token or "").strip()
        if not token:
            logger.warning("Telegram bot token missing for monitor owner %s", account_id)
            return
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for notification in notifications:
                await self._send(client, token, notification)

    async def _send(self, client: httpx.AsyncClient, token: str, notification: Notification) -> None:
        if not notification.target or not notification.message:
            return
        try:
            response = await client.post(
                f"{self._api_base}/bot{token}/sendMessage",
                json={
                    "chat_id": notification.target,
                    "text": notification.message,
                    "parse_mode": "Markdown",
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Telegram send error target=%s: %s", notification.target, exc)
            return
        if response.status_code >= 400:
            logger.error(
                "Telegram send failed target=%s status=%s body=%s",
                notification.target,
                response.status_code,
                response.text[:200],
            )


def serialize_monitor(monitor: MonitorRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": str(monitor.id),
        "type": monitor.kind,
        "threshold": monitor.threshold,
        "target": monitor.target,
        "message": monitor.message,
        "is_active": bool(monitor.is_active),
    }
    if monitor.kind == "downloads":
        payload["metric"] = monitor.metric
        payload["distribution_code"] = monitor.distribution_code
    return payload


async def list_monitors(db: AsyncSession, user_id: str) -> List[MonitorRecord]:
    result = await db.execute(
        select(MonitorRecord).where(MonitorRecord.user_id == user_id).order_by(MonitorRecord.id.desc())
    )
    return list(result.scalars().all())


async def create_monitor(
    db: AsyncSession,
    user_id: str,
    *,
    kind: str,
    threshold: int,
    target: str,
    message: str,
    metric: Optional[str] = None,
    distribution_code: Optional[str] = None,
    is_active: bool = True,
) -> MonitorRecord:
    if kind not in MONITOR_KINDS:
        raise InvalidInputError("INVALID_MONITOR_TYPE")
    target = (target or "").strip()
    message = (message or "").strip()
    if not target or not message:
        raise InvalidInputError("INVALID_NOTIFICATION")
    if kind == "downloads":
        metric = (metric or "").strip().lower()
        distribution_code = (distribution_code or "").strip()
        if metric not in DOWNLOAD_METRICS:
            raise InvalidInputError("INVALID_METRIC")
        if not distribution_code:
            raise InvalidInputError("INVALID_DISTRIBUTION_CODE")
    else:
        metric = None
        distribution_code = None

    monitor = MonitorRecord(
        user_id=user_id,
        kind=kind,
        threshold=int(threshold),
        metric=metric,
        distribution_code=distribution_code,
        target=target,
        message=message,
        is_active=is_active,
    )
    db.add(monitor)
    await db.commit()
    return monitor


async def delete_monitor(db: AsyncSession, user_id: str, monitor_id: int) -> bool:
    result = await db.execute(
        select(MonitorRecord).where(MonitorRecord.id == monitor_id, MonitorRecord.user_id == user_id)
    )
    monitor = result.scalar_one_or_none()
    if monitor is None:
        return False
    await db.delete(monitor)
    await db.commit()
    return True


async def get_telegram_settings(db: AsyncSession, user_id: str) -> Dict[str, Optional[str]]:
    result = await db.execute(select(User.telegram_bot_token).where(User.id == user_id))
    row = result.first()
    return {"telegram_bot_token": decrypt_secret(row[0]) if row else None}


async def update_telegram_settings(db: AsyncSession, user_id: str, token: Optional[str]) -> Dict[str, Optional[str]]:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AccountNotFoundError()
    cleaned = (token or "").strip()
    user.telegram_bot_token = encrypt_secret(cleaned) if cleaned else None
    await db.commit()
    return {"telegram_bot_token": cleaned or None}
