"""Monitor records and Telegram settings router."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.monitor import (
    create_monitor,
    delete_monitor,
    get_telegram_settings,
    list_monitors,
    serialize_monitor,
    update_telegram_settings,
)

router = APIRouter()


class MonitorCreateRequest(BaseModel):
    type: str
    threshold: int
    target: str
    message: str
    metric: Optional[str] = None
    distribution_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("distribution_code", "distributionCode")
    )
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class TelegramSettingsRequest(BaseModel):
    telegram_bot_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("telegram_bot_token", "telegramBotToken")
    )


@router.get("/records")
async def get_monitor_records(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    monitors = await list_monitors(db, auth.user_id)
    return {"ok": True, "records": [serialize_monitor(monitor) for monitor in monitors]}


@router.post("/records")
async def create_monitor_record(
    request: MonitorCreateRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    monitor = await create_monitor(
        db,
        auth.user_id,
        kind=request.type,
        threshold=request.threshold,
        target=request.target,
        message=request.message,
        metric=request.metric,
        distribution_code=request.distribution_code,
        is_active=request.is_active,
    )
    return {"ok": True, "record": serialize_monitor(monitor)}


@router.delete("/records/{record_id}")
async def delete_monitor_record(
    record_id: int,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    deleted = await delete_monitor(db, auth.user_id, record_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Monitor record not found.")
    return {"ok": True}


@router.get("/settings")
async def get_monitor_settings(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"ok": True, "settings": await get_telegram_settings(db, auth.user_id)}


@router.put("/settings")
async def put_monitor_settings(
    request: TelegramSettingsRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    updated = await update_telegram_settings(db, auth.user_id, request.telegram_bot_token)
    return {"ok": True, "settings": updated}
