# backend/app/api/v1/endpoints/sync.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.db.base import get_db
from backend.app.schemas.sync import DeltaSyncResponse, SyncStatusResponse
from backend.app.services import sync

router = APIRouter()


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
        last_sync_version: Optional[int] = Query(None, alias="lastSyncVersion", ge=0),
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    return await sync.get_sync_status(db, user_id, last_sync_version)


@router.get("/delta", response_model=DeltaSyncResponse)
async def delta(
        since: Optional[datetime] = Query(None),
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    # Pass the server-issued syncTimestamp back verbatim as `since`
    return await sync.delta_sync(db, user_id, since)
