# backend/app/api/v1/endpoints/vault.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import deps
from backend.app.core.errors import InvalidInput
from backend.app.db.base import get_db
from backend.app.schemas.vault import (
    DeleteItemsRequest,
    DeleteItemsResponse,
    ItemsResponse,
    ManifestResponse,
    SaveItemsRequest,
    SaveItemsResponse,
)
from backend.app.services import sync

router = APIRouter()


# 1. MANIFEST (metadata only, used by clients to diff)
@router.get("/manifest", response_model=ManifestResponse)
async def read_manifest(
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    return await sync.get_manifest(db, user_id)


# 2. FETCH ITEMS BY ID (?itemIds=a,b,c)
@router.get("/items", response_model=ItemsResponse)
async def read_items(
        item_ids: str = Query(None, alias="itemIds"),
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    if not item_ids:
        raise InvalidInput("itemIds query parameter required")
    ids = [i.strip() for i in item_ids.split(",") if i.strip()]
    return await sync.get_items(db, user_id, ids)


# 3. BATCH UPSERT
@router.post("/items", response_model=SaveItemsResponse, response_model_exclude_none=True)
async def save_items(
        body: SaveItemsRequest,
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    return await sync.save_items(db, user_id, body.items)


# 4. BATCH SOFT DELETE
@router.delete("/items", response_model=DeleteItemsResponse)
async def delete_items(
        body: DeleteItemsRequest,
        db: AsyncSession = Depends(get_db),
        user_id: str = Depends(deps.get_current_user_id),
):
    return await sync.delete_items(db, user_id, body.item_ids)
