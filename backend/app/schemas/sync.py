# backend/app/schemas/sync.py
from datetime import datetime
from typing import List, Optional

from backend.app.schemas.user import CamelModel


class ModifiedItem(CamelModel):
    id: str
    version: int
    updated_at: datetime
    deleted: bool = False


class SyncStatusResponse(CamelModel):
    current_version: int
    last_sync_at: Optional[datetime] = None
    total_items: int
    modified_items: List[ModifiedItem]
    has_changes: bool
    needs_sync: bool


class DeltaItem(CamelModel):
    """Full record, tombstones included (deleted_at set)."""
    id: str
    encrypted_data: str
    iv: str
    auth_tag: str
    type: str
    version: int
    encrypted_metadata: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None


class DeltaSyncResponse(CamelModel):
    items: List[DeltaItem]
    sync_timestamp: datetime
    vault_version: int
    total_items: int
