# backend/app/schemas/vault.py
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import Field

from backend.app.schemas.user import CamelModel

ItemType = Literal["credential", "note", "totp", "attachment"]


class VaultItemIn(CamelModel):
    """
    One entry of a batch save.

    Validated entry by entry inside the sync service, so that a malformed
    entry is reported without rejecting the whole batch.
    """
    id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    encrypted_data: str = Field(..., min_length=1)
    iv: str = Field(..., min_length=1, max_length=64)
    auth_tag: str = Field(..., min_length=1, max_length=64)
    type: ItemType
    encrypted_metadata: Optional[str] = None
    # Optimistic concurrency: when present, the update only applies if the
    # stored version still equals this value
    base_version: Optional[int] = Field(default=None, ge=1)


class SaveItemsRequest(CamelModel):
    # Validated one by one in services.sync; see VaultItemIn
    items: List[Any]


class DeleteItemsRequest(CamelModel):
    item_ids: List[str]


class ManifestEntry(CamelModel):
    id: str
    type: str
    version: int
    created_at: datetime
    updated_at: datetime


class Manifest(CamelModel):
    items: List[ManifestEntry]
    vault_version: int
    last_sync_at: Optional[datetime] = None
    total_items: int


class ManifestResponse(CamelModel):
    manifest: Manifest


class VaultItemOut(CamelModel):
    id: str
    encrypted_data: str
    iv: str
    auth_tag: str
    type: str
    version: int
    encrypted_metadata: Optional[str] = None
    updated_at: datetime


class ItemsResponse(CamelModel):
    items: List[VaultItemOut]


class SavedItem(CamelModel):
    id: str
    version: int
    created: bool
    updated_at: datetime


class ItemError(CamelModel):
    id: Optional[str] = None
    kind: str
    error: str


class SaveItemsResponse(CamelModel):
    success: bool
    saved_items: List[SavedItem]
    errors: Optional[List[ItemError]] = None
    total_saved: int
    total_errors: int
    # "PartialBatchFailure" when some entries committed and some did not
    error: Optional[str] = None


class DeleteItemsResponse(CamelModel):
    success: bool
    deleted_count: int
    deleted_ids: List[str]
