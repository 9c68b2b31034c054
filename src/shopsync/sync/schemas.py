"""
Wire contracts between a branch and the central node.

Field names are camelCase on the wire (logId, tableName, serverTime, ...);
snake_case is accepted on input as well.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncChange(WireModel):
    log_id: Optional[uuid.UUID] = None
    table_name: str
    action: str
    record_id: str
    updated_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None
    source_server: Optional[str] = None
    store_type: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None


class SyncUploadRequest(WireModel):
    store_id: str
    store_type: str
    server_role: Optional[str] = None
    server_ip: Optional[str] = None
    changes: List[SyncChange] = Field(default_factory=list)


class SyncUploadResult(WireModel):
    processed_count: int = 0
    ignored_count: int = 0


class SyncDownloadQuery(WireModel):
    store_id: str
    store_type: Optional[str] = None
    server_role: Optional[str] = None
    last_sync_time: Optional[datetime] = None
    page_size: int = 100

    def to_params(self) -> Dict[str, Any]:
        """Query-string form; unset values are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderSyncItem(WireModel):
    """Order projection used by central nodes that still push orders in a dedicated list."""

    order_uid: str
    order_no: Optional[str] = None
    store_uid: Optional[str] = None
    quotation_uid: Optional[str] = None
    customer_uid: Optional[str] = None
    car_uid: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[Decimal] = None
    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None
    modification_timestamp: Optional[datetime] = None
    modified_by: Optional[str] = None


class SyncDownloadResponse(WireModel):
    store_id: Optional[str] = None
    store_type: Optional[str] = None
    server_time: datetime
    changes: List[SyncChange] = Field(default_factory=list)
    orders: List[OrderSyncItem] = Field(default_factory=list)


class ManualChangeLogRequest(WireModel):
    table_name: str
    record_id: str
    action: Optional[str] = "UPDATE"
    store_id: Optional[str] = None
    store_type: Optional[str] = None


class ManualChangeLogResponse(WireModel):
    log_id: uuid.UUID
    synced_at: datetime


class StoreCursorView(WireModel):
    store_id: str
    store_type: str
    server_role: Optional[str] = None
    server_ip: Optional[str] = None
    last_upload_time: Optional[datetime] = None
    last_download_time: Optional[datetime] = None
    last_sync_count: int = 0


class SyncStatusResponse(WireModel):
    pending_count: int
    stores: List[StoreCursorView] = Field(default_factory=list)
