"""Change log, sync cursor and machine profile models."""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class ChangeLogEntry(SQLModel, table=True):
    """
    One row per captured (or replicated) row-level mutation.

    log_id is assigned by the node that first observed the change and travels
    unchanged across hops; it is the only idempotency token. The same
    (table_name, record_id) pair appears once per mutation.
    """

    __tablename__ = "sync_logs"

    log_id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    table_name: str = Field(index=True)
    record_id: str  # key columns joined by ",", in key order
    action: str  # INSERT, UPDATE, UPSERT, DELETE
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    synced_at: datetime = Field(default_factory=datetime.utcnow)
    synced: bool = Field(default=False, index=True)
    source_server: Optional[str] = None
    store_type: Optional[str] = None
    payload: Optional[str] = None  # JSON snapshot of the row


class StoreSyncState(SQLModel, table=True):
    """Per-counterpart sync cursor (watermarks are only advanced on success)."""

    __tablename__ = "store_sync_states"
    __table_args__ = (UniqueConstraint("store_id", "store_type", name="ux_store_sync_states_store"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    store_id: str
    store_type: str
    server_role: Optional[str] = None
    server_ip: Optional[str] = None
    last_cursor: Optional[str] = None
    last_upload_time: Optional[datetime] = None
    last_download_time: Optional[datetime] = None
    last_sync_count: int = 0


class SyncMachineProfile(SQLModel, table=True):
    """Maps a machine key to the server role and store a node runs as."""

    __tablename__ = "sync_machine_profiles"

    machine_key: str = Field(primary_key=True)
    server_role: str
    store_id: Optional[str] = None
    store_type: Optional[str] = None
    is_active: bool = True
    updated_at: Optional[datetime] = None
    remark: Optional[str] = None
