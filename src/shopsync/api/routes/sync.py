"""Central sync routes: branch upload/download plus status and manual log entries."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlmodel import Session, select

from shopsync.config import get_settings
from shopsync.db.engine import get_engine, get_session
from shopsync.models.sync import ChangeLogEntry, StoreSyncState
from shopsync.sync.capture import record_manual_change
from shopsync.sync.central import CentralSyncService
from shopsync.sync.registry import KeyParseError, RecordNotFoundError, UnknownTableError
from shopsync.sync.schemas import (
    ManualChangeLogRequest,
    ManualChangeLogResponse,
    StoreCursorView,
    SyncDownloadQuery,
    SyncDownloadResponse,
    SyncStatusResponse,
    SyncUploadRequest,
    SyncUploadResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_central_service() -> CentralSyncService:
    settings = get_settings()
    return CentralSyncService(get_engine(), watermark_lag_seconds=settings.sync_watermark_lag_seconds)


@router.post("/upload", response_model=SyncUploadResult)
def upload_changes(
    request: SyncUploadRequest,
    service: CentralSyncService = Depends(get_central_service),
):
    """Apply a batch of changes pushed by a branch."""
    try:
        return service.process_upload(request)
    except ValueError as exc:
        logger.warning("Rejected upload: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/changes", response_model=SyncDownloadResponse)
def get_changes(
    store_id: str = Query("", alias="storeId"),
    store_type: Optional[str] = Query(None, alias="storeType"),
    server_role: Optional[str] = Query(None, alias="serverRole"),
    last_sync_time: Optional[datetime] = Query(None, alias="lastSyncTime"),
    page_size: int = Query(100, alias="pageSize"),
    service: CentralSyncService = Depends(get_central_service),
):
    """Changes the calling branch has not pulled yet."""
    query = SyncDownloadQuery(
        store_id=store_id,
        store_type=store_type,
        server_role=server_role,
        last_sync_time=last_sync_time,
        page_size=page_size,
    )
    try:
        return service.get_updates(query)
    except ValueError as exc:
        logger.warning("Rejected download: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/status", response_model=SyncStatusResponse)
def get_status(session: Session = Depends(get_session)):
    """Pending change-log count and every known store cursor."""
    pending = session.exec(
        select(func.count()).select_from(ChangeLogEntry).where(ChangeLogEntry.synced == False)  # noqa: E712
    ).one()
    states = session.exec(select(StoreSyncState).order_by(StoreSyncState.store_id)).all()
    return SyncStatusResponse(
        pending_count=pending,
        stores=[StoreCursorView.model_validate(state, from_attributes=True) for state in states],
    )


@router.post("/logs/manual", response_model=ManualChangeLogResponse)
def create_manual_log(
    request: ManualChangeLogRequest,
    session: Session = Depends(get_session),
):
    """Queue an existing row for upload without modifying it."""
    try:
        entry = record_manual_change(
            session,
            table_name=request.table_name,
            record_id=request.record_id,
            action=request.action,
            store_id=request.store_id,
            store_type=request.store_type,
        )
    except (UnknownTableError, RecordNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except (KeyParseError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return ManualChangeLogResponse(log_id=entry.log_id, synced_at=entry.synced_at)
