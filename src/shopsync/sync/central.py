"""
Central side of the sync contract.

Branches push their captured changes through process_upload() and pull
everyone else's through get_updates(). The central change log is the
exchange: every applied upload is mirrored there tagged with the store that
sent it, and get_updates() serves it back to all other stores.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, or_, select

from shopsync.config import DEFAULT_SYNC_BATCH_SIZE, DEFAULT_WATERMARK_LAG_SECONDS
from shopsync.models.sync import ChangeLogEntry
from shopsync.sync.capture import suppress_capture
from shopsync.sync.cursor import ensure_cursor, naive_utc
from shopsync.sync.identity import normalize_role
from shopsync.sync.projectors import build_entry_payload
from shopsync.sync.registry import DELETE, EntityRegistry, SyncApplyError, decode_action, get_registry
from shopsync.sync.schemas import (
    SyncChange,
    SyncDownloadQuery,
    SyncDownloadResponse,
    SyncUploadRequest,
    SyncUploadResult,
)

logger = logging.getLogger(__name__)


def _require(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{name} must not be blank")
    return value.strip()


class CentralSyncService:
    def __init__(
        self,
        engine,
        registry: Optional[EntityRegistry] = None,
        watermark_lag_seconds: int = DEFAULT_WATERMARK_LAG_SECONDS,
    ):
        self.engine = engine
        self.registry = registry or get_registry()
        self.watermark_lag = timedelta(seconds=max(watermark_lag_seconds, 0))

    def process_upload(self, request: SyncUploadRequest) -> SyncUploadResult:
        """
        Apply a branch's changes and mirror them into the central log.

        A change whose log_id is already present is acknowledged as processed
        without being applied again, so a branch retrying after a lost
        acknowledgement is harmless.

        Raises:
            ValueError: blank store id or store type.
        """
        store_id = _require(request.store_id, "storeId")
        store_type = _require(request.store_type, "storeType")
        result = SyncUploadResult()

        with Session(self.engine) as s:
            ensure_cursor(s, store_id, store_type)
            s.commit()

            with suppress_capture(s):
                for change in request.changes:
                    if self._process_change(s, change, store_id, store_type):
                        result.processed_count += 1
                    else:
                        result.ignored_count += 1

            state = ensure_cursor(s, store_id, store_type)
            state.server_role = normalize_role(request.server_role) or state.server_role
            if request.server_ip:
                state.server_ip = request.server_ip
            state.last_upload_time = datetime.utcnow()
            state.last_sync_count = result.processed_count
            s.add(state)
            s.commit()

        logger.info("Upload from store %s (%s): processed=%d ignored=%d",
                    store_id, store_type, result.processed_count, result.ignored_count)
        return result

    def _process_change(self, s: Session, change: SyncChange, store_id: str, store_type: str) -> bool:
        action = decode_action(change.action)
        if action is None or not (change.table_name or "").strip() or not (change.record_id or "").strip():
            logger.info("Ignoring change %s from %s: incomplete (action=%r table=%r record=%r)",
                        change.log_id, store_id, change.action, change.table_name, change.record_id)
            return False
        if action != DELETE and change.payload is None:
            logger.info("Ignoring %s change %s from %s: no payload", action, change.log_id, store_id)
            return False
        if change.log_id is not None and s.get(ChangeLogEntry, change.log_id) is not None:
            logger.debug("Change %s already applied; acknowledging again", change.log_id)
            return True

        now = datetime.utcnow()
        try:
            descriptor = self.registry.resolve(change.table_name)
            key_values = self.registry.parse_key(descriptor, change.record_id)
            self.registry.apply(s, action, descriptor, key_values, change.payload)
            s.add(ChangeLogEntry(
                log_id=change.log_id or uuid.uuid4(),
                table_name=descriptor.table_name,
                record_id=change.record_id,
                action=action,
                updated_at=naive_utc(change.updated_at) or now,
                synced_at=now,
                synced=True,
                source_server=store_id,
                store_type=store_type,
                payload=json.dumps(change.payload) if change.payload is not None else None,
            ))
            s.commit()
        except SyncApplyError as exc:
            s.rollback()
            logger.warning("Ignoring change %s from %s (%s %s): %s",
                           change.log_id, store_id, change.table_name, change.record_id, exc)
            return False
        except SQLAlchemyError:
            s.rollback()
            logger.exception("Database error applying change %s from %s", change.log_id, store_id)
            return False
        except Exception:
            s.rollback()
            logger.exception("Unexpected error applying change %s from %s", change.log_id, store_id)
            return False
        return True

    def get_updates(self, query: SyncDownloadQuery) -> SyncDownloadResponse:
        """
        Changes a store has not seen yet, oldest first.

        The store's own uploads are excluded. The window is inclusive of
        last_sync_time, so a boundary entry may be served twice; the branch
        drops it by log_id. When the page is full, server_time is the last
        served entry's synced_at so the next pull resumes there instead of
        skipping the rest. Otherwise server_time trails the read by the
        watermark lag: an entry flushed before the read but committed after
        it carries an earlier synced_at, and must still fall inside the next
        window. Entries inside the lag are served again and dropped by log_id.

        Raises:
            ValueError: blank store id.
        """
        store_id = _require(query.store_id, "storeId")
        store_type = (query.store_type or "").strip()
        page_size = query.page_size if query.page_size > 0 else DEFAULT_SYNC_BATCH_SIZE
        last_sync_time = naive_utc(query.last_sync_time)
        now = datetime.utcnow()

        with Session(self.engine) as s:
            statement = select(ChangeLogEntry).where(
                or_(col(ChangeLogEntry.source_server).is_(None), ChangeLogEntry.source_server != store_id)
            )
            if last_sync_time is not None:
                statement = statement.where(ChangeLogEntry.synced_at >= last_sync_time)
            entries = s.exec(
                statement.order_by(ChangeLogEntry.synced_at, ChangeLogEntry.updated_at).limit(page_size)
            ).all()

            changes = [self._to_change(s, entry) for entry in entries]
            if len(entries) >= page_size:
                server_time = entries[-1].synced_at
            else:
                server_time = now - self.watermark_lag

            state = ensure_cursor(s, store_id, store_type)
            if query.server_role:
                state.server_role = normalize_role(query.server_role)
            state.last_download_time = server_time
            state.last_sync_count = len(changes)
            s.add(state)
            s.commit()

        logger.info("Serving %d change(s) to store %s since %s", len(changes), store_id, last_sync_time)
        return SyncDownloadResponse(store_id=store_id, store_type=store_type or None,
                                    server_time=server_time, changes=changes)

    def _to_change(self, s: Session, entry: ChangeLogEntry) -> SyncChange:
        return SyncChange(
            log_id=entry.log_id,
            table_name=entry.table_name,
            action=entry.action,
            record_id=entry.record_id,
            updated_at=entry.updated_at,
            synced_at=entry.synced_at,
            source_server=entry.source_server,
            store_type=entry.store_type,
            payload=build_entry_payload(
                s, self.registry, entry.table_name, entry.record_id, entry.action, entry.payload
            ),
        )
