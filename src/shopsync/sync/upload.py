"""
UploadPump: drains unsynced change-log entries to the central node.

Flow for one cycle:
  1. Skip unless this node is a fully identified branch
  2. Load the oldest pending entries (synced_at, then updated_at)
  3. Back-fill missing provenance and build one SyncChange per entry
  4. Send each change in its own request and mark it synced on acknowledgement
  5. Advance the upload cursor if at least one entry went through

A failed entry stays pending for the next cycle; it never blocks the entries
behind it.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from shopsync.config import DEFAULT_SYNC_BATCH_SIZE
from shopsync.models.sync import ChangeLogEntry
from shopsync.sync.cursor import ensure_cursor
from shopsync.sync.identity import SyncIdentity
from shopsync.sync.projectors import build_entry_payload
from shopsync.sync.registry import EntityRegistry, get_registry
from shopsync.sync.remote import RemoteSyncClient
from shopsync.sync.schemas import SyncChange, SyncUploadRequest

logger = logging.getLogger(__name__)


@dataclass
class UploadCycleResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    processed: int = 0
    ignored: int = 0
    skipped: bool = False


class UploadPump:
    def __init__(
        self,
        client: RemoteSyncClient,
        engine,
        batch_size: int = DEFAULT_SYNC_BATCH_SIZE,
        registry: Optional[EntityRegistry] = None,
    ):
        self.client = client
        self.engine = engine
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_SYNC_BATCH_SIZE
        self.registry = registry or get_registry()

    async def run_cycle(self, identity: SyncIdentity) -> UploadCycleResult:
        if not identity.is_branch or not identity.is_resolved:
            logger.info("Upload skipped: node is not an identified branch (%s)", identity.server_role or "no role")
            return UploadCycleResult(skipped=True)

        pending = self._load_pending(identity)
        result = UploadCycleResult()
        if not pending:
            logger.info("No pending change-log entries for store %s", identity.store_id)
            return result

        for log_id, change in pending:
            request = SyncUploadRequest(
                store_id=identity.store_id,
                store_type=identity.store_type,
                server_role=identity.server_role,
                server_ip=identity.server_ip,
                changes=[change],
            )
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Upload preview: %s", request.model_dump_json(by_alias=True))

            result.attempted += 1
            try:
                ack = await self.client.upload_changes(request)
            except Exception as exc:
                result.failed += 1
                logger.error("Uploading change-log entry %s failed: %s", log_id, exc)
                continue

            if ack is None:
                result.failed += 1
                logger.warning("No acknowledgement for change-log entry %s (%s %s); kept for retry",
                               log_id, change.table_name, change.record_id)
                continue

            self._mark_synced(log_id)
            result.succeeded += 1
            result.processed += ack.processed_count
            result.ignored += ack.ignored_count

        if result.succeeded == 0:
            logger.warning("Upload cycle sent nothing (%d failed); cursor unchanged", result.failed)
            return result

        self._advance_cursor(identity, result.succeeded)
        logger.info(
            "Upload cycle for store %s: %d/%d sent (central processed=%d ignored=%d), %d still pending",
            identity.store_id, result.succeeded, result.attempted,
            result.processed, result.ignored, self._pending_count(),
        )
        return result

    # ── Internals ────────────────────────────────────────────────────────────

    def _load_pending(self, identity: SyncIdentity) -> List[Tuple[uuid.UUID, SyncChange]]:
        with Session(self.engine) as s:
            entries = s.exec(
                select(ChangeLogEntry)
                .where(ChangeLogEntry.synced == False)  # noqa: E712
                .order_by(ChangeLogEntry.synced_at, ChangeLogEntry.updated_at)
                .limit(self.batch_size)
            ).all()

            backfilled = False
            for entry in entries:
                if not entry.source_server:
                    entry.source_server = identity.store_id
                    backfilled = True
                if not entry.store_type:
                    entry.store_type = identity.store_type
                    backfilled = True
                s.add(entry)

            pending = [(entry.log_id, self._build_change(s, entry)) for entry in entries]
            if backfilled:
                s.commit()
        return pending

    def _build_change(self, session: Session, entry: ChangeLogEntry) -> SyncChange:
        payload = build_entry_payload(
            session, self.registry, entry.table_name, entry.record_id, entry.action, entry.payload
        )
        if payload is None and entry.action.upper() != "DELETE":
            logger.warning("Change-log entry %s (%s %s) has no payload; sending metadata only",
                           entry.log_id, entry.table_name, entry.record_id)
        return SyncChange(
            log_id=entry.log_id,
            table_name=entry.table_name,
            action=entry.action,
            record_id=entry.record_id,
            updated_at=entry.updated_at,
            synced_at=entry.synced_at,
            source_server=entry.source_server,
            store_type=entry.store_type,
            payload=payload,
        )

    def _mark_synced(self, log_id: uuid.UUID) -> None:
        with Session(self.engine) as s:
            entry = s.get(ChangeLogEntry, log_id)
            if entry is None:
                return
            entry.synced = True
            entry.synced_at = datetime.utcnow()
            s.add(entry)
            s.commit()

    def _advance_cursor(self, identity: SyncIdentity, sent: int) -> None:
        with Session(self.engine) as s:
            state = ensure_cursor(s, identity.store_id, identity.store_type)
            state.server_role = identity.server_role
            if identity.server_ip:
                state.server_ip = identity.server_ip
            state.last_upload_time = datetime.utcnow()
            state.last_sync_count = sent
            s.add(state)
            s.commit()

    def _pending_count(self) -> int:
        with Session(self.engine) as s:
            return s.exec(
                select(func.count()).select_from(ChangeLogEntry).where(ChangeLogEntry.synced == False)  # noqa: E712
            ).one()
