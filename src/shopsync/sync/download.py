"""
DownloadPump: pulls changes from the central node and applies them locally.

Flow for one cycle:
  1. Ask central for everything since last_download_time
  2. No answer: abort, cursor untouched
  3. Nothing new: move the cursor to the server's clock and stop
  4. Otherwise, with capture suppressed, for each change not already known
     by log_id: write a synced mirror entry, apply it through the entity
     registry, commit that record alone
  5. Mark stray unsynced entries that came from central as synced
  6. Move the cursor to the server's clock

The cursor always holds central's clock, never ours, so skew between the two
machines cannot lose changes.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from shopsync.config import DEFAULT_SYNC_BATCH_SIZE
from shopsync.models.sync import ChangeLogEntry
from shopsync.sync.capture import set_capture_metadata, suppress_capture
from shopsync.sync.cursor import ensure_cursor, get_cursor, naive_utc
from shopsync.sync.identity import CENTRAL, SyncIdentity
from shopsync.sync.legacy import apply_order_sync
from shopsync.sync.registry import EntityRegistry, SyncApplyError, decode_action, get_registry
from shopsync.sync.remote import RemoteSyncClient
from shopsync.sync.schemas import OrderSyncItem, SyncChange, SyncDownloadQuery

logger = logging.getLogger(__name__)


@dataclass
class DownloadCycleResult:
    received: int = 0
    applied: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    server_time: Optional[datetime] = None
    aborted: bool = False


class DownloadPump:
    def __init__(
        self,
        client: RemoteSyncClient,
        engine,
        page_size: int = DEFAULT_SYNC_BATCH_SIZE,
        registry: Optional[EntityRegistry] = None,
    ):
        self.client = client
        self.engine = engine
        self.page_size = page_size if page_size > 0 else DEFAULT_SYNC_BATCH_SIZE
        self.registry = registry or get_registry()

    async def run_cycle(self, identity: SyncIdentity) -> DownloadCycleResult:
        if not identity.is_branch or not identity.is_resolved:
            logger.info("Download skipped: node is not an identified branch (%s)", identity.server_role or "no role")
            return DownloadCycleResult(aborted=True)

        query = SyncDownloadQuery(
            store_id=identity.store_id,
            store_type=identity.store_type,
            server_role=identity.server_role,
            last_sync_time=self._last_download_time(identity),
            page_size=self.page_size,
        )
        try:
            response = await self.client.get_updates(query)
        except Exception as exc:
            logger.error("Fetching updates for store %s failed: %s", identity.store_id, exc)
            return DownloadCycleResult(aborted=True)

        if response is None:
            logger.warning("No response from central for store %s; download cursor unchanged", identity.store_id)
            return DownloadCycleResult(aborted=True)

        result = DownloadCycleResult(
            received=len(response.changes) + len(response.orders),
            server_time=response.server_time,
        )
        if result.received == 0:
            self._advance_cursor(identity, response.server_time, 0)
            logger.info("No new changes for store %s (server time %s)", identity.store_id, response.server_time)
            return result

        with Session(self.engine) as s, suppress_capture(s):
            set_capture_metadata(s, CENTRAL, identity.store_type)
            self._apply_changes(s, response.changes, result)
            self._apply_orders(s, response.orders, result)
            self._sweep_central_entries(s)

        self._advance_cursor(identity, response.server_time, result.applied)
        logger.info(
            "Download cycle for store %s: received=%d applied=%d duplicates=%d skipped=%d failed=%d",
            identity.store_id, result.received, result.applied,
            result.duplicates, result.skipped, result.failed,
        )
        return result

    # ── Apply ────────────────────────────────────────────────────────────────

    def _apply_changes(self, s: Session, changes: Sequence[SyncChange], result: DownloadCycleResult) -> None:
        known = self._known_log_ids(s, changes)
        for change in changes:
            if change.log_id is not None and change.log_id in known:
                result.duplicates += 1
                continue

            action = decode_action(change.action)
            if action is None:
                logger.warning("Skipping change %s: unrecognized action %r", change.log_id, change.action)
                result.skipped += 1
                continue

            log_id = change.log_id or uuid.uuid4()
            s.add(self._mirror_entry(change, log_id, action))
            try:
                try:
                    descriptor = self.registry.resolve(change.table_name)
                    key_values = self.registry.parse_key(descriptor, change.record_id)
                    self.registry.apply(s, action, descriptor, key_values, change.payload)
                    applied = True
                except SyncApplyError as exc:
                    logger.warning("Skipping change %s (%s %s %s): %s", log_id, action,
                                   change.table_name, change.record_id, exc)
                    applied = False
                s.commit()
            except SQLAlchemyError:
                s.rollback()
                logger.exception("Database error applying change %s (%s %s); rolled back",
                                 log_id, change.table_name, change.record_id)
                result.failed += 1
                continue
            except Exception:
                s.rollback()
                logger.exception("Unexpected error applying change %s (%s %s); rolled back",
                                 log_id, change.table_name, change.record_id)
                result.failed += 1
                continue

            known.add(log_id)
            if applied:
                result.applied += 1
            else:
                result.skipped += 1

    def _apply_orders(self, s: Session, orders: Sequence[OrderSyncItem], result: DownloadCycleResult) -> None:
        for item in orders:
            try:
                apply_order_sync(s, item)
                s.commit()
            except SQLAlchemyError:
                s.rollback()
                logger.exception("Database error applying legacy order %s; rolled back", item.order_uid)
                result.failed += 1
                continue
            result.applied += 1

    def _sweep_central_entries(self, s: Session) -> None:
        stale = s.exec(
            select(ChangeLogEntry).where(
                ChangeLogEntry.synced == False,  # noqa: E712
                ChangeLogEntry.source_server == CENTRAL,
            )
        ).all()
        if not stale:
            return
        for entry in stale:
            entry.synced = True
            s.add(entry)
        s.commit()
        logger.info("Marked %d central-originated entries as synced", len(stale))

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _known_log_ids(s: Session, changes: Sequence[SyncChange]) -> Set[uuid.UUID]:
        incoming = [c.log_id for c in changes if c.log_id is not None]
        if not incoming:
            return set()
        return set(s.exec(select(ChangeLogEntry.log_id).where(col(ChangeLogEntry.log_id).in_(incoming))).all())

    @staticmethod
    def _mirror_entry(change: SyncChange, log_id: uuid.UUID, action: str) -> ChangeLogEntry:
        now = datetime.utcnow()
        return ChangeLogEntry(
            log_id=log_id,
            table_name=change.table_name,
            record_id=change.record_id,
            action=action,
            updated_at=naive_utc(change.updated_at) or now,
            synced_at=now,
            synced=True,
            source_server=change.source_server or CENTRAL,
            store_type=change.store_type,
            payload=json.dumps(change.payload) if change.payload is not None else None,
        )

    def _last_download_time(self, identity: SyncIdentity) -> Optional[datetime]:
        with Session(self.engine) as s:
            state = get_cursor(s, identity.store_id, identity.store_type)
            return state.last_download_time if state else None

    def _advance_cursor(self, identity: SyncIdentity, server_time: datetime, count: int) -> None:
        with Session(self.engine) as s:
            state = ensure_cursor(s, identity.store_id, identity.store_type)
            state.server_role = identity.server_role
            if identity.server_ip:
                state.server_ip = identity.server_ip
            state.last_download_time = naive_utc(server_time)
            state.last_sync_count = count
            s.add(state)
            s.commit()
