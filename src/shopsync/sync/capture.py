"""
Change capture.

An ``after_flush`` listener on every sqlmodel Session turns row mutations of
registered tables into sync_logs rows:

    session.new      -> INSERT (payload = column snapshot)
    session.dirty    -> UPDATE (only if a column value actually changed)
    session.deleted  -> DELETE (no payload)

Entries are inserted through the session's own connection, so they commit or
roll back together with the business write. Capture errors are logged and
never propagate to the business write.

The download pump and the central service wrap their writes in
suppress_capture() so replicated rows are not captured a second time.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect
from sqlmodel import Session

from shopsync.models.sync import ChangeLogEntry
from shopsync.sync.registry import (
    DELETE,
    EntityRegistry,
    RecordNotFoundError,
    decode_action,
    get_registry,
)

logger = logging.getLogger(__name__)

SUPPRESS_KEY = "shopsync.capture_suppressed"
METADATA_KEY = "shopsync.capture_metadata"


@dataclass(frozen=True)
class CaptureMetadata:
    """Provenance stamped onto entries captured in one session."""

    source_server: Optional[str]
    store_type: Optional[str]


# ── Session context ───────────────────────────────────────────────────────────

def set_capture_metadata(
    session: Session,
    source_server: Optional[str],
    store_type: Optional[str],
) -> None:
    session.info[METADATA_KEY] = CaptureMetadata(source_server, store_type)


def get_capture_metadata(session: Session) -> Optional[CaptureMetadata]:
    return session.info.get(METADATA_KEY)


def is_capture_suppressed(session: Session) -> bool:
    return session.info.get(SUPPRESS_KEY, 0) > 0


@contextmanager
def suppress_capture(session: Session) -> Iterator[Session]:
    """Disable capture for writes made through session; nests, restores on exit."""
    session.info[SUPPRESS_KEY] = session.info.get(SUPPRESS_KEY, 0) + 1
    try:
        yield session
    finally:
        depth = session.info.get(SUPPRESS_KEY, 1) - 1
        if depth > 0:
            session.info[SUPPRESS_KEY] = depth
        else:
            session.info.pop(SUPPRESS_KEY, None)


# ── Listener ──────────────────────────────────────────────────────────────────

def install_change_capture() -> None:
    """Register the flush listener (idempotent)."""
    if not event.contains(Session, "after_flush", _capture_after_flush):
        event.listen(Session, "after_flush", _capture_after_flush)
        logger.info("Change capture enabled for: %s", ", ".join(get_registry().table_names))


def uninstall_change_capture() -> None:
    if event.contains(Session, "after_flush", _capture_after_flush):
        event.remove(Session, "after_flush", _capture_after_flush)


def _pending_changes(session: Session) -> Iterator[Tuple[Any, str]]:
    for instance in session.new:
        yield instance, "INSERT"
    for instance in session.dirty:
        if session.is_modified(instance, include_collections=False):
            yield instance, "UPDATE"
    for instance in session.deleted:
        yield instance, DELETE


def _collect_entries(session: Session, registry: EntityRegistry) -> List[Dict[str, Any]]:
    meta = get_capture_metadata(session)
    now = datetime.utcnow()
    rows = []
    for instance, action in _pending_changes(session):
        descriptor = registry.descriptor_for(instance)
        if descriptor is None:
            continue

        if action == DELETE:
            key = sa_inspect(instance).identity or descriptor.key_of(instance)
            payload = None
        else:
            key = descriptor.key_of(instance)
            payload = json.dumps(descriptor.projector.snapshot(instance))

        rows.append({
            "log_id": uuid.uuid4(),
            "table_name": descriptor.table_name,
            "record_id": registry.format_key(key),
            "action": action,
            "updated_at": now,
            "synced_at": now,
            "synced": False,
            "source_server": meta.source_server if meta else None,
            "store_type": meta.store_type if meta else None,
            "payload": payload,
        })
    return rows


def _capture_after_flush(session: Session, flush_context: Any) -> None:
    if is_capture_suppressed(session):
        return
    try:
        rows = _collect_entries(session, get_registry())
        if rows:
            session.connection().execute(ChangeLogEntry.__table__.insert(), rows)
            logger.debug("Captured %d change(s)", len(rows))
    except Exception:
        logger.exception("Change capture failed; business write kept without a log entry")


# ── Manual entries ────────────────────────────────────────────────────────────

def record_manual_change(
    session: Session,
    table_name: str,
    record_id: str,
    action: Optional[str] = "UPDATE",
    store_id: Optional[str] = None,
    store_type: Optional[str] = None,
    registry: Optional[EntityRegistry] = None,
) -> ChangeLogEntry:
    """
    Queue a change-log entry for an existing row without modifying it.

    Used to re-send rows that were written outside the capture path (bulk
    imports, manual repairs). The payload is snapshotted from the row now.

    Raises:
        UnknownTableError / KeyParseError: bad table name or record id.
        RecordNotFoundError: non-DELETE action for a row that does not exist.
        ValueError: action is not a sync action.
    """
    registry = registry or get_registry()
    normalized = decode_action(action or "UPDATE")
    if normalized is None:
        raise ValueError(f"Unsupported sync action '{action}'")

    descriptor = registry.resolve(table_name)
    key_values = registry.parse_key(descriptor, record_id)

    payload = None
    if normalized != DELETE:
        row = session.get(descriptor.model, descriptor.identity(key_values))
        if row is None:
            raise RecordNotFoundError(f"{descriptor.table_name} {record_id} does not exist")
        payload = json.dumps(descriptor.projector.snapshot(row))

    now = datetime.utcnow()
    entry = ChangeLogEntry(
        table_name=descriptor.table_name,
        record_id=registry.format_key(key_values),
        action=normalized,
        updated_at=now,
        synced_at=now,
        synced=False,
        source_server=store_id,
        store_type=store_type,
        payload=payload,
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    logger.info("Manual change-log entry %s queued for %s %s", entry.log_id, entry.table_name, entry.record_id)
    return entry
