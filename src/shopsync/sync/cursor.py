"""StoreSyncState lookups shared by the pumps and the central service."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Session, select

from shopsync.models.sync import StoreSyncState


def get_cursor(session: Session, store_id: str, store_type: str) -> Optional[StoreSyncState]:
    return session.exec(
        select(StoreSyncState).where(
            StoreSyncState.store_id == store_id,
            StoreSyncState.store_type == store_type,
        )
    ).first()


def ensure_cursor(session: Session, store_id: str, store_type: str) -> StoreSyncState:
    """Fetch the cursor row for (store_id, store_type), adding it if missing."""
    state = get_cursor(session, store_id, store_type)
    if state is None:
        state = StoreSyncState(store_id=store_id, store_type=store_type)
        session.add(state)
    return state


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC; convert aware values coming off the wire."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
