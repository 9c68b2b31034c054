"""
APScheduler job for background store sync.

Every interval a branch uploads its pending change log, then pulls what
central has for it. Upload always runs first so a branch's own edits reach
central before it applies anything newer.

The scheduler runs inside the branch worker process (wired in __main__.py).
"""
import logging
from datetime import datetime
from typing import Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from shopsync.config import Settings, get_settings
from shopsync.sync.download import DownloadCycleResult, DownloadPump
from shopsync.sync.identity import resolve_identity
from shopsync.sync.remote import RemoteSyncClient
from shopsync.sync.upload import UploadCycleResult, UploadPump

logger = logging.getLogger(__name__)


def build_scheduler(engine, client: RemoteSyncClient) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine for the local database.
        client: Remote sync client shared by both pumps.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _store_sync,
        trigger="interval",
        minutes=settings.effective_interval_minutes,
        id="store_sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs={"engine": engine, "client": client},
    )

    return scheduler


async def run_sync_cycle(
    engine,
    client: RemoteSyncClient,
    settings: Optional[Settings] = None,
) -> Optional[Tuple[UploadCycleResult, DownloadCycleResult]]:
    """
    One upload-then-download pass. Returns None when this node has nothing
    to sync (central role, unknown machine key, or incomplete identity).
    """
    settings = settings or get_settings()
    identity = resolve_identity(settings, engine)
    if identity is None:
        logger.warning("Sync identity could not be resolved; skipping cycle")
        return None
    if not identity.is_branch:
        logger.info("Node role %r does not pull/push store sync; skipping", identity.server_role)
        return None
    if not identity.is_resolved:
        logger.warning("Branch identity incomplete (store_id=%r, store_type=%r); skipping",
                       identity.store_id, identity.store_type)
        return None

    batch_size = settings.effective_batch_size
    upload = await UploadPump(client, engine, batch_size=batch_size).run_cycle(identity)
    download = await DownloadPump(client, engine, page_size=batch_size).run_cycle(identity)
    return upload, download


async def _store_sync(engine, client: RemoteSyncClient) -> None:
    """Interval job. Any failure is logged; the next interval runs normally."""
    logger.info("Store sync starting at %s", datetime.utcnow().isoformat())
    try:
        await run_sync_cycle(engine, client)
    except Exception as exc:
        logger.error("Store sync failed: %s", exc)
