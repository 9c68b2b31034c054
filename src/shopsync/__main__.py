"""
Main entrypoint: branch sync worker (APScheduler interval job).

The central node serves the sync API under uvicorn instead.

Usage:
    python -m shopsync          # starts the branch worker
    python -m shopsync once     # runs a single upload + download cycle
    uvicorn shopsync.api.main:app --host 0.0.0.0 --port 8000  # central API
"""
import asyncio
import logging
import sys

from shopsync.config import get_settings

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_once() -> None:
    from shopsync.db.engine import get_engine
    from shopsync.scheduler.jobs import run_sync_cycle
    from shopsync.sync.remote import HttpRemoteSyncClient

    settings = get_settings()
    engine = get_engine()
    client = HttpRemoteSyncClient.from_settings(settings)
    try:
        outcome = await run_sync_cycle(engine, client, settings)
    finally:
        await client.aclose()

    if outcome is None:
        logger.info("Nothing to sync for this node.")
        return
    upload, download = outcome
    logger.info("Uploaded %d/%d, downloaded %d (applied %d)",
                upload.succeeded, upload.attempted, download.received, download.applied)


async def _run_worker() -> None:
    from shopsync.db.engine import get_engine
    from shopsync.scheduler.jobs import build_scheduler, run_sync_cycle
    from shopsync.sync.remote import HttpRemoteSyncClient

    settings = get_settings()
    engine = get_engine()

    if not settings.central_api_base_url:
        logger.error("CENTRAL_API_BASE_URL is not set; the worker has nowhere to sync to.")
        sys.exit(1)

    client = HttpRemoteSyncClient.from_settings(settings)

    # First pass right away instead of waiting one interval
    try:
        await run_sync_cycle(engine, client, settings)
    except Exception as exc:
        logger.error("Initial sync failed: %s", exc)

    scheduler = build_scheduler(engine, client)
    scheduler.start()
    logger.info("Scheduler started (store sync every %d min)", settings.effective_interval_minutes)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await client.aclose()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m shopsync once` or just `python -m shopsync`
    if len(sys.argv) > 1 and sys.argv[1] == "once":
        asyncio.run(_run_once())
    else:
        asyncio.run(_run_worker())
