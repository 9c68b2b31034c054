"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from shopsync.config import get_settings

_engine = None


def init_db(engine) -> None:
    """Create tables, apply column migrations and enable change capture."""
    # Import all models so metadata is populated before create_all
    from shopsync.models.purchase import PurchaseItem, PurchaseOrder  # noqa
    from shopsync.models.sync import ChangeLogEntry, StoreSyncState, SyncMachineProfile  # noqa
    from shopsync.models.vehicle import Brand, BrandModel, Car  # noqa
    from shopsync.models.workshop import Customer, Order, PhotoData, Quotation, Technician  # noqa
    SQLModel.metadata.create_all(engine)

    from shopsync.db.migrations import run_migrations
    run_migrations(engine)

    from shopsync.sync.capture import install_change_capture
    install_change_capture()


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # shared by the API threads and the scheduler
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        init_db(_engine)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
