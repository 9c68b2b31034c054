"""Shared test fixtures."""
import os
from typing import Generator

# Keep the app's own engine off disk when shopsync.api.main is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from shopsync.models.purchase import PurchaseItem, PurchaseOrder  # noqa: F401
from shopsync.models.sync import ChangeLogEntry, StoreSyncState, SyncMachineProfile  # noqa: F401
from shopsync.models.vehicle import Brand, BrandModel, Car  # noqa: F401
from shopsync.models.workshop import Customer, Order, PhotoData, Quotation, Technician  # noqa: F401
from shopsync.sync.capture import install_change_capture, uninstall_change_capture
from shopsync.sync.identity import ALLIANCE_STORE, DIRECT_STORE, SyncIdentity
from shopsync.sync.registry import build_default_registry


def make_engine():
    """In-memory SQLite engine with every table created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = make_engine()
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(autouse=True)
def _capture_off():
    """Capture is a process-wide listener; each test opts in via `capture`."""
    uninstall_change_capture()
    yield
    uninstall_change_capture()


@pytest.fixture(name="capture")
def capture_fixture():
    install_change_capture()
    yield
    uninstall_change_capture()


@pytest.fixture(name="registry")
def registry_fixture(tmp_path):
    """Default registry with photos stored under a temp directory."""
    return build_default_registry(photo_storage_root=str(tmp_path / "photos"))


@pytest.fixture(name="photo_root")
def photo_root_fixture(tmp_path):
    root = tmp_path / "photos"
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture(name="branch_identity")
def branch_identity_fixture() -> SyncIdentity:
    return SyncIdentity(server_role=DIRECT_STORE, store_id="S1", store_type="Direct", server_ip="10.0.0.5")


@pytest.fixture(name="other_branch_identity")
def other_branch_identity_fixture() -> SyncIdentity:
    return SyncIdentity(server_role=ALLIANCE_STORE, store_id="S2", store_type="Alliance")


@pytest.fixture(name="engine_factory")
def engine_factory_fixture():
    """Separate databases for multi-node tests (central plus branches)."""
    engines = []

    def factory():
        engine = make_engine()
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.dispose()
