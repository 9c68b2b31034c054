"""
End-to-end: a change made at one branch reaches another branch through central.

Each node has its own in-memory database; the remote client calls the
central service in-process instead of over HTTP.
"""
import pytest
from sqlmodel import Session, select

from shopsync.models.sync import ChangeLogEntry
from shopsync.models.workshop import Order, PhotoData
from shopsync.sync.central import CentralSyncService
from shopsync.sync.download import DownloadPump
from shopsync.sync.remote import RemoteSyncClient
from shopsync.sync.upload import UploadPump


class InProcessClient(RemoteSyncClient):
    def __init__(self, service: CentralSyncService):
        self.service = service

    async def upload_changes(self, request):
        return self.service.process_upload(request)

    async def get_updates(self, query):
        return self.service.get_updates(query)


@pytest.fixture(name="nodes")
def nodes_fixture(registry, capture, engine_factory):
    central = engine_factory()
    branch_a = engine_factory()
    branch_b = engine_factory()
    client = InProcessClient(CentralSyncService(central, registry=registry))
    return central, branch_a, branch_b, client


async def _cycle(engine, client, identity, registry):
    await UploadPump(client, engine, registry=registry).run_cycle(identity)
    return await DownloadPump(client, engine, registry=registry).run_cycle(identity)


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_branch_edit_reaches_other_branch(self, nodes, registry, branch_identity, other_branch_identity):
        central, branch_a, branch_b, client = nodes
        with Session(branch_a) as s:
            s.add(Order(order_uid="ORD-1", status="100"))
            s.commit()

        await _cycle(branch_a, client, branch_identity, registry)
        result = await _cycle(branch_b, client, other_branch_identity, registry)

        assert result.applied == 1
        with Session(central) as s:
            assert s.get(Order, "ORD-1").status == "100"
        with Session(branch_b) as s:
            assert s.get(Order, "ORD-1").status == "100"
            mirror = s.exec(select(ChangeLogEntry)).one()
        assert mirror.synced is True
        assert mirror.source_server == "S1"

    @pytest.mark.asyncio
    async def test_origin_does_not_receive_its_own_change(self, nodes, registry, branch_identity):
        central, branch_a, _, client = nodes
        with Session(branch_a) as s:
            s.add(Order(order_uid="ORD-1", status="100"))
            s.commit()

        result = await _cycle(branch_a, client, branch_identity, registry)

        assert result.received == 0
        with Session(branch_a) as s:
            assert len(s.exec(select(ChangeLogEntry)).all()) == 1

    @pytest.mark.asyncio
    async def test_replayed_change_is_not_uploaded_again(self, nodes, registry, branch_identity, other_branch_identity):
        central, branch_a, branch_b, client = nodes
        with Session(branch_a) as s:
            s.add(Order(order_uid="ORD-1", status="100"))
            s.commit()
        await _cycle(branch_a, client, branch_identity, registry)
        await _cycle(branch_b, client, other_branch_identity, registry)

        upload = await UploadPump(client, branch_b, registry=registry).run_cycle(other_branch_identity)

        assert upload.attempted == 0

    @pytest.mark.asyncio
    async def test_update_and_delete_converge(self, nodes, registry, branch_identity, other_branch_identity):
        central, branch_a, branch_b, client = nodes
        with Session(branch_a) as s:
            s.add(Order(order_uid="ORD-1", status="100"))
            s.add(PhotoData(photo_uid="P1", position="front"))
            s.commit()
            order = s.get(Order, "ORD-1")
            order.status = "220"
            s.add(order)
            s.delete(s.get(PhotoData, "P1"))
            s.commit()

        await _cycle(branch_a, client, branch_identity, registry)
        await _cycle(branch_b, client, other_branch_identity, registry)

        with Session(branch_b) as s:
            assert s.get(Order, "ORD-1").status == "220"
            assert s.get(PhotoData, "P1") is None
