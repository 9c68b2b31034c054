"""Tests for server-role normalization and machine-profile resolution."""
from sqlmodel import Session

from shopsync.config import Settings
from shopsync.models.sync import SyncMachineProfile
from shopsync.sync.identity import (
    ALLIANCE_STORE,
    CENTRAL,
    DIRECT_STORE,
    SyncIdentity,
    normalize_role,
    resolve_identity,
)


class TestNormalizeRole:
    def test_aliases(self):
        assert normalize_role("central") == CENTRAL
        assert normalize_role(" Direct ") == DIRECT_STORE
        assert normalize_role("alliance") == ALLIANCE_STORE
        assert normalize_role("ALLIANCESTORE") == ALLIANCE_STORE

    def test_chinese_labels(self):
        assert normalize_role("中央") == CENTRAL
        assert normalize_role("直營店") == DIRECT_STORE
        assert normalize_role("加盟店") == ALLIANCE_STORE

    def test_blank_is_empty(self):
        assert normalize_role(None) == ""
        assert normalize_role("   ") == ""

    def test_unknown_role_is_kept(self):
        assert normalize_role("Warehouse") == "Warehouse"


class TestSyncIdentity:
    def test_central_is_resolved_without_store(self):
        assert SyncIdentity(server_role=CENTRAL).is_resolved

    def test_branch_needs_store_id_and_type(self):
        assert not SyncIdentity(server_role=DIRECT_STORE, store_id="S1").is_resolved
        assert SyncIdentity(server_role=DIRECT_STORE, store_id="S1", store_type="Direct").is_resolved

    def test_unknown_role_is_not_resolved(self):
        assert not SyncIdentity(server_role="Warehouse", store_id="S1", store_type="X").is_resolved

    def test_from_settings_trims_blanks(self):
        settings = Settings(server_role="direct", store_id="S1", store_type="  ", server_ip="")
        identity = SyncIdentity.from_settings(settings)
        assert identity.server_role == DIRECT_STORE
        assert identity.store_type is None
        assert identity.server_ip is None


class TestResolveIdentity:
    def test_without_machine_key_uses_settings(self, engine):
        settings = Settings(server_role="alliance", store_id="S2", store_type="Alliance")
        identity = resolve_identity(settings, engine)
        assert identity == SyncIdentity(server_role=ALLIANCE_STORE, store_id="S2", store_type="Alliance")

    def test_profile_overrides_settings(self, engine):
        with Session(engine) as s:
            s.add(SyncMachineProfile(machine_key="POS-7", server_role="直營店", store_id="S7", store_type="Direct"))
            s.commit()

        settings = Settings(server_role="central", machine_key="POS-7", server_ip="10.0.0.7")
        identity = resolve_identity(settings, engine)

        assert identity.server_role == DIRECT_STORE
        assert identity.store_id == "S7"
        assert identity.server_ip == "10.0.0.7"
        assert identity.is_resolved

    def test_blank_profile_fields_fall_back_to_settings(self, engine):
        with Session(engine) as s:
            s.add(SyncMachineProfile(machine_key="POS-8", server_role="", store_id="S8"))
            s.commit()

        settings = Settings(server_role="direct", machine_key="POS-8", store_type="Direct")
        identity = resolve_identity(settings, engine)

        assert identity.server_role == DIRECT_STORE
        assert identity.store_id == "S8"
        assert identity.store_type == "Direct"

    def test_inactive_profile_is_none(self, engine):
        with Session(engine) as s:
            s.add(SyncMachineProfile(machine_key="POS-9", server_role="Direct", is_active=False))
            s.commit()

        assert resolve_identity(Settings(machine_key="POS-9"), engine) is None

    def test_unknown_machine_key_is_none(self, engine):
        assert resolve_identity(Settings(machine_key="nobody"), engine) is None
