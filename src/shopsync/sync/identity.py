"""
Node identity: which role this process runs as and which store it speaks for.

The role comes from settings and may be overridden by an active
SyncMachineProfile row keyed by SYNC_MACHINE_KEY, so one image can be
deployed to many stores and told apart in the database.
"""
import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional

from sqlmodel import Session, select

from shopsync.config import Settings
from shopsync.models.sync import SyncMachineProfile

logger = logging.getLogger(__name__)

CENTRAL = "Central"
DIRECT_STORE = "DirectStore"
ALLIANCE_STORE = "AllianceStore"

ROLE_LABELS = {
    CENTRAL: "中央",
    DIRECT_STORE: "直營店",
    ALLIANCE_STORE: "加盟店",
}

_ROLE_ALIASES = {
    "central": CENTRAL,
    "中央": CENTRAL,
    "directstore": DIRECT_STORE,
    "direct": DIRECT_STORE,
    "直營店": DIRECT_STORE,
    "alliancestore": ALLIANCE_STORE,
    "alliance": ALLIANCE_STORE,
    "加盟店": ALLIANCE_STORE,
}


def normalize_role(role: Optional[str]) -> str:
    """Canonical role name; unknown values are returned trimmed, blank as ""."""
    if not role or not role.strip():
        return ""
    trimmed = role.strip()
    return _ROLE_ALIASES.get(trimmed.lower(), trimmed)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class SyncIdentity:
    server_role: str
    store_id: Optional[str] = None
    store_type: Optional[str] = None
    server_ip: Optional[str] = None

    @property
    def is_central(self) -> bool:
        return self.server_role == CENTRAL

    @property
    def is_branch(self) -> bool:
        return self.server_role in (DIRECT_STORE, ALLIANCE_STORE)

    @property
    def is_resolved(self) -> bool:
        """Central needs nothing else; a branch needs both store id and store type."""
        if self.is_central:
            return True
        return self.is_branch and bool(self.store_id) and bool(self.store_type)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncIdentity":
        return cls(
            server_role=normalize_role(settings.server_role),
            store_id=_blank_to_none(settings.store_id),
            store_type=_blank_to_none(settings.store_type),
            server_ip=_blank_to_none(settings.server_ip),
        )


def resolve_identity(settings: Settings, engine) -> Optional[SyncIdentity]:
    """
    Settings identity, overlaid with the machine profile when a machine key
    is configured. Returns None if the key matches no active profile.
    """
    identity = SyncIdentity.from_settings(settings)
    machine_key = _blank_to_none(settings.machine_key)
    if machine_key is None:
        return identity

    with Session(engine) as s:
        profile = s.exec(
            select(SyncMachineProfile).where(
                SyncMachineProfile.machine_key == machine_key,
                SyncMachineProfile.is_active == True,  # noqa: E712
            )
        ).first()

    if profile is None:
        logger.warning("No active sync machine profile for key %s", machine_key)
        return None

    return dataclasses.replace(
        identity,
        server_role=normalize_role(profile.server_role) or identity.server_role,
        store_id=_blank_to_none(profile.store_id) or identity.store_id,
        store_type=_blank_to_none(profile.store_type) or identity.store_type,
    )
