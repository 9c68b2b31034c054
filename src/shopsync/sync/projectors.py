"""
Payload projectors: turn a row into the JSON object shipped with a change.

The default projector serialises every mapped column. PhotoPayloadProjector
additionally attaches the image file as base64 when a photo row is sent and
writes it back to disk when a photo row is applied.
"""
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic_core import to_jsonable_python
from sqlalchemy import inspect as sa_inspect
from sqlmodel import Session, SQLModel

from shopsync.sync.registry import EntityDescriptor, EntityRegistry, KeyParseError, PayloadError

logger = logging.getLogger(__name__)


class PayloadProjector:
    """Column snapshot of a row; no attachments."""

    def snapshot(self, instance: SQLModel) -> Dict[str, Any]:
        mapper = sa_inspect(type(instance))
        return {
            attr.key: to_jsonable_python(getattr(instance, attr.key))
            for attr in mapper.column_attrs
        }

    def project(
        self, session: Session, descriptor: EntityDescriptor, key_values: Sequence[Any]
    ) -> Optional[Dict[str, Any]]:
        """Rebuild the payload from the row's current state (None if it is gone)."""
        row = session.get(descriptor.model, descriptor.identity(key_values))
        if row is None:
            return None
        return self.snapshot(row)

    def attach(self, payload: Dict[str, Any], key_values: Sequence[Any]) -> Dict[str, Any]:
        return payload

    def check(self, payload: Optional[Dict[str, Any]]) -> None:
        """Reject attachment fields that cannot be stored (raises PayloadError)."""
        return None

    def store(self, payload: Optional[Dict[str, Any]], key_values: Sequence[Any]) -> None:
        return None


class PhotoPayloadProjector(PayloadProjector):
    """
    Photo rows travel with their image.

    Files are stored flat as <storage_root>/<photo_uid><ext>. A missing file
    never blocks the row: the scalar fields are still shipped and a warning
    is logged.
    """

    CONTENT_FIELD = "photo_base64"
    EXTENSION_FIELD = "photo_extension"

    def __init__(self, storage_root: Optional[str] = None) -> None:
        self._storage_root = storage_root

    @property
    def storage_root(self) -> Path:
        if self._storage_root:
            return Path(self._storage_root)
        from shopsync.config import get_settings

        return Path(get_settings().photo_storage_root)

    def find_file(self, photo_uid: str) -> Optional[Path]:
        root = self.storage_root
        if not root.is_dir():
            return None
        for candidate in sorted(root.glob(f"{photo_uid}.*")):
            if candidate.is_file():
                return candidate
        return None

    def attach(self, payload: Dict[str, Any], key_values: Sequence[Any]) -> Dict[str, Any]:
        photo_uid = str(key_values[0])
        path = self.find_file(photo_uid)
        if path is None:
            logger.warning("Photo file for %s not found under %s; sending metadata only",
                           photo_uid, self.storage_root)
            return payload
        try:
            content = path.read_bytes()
        except OSError as exc:
            logger.warning("Could not read photo %s: %s", path, exc)
            return payload

        enriched = dict(payload)
        enriched[self.CONTENT_FIELD] = base64.b64encode(content).decode("ascii")
        enriched[self.EXTENSION_FIELD] = path.suffix
        return enriched

    def check(self, payload: Optional[Dict[str, Any]]) -> None:
        if not isinstance(payload, dict):
            return
        for name in (self.CONTENT_FIELD, self.EXTENSION_FIELD):
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise PayloadError(f"{name} must be a string, got {type(value).__name__}")

    def store(self, payload: Optional[Dict[str, Any]], key_values: Sequence[Any]) -> None:
        if not isinstance(payload, dict) or not payload.get(self.CONTENT_FIELD):
            return
        self.check(payload)
        photo_uid = str(key_values[0])
        extension = payload.get(self.EXTENSION_FIELD) or ".jpg"
        if not extension.startswith("."):
            extension = f".{extension}"
        target = self.storage_root / f"{photo_uid}{extension}"
        try:
            content = base64.b64decode(payload[self.CONTENT_FIELD], validate=True)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except (binascii.Error, ValueError, OSError) as exc:
            logger.warning("Could not store photo %s: %s", target, exc)
            return
        logger.debug("Stored photo %s (%d bytes)", target, len(content))


def build_entry_payload(
    session: Session,
    registry: EntityRegistry,
    table_name: str,
    record_id: str,
    action: str,
    stored_payload: Optional[str],
) -> Optional[Dict[str, Any]]:
    """
    Payload to ship for one change-log entry.

    The stored snapshot wins; without one the row's current state is
    reconstructed. Projector attachments are added in both cases. DELETE
    entries carry no payload.
    """
    if (action or "").strip().upper() == "DELETE":
        return None

    payload = None
    if stored_payload:
        try:
            payload = json.loads(stored_payload)
        except ValueError:
            logger.warning("Stored payload for %s %s is not valid JSON; rebuilding",
                           table_name, record_id)
        if not isinstance(payload, dict):
            payload = None

    descriptor = registry.find(table_name)
    if descriptor is None:
        return payload

    try:
        key_values = registry.parse_key(descriptor, record_id)
    except KeyParseError as exc:
        logger.warning("Cannot enrich payload for %s %s: %s", table_name, record_id, exc)
        return payload

    if payload is None:
        payload = descriptor.projector.project(session, descriptor, key_values)
        if payload is None:
            return None
    return descriptor.projector.attach(payload, key_values)
