"""
Table-name driven entity registry.

Change-log entries only carry a table name, a comma-joined key string and a
JSON payload. The registry maps each synced table name to a descriptor that
knows the SQLModel class, its primary-key columns (in key order) and the
payload projector for that table, so a change can be applied without any
per-table code:

    registry = get_registry()
    descriptor = registry.resolve("Orders")          # case-insensitive
    key = registry.parse_key(descriptor, "ORD-1")
    registry.apply(session, "UPSERT", descriptor, key, payload)

Conflicts are last-writer-wins: an incoming payload replaces every non-key
column of the existing row.
"""
import enum
import json
import logging
import types
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, Union, get_args, get_origin

from pydantic import ValidationError
from sqlalchemy import inspect as sa_inspect
from sqlmodel import Session, SQLModel

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ","
DELETE = "DELETE"
WRITE_ACTIONS = ("INSERT", "UPDATE", "UPSERT")
VALID_ACTIONS = WRITE_ACTIONS + (DELETE,)


# ── Exceptions ────────────────────────────────────────────────────────────────

class SyncApplyError(RuntimeError):
    """A single change could not be applied; the record is skipped."""


class UnknownTableError(SyncApplyError):
    """No registered entity matches the change's table name."""


class KeyParseError(SyncApplyError):
    """The record id does not match the entity's primary-key columns."""


class PayloadError(SyncApplyError):
    """The payload is missing or cannot be decoded into the entity."""


class RecordNotFoundError(SyncApplyError):
    """The row a change refers to does not exist locally."""


# ── Helpers ───────────────────────────────────────────────────────────────────

def decode_action(action: Optional[str]) -> Optional[str]:
    """Return the upper-case action, or None if it is not a sync action."""
    if not action:
        return None
    normalized = action.strip().upper()
    return normalized if normalized in VALID_ACTIONS else None


def _unwrap_optional(annotation: Any) -> Any:
    if get_origin(annotation) in (Union, types.UnionType):
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _format_segment(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return value.name
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True)
class KeyColumn:
    name: str
    python_type: Any
    nullable: bool

    def convert(self, segment: str) -> Any:
        if segment == "":
            if self.nullable:
                return None
            raise KeyParseError(f"Key column '{self.name}' must not be empty")

        target = self.python_type
        try:
            if target is str:
                return segment
            if target is uuid.UUID:
                return uuid.UUID(segment)
            if target is datetime:
                return datetime.fromisoformat(segment)
            if target is date:
                return date.fromisoformat(segment)
            if isinstance(target, type) and issubclass(target, enum.Enum):
                return target[segment]
            if target is bool:
                lowered = segment.lower()
                if lowered in ("true", "1"):
                    return True
                if lowered in ("false", "0"):
                    return False
                raise ValueError(f"not a boolean: {segment!r}")
            return target(segment)
        except (ValueError, KeyError, TypeError, ArithmeticError) as exc:
            raise KeyParseError(
                f"Cannot convert '{segment}' for key column '{self.name}': {exc}"
            ) from exc


# ── Descriptor ────────────────────────────────────────────────────────────────

@dataclass
class EntityDescriptor:
    """Everything needed to materialize one table from untyped changes."""

    table_name: str
    model: Type[SQLModel]
    key_columns: Tuple[KeyColumn, ...]
    column_names: Tuple[str, ...]
    projector: Any = None  # PayloadProjector; typed loosely to avoid an import cycle

    @property
    def key_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.key_columns)

    def key_of(self, instance: SQLModel) -> Tuple[Any, ...]:
        return tuple(getattr(instance, name) for name in self.key_names)

    def identity(self, key_values: Sequence[Any]) -> Any:
        """Argument for Session.get(): scalar for single keys, tuple for composites."""
        values = tuple(key_values)
        return values[0] if len(values) == 1 else values

    def decode(self, payload: Any, key_values: Optional[Sequence[Any]] = None) -> SQLModel:
        """Validate a payload into a new, unattached instance of the model.

        Key columns missing from the payload are filled from key_values.

        Raises:
            PayloadError: if the payload is not a JSON object or fails validation.
        """
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise PayloadError(f"Payload for {self.table_name} is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise PayloadError(f"Payload for {self.table_name} must be a JSON object")

        data = dict(payload)
        if key_values is not None:
            for name, value in zip(self.key_names, key_values):
                data.setdefault(name, value)

        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            raise PayloadError(f"Payload for {self.table_name} failed validation: {exc}") from exc


# ── Registry ──────────────────────────────────────────────────────────────────

class EntityRegistry:
    """Lookup table from storage name to EntityDescriptor."""

    def __init__(self) -> None:
        self._descriptors: Dict[str, EntityDescriptor] = {}

    def register(self, model: Type[SQLModel], *, projector: Any = None) -> EntityDescriptor:
        from shopsync.sync.projectors import PayloadProjector

        table = model.__table__
        mapper = sa_inspect(model)
        key_columns = []
        for column in mapper.primary_key:
            field_info = model.model_fields.get(column.key)
            python_type = _unwrap_optional(field_info.annotation) if field_info else str
            key_columns.append(
                KeyColumn(name=column.key, python_type=python_type, nullable=bool(column.nullable))
            )

        descriptor = EntityDescriptor(
            table_name=table.name,
            model=model,
            key_columns=tuple(key_columns),
            column_names=tuple(c.key for c in mapper.column_attrs),
            projector=projector or PayloadProjector(),
        )
        self._descriptors[table.name.lower()] = descriptor
        return descriptor

    def find(self, table_name: Optional[str]) -> Optional[EntityDescriptor]:
        if not table_name:
            return None
        return self._descriptors.get(table_name.strip().lower())

    def resolve(self, table_name: Optional[str]) -> EntityDescriptor:
        descriptor = self.find(table_name)
        if descriptor is None:
            raise UnknownTableError(f"No synced entity for table '{table_name}'")
        return descriptor

    def descriptor_for(self, instance: Any) -> Optional[EntityDescriptor]:
        table = getattr(type(instance), "__table__", None)
        if table is None:
            return None
        descriptor = self._descriptors.get(table.name.lower())
        if descriptor is None or not isinstance(instance, descriptor.model):
            return None
        return descriptor

    def is_watched(self, table_name: str) -> bool:
        return self.find(table_name) is not None

    @property
    def table_names(self) -> List[str]:
        return sorted(d.table_name for d in self._descriptors.values())

    # ── Keys ──────────────────────────────────────────────────────────────────

    def parse_key(self, descriptor: EntityDescriptor, record_id: Optional[str]) -> Tuple[Any, ...]:
        """Split a record id into native key values, in key-column order.

        Raises:
            KeyParseError: on a segment-count mismatch or a conversion failure.
        """
        if record_id is None:
            raise KeyParseError(f"Missing record id for {descriptor.table_name}")

        segments = [segment.strip() for segment in record_id.split(KEY_SEPARATOR)]
        if len(segments) != len(descriptor.key_columns):
            raise KeyParseError(
                f"Record id '{record_id}' has {len(segments)} segment(s); "
                f"{descriptor.table_name} has {len(descriptor.key_columns)} key column(s)"
            )
        return tuple(col.convert(seg) for col, seg in zip(descriptor.key_columns, segments))

    @staticmethod
    def format_key(key_values: Iterable[Any]) -> str:
        return KEY_SEPARATOR.join(_format_segment(v) for v in key_values)

    # ── Apply ─────────────────────────────────────────────────────────────────

    def apply(
        self,
        session: Session,
        action: str,
        descriptor: EntityDescriptor,
        key_values: Sequence[Any],
        payload: Optional[Dict[str, Any]],
    ) -> str:
        """
        Apply one change to the session (caller commits).

        Returns:
            "inserted", "updated", "deleted" or "unchanged" (delete of a
            missing row).

        Raises:
            PayloadError: write action without a usable payload.
            SyncApplyError: unsupported action.
        """
        normalized = decode_action(action)
        identity = descriptor.identity(key_values)

        if normalized == DELETE:
            existing = session.get(descriptor.model, identity)
            if existing is None:
                logger.debug("DELETE on %s %s: row already absent", descriptor.table_name, key_values)
                return "unchanged"
            session.delete(existing)
            return "deleted"

        if normalized not in WRITE_ACTIONS:
            raise SyncApplyError(f"Unsupported sync action '{action}'")
        if payload is None:
            raise PayloadError(f"{normalized} on {descriptor.table_name} requires a payload")

        incoming = descriptor.decode(payload, key_values)
        descriptor.projector.check(payload)
        existing = session.get(descriptor.model, identity)

        if existing is not None:
            for name in descriptor.column_names:
                if name in descriptor.key_names:
                    continue
                setattr(existing, name, getattr(incoming, name))
            session.add(existing)
            outcome = "updated"
        else:
            for name, value in zip(descriptor.key_names, key_values):
                setattr(incoming, name, value)
            session.add(incoming)
            outcome = "inserted"

        descriptor.projector.store(payload, key_values)
        return outcome


def build_default_registry(photo_storage_root: Optional[str] = None) -> EntityRegistry:
    """Register every shop table that is replicated between nodes."""
    from shopsync.models.purchase import PurchaseItem, PurchaseOrder
    from shopsync.models.vehicle import Brand, BrandModel, Car
    from shopsync.models.workshop import Customer, Order, PhotoData, Quotation, Technician
    from shopsync.sync.projectors import PhotoPayloadProjector

    registry = EntityRegistry()
    for model in (Brand, BrandModel, Car, Customer, Technician, Quotation, Order,
                  PurchaseOrder, PurchaseItem):
        registry.register(model)
    registry.register(PhotoData, projector=PhotoPayloadProjector(storage_root=photo_storage_root))
    return registry


_registry: Optional[EntityRegistry] = None


def get_registry() -> EntityRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry
