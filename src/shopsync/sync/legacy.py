"""
Order-only download mode.

Older central nodes push maintenance orders as a dedicated `orders` list
instead of generic change-log entries. Each item is copied onto the local
order field by field; unknown orders are created.
"""
import logging

from sqlmodel import Session

from shopsync.models.workshop import Order
from shopsync.sync.schemas import OrderSyncItem

logger = logging.getLogger(__name__)

_ORDER_FIELDS = (
    "order_no",
    "store_uid",
    "quotation_uid",
    "customer_uid",
    "car_uid",
    "status",
    "amount",
    "creation_timestamp",
    "created_by",
    "modification_timestamp",
    "modified_by",
)


def apply_order_sync(session: Session, item: OrderSyncItem) -> Order:
    """Upsert one order from its sync projection (caller commits)."""
    order = session.get(Order, item.order_uid)
    if order is None:
        order = Order(order_uid=item.order_uid)
        logger.debug("Creating order %s from legacy sync", item.order_uid)

    for name in _ORDER_FIELDS:
        setattr(order, name, getattr(item, name))
    session.add(order)
    return order

