"""Purchasing tables. Purchase items are keyed by (order uid, line number)."""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel


class PurchaseOrder(SQLModel, table=True):
    __tablename__ = "purchase_orders"

    purchase_order_uid: str = Field(primary_key=True)
    purchase_order_no: Optional[str] = None
    store_uid: Optional[str] = None
    purchase_date: Optional[date] = None
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)

    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None


class PurchaseItem(SQLModel, table=True):
    __tablename__ = "purchase_items"

    purchase_order_uid: str = Field(primary_key=True)
    line_no: int = Field(primary_key=True)
    item_name: str = ""
    category_uid: Optional[str] = None
    unit_price: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    quantity: int = 0
    total_amount: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
