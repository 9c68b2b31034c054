"""
Workshop business tables: customers, technicians, quotations, maintenance
orders and quotation photos.

These rows are owned by the CRUD services; the sync engine only captures,
ships and replays them. Cross-table references are plain uid columns.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Field, SQLModel


class Customer(SQLModel, table=True):
    __tablename__ = "customers"

    customer_uid: str = Field(primary_key=True)
    name: Optional[str] = None
    customer_type: Optional[str] = None
    phone: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = None
    county: Optional[str] = None
    township: Optional[str] = None
    source: Optional[str] = None

    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None
    modification_timestamp: Optional[datetime] = None
    modified_by: Optional[str] = None


class Technician(SQLModel, table=True):
    __tablename__ = "technicians"

    technician_uid: str = Field(primary_key=True)
    technician_name: str
    store_uid: Optional[str] = None
    job_title: Optional[str] = None


class Quotation(SQLModel, table=True):
    __tablename__ = "quotations"

    quotation_uid: str = Field(primary_key=True)
    quotation_no: Optional[str] = Field(default=None, index=True)
    store_uid: Optional[str] = None
    customer_uid: Optional[str] = None
    car_uid: Optional[str] = None
    estimation_technician_uid: Optional[str] = None
    status: Optional[str] = None
    valuation: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    remark: Optional[str] = None

    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None
    modification_timestamp: Optional[datetime] = None
    modified_by: Optional[str] = None


class Order(SQLModel, table=True):
    """Maintenance order created from a confirmed quotation."""

    __tablename__ = "orders"

    order_uid: str = Field(primary_key=True)
    order_no: Optional[str] = Field(default=None, index=True)
    store_uid: Optional[str] = Field(default=None, index=True)
    quotation_uid: Optional[str] = None
    customer_uid: Optional[str] = None
    car_uid: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)

    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None
    modification_timestamp: Optional[datetime] = None
    modified_by: Optional[str] = None


class PhotoData(SQLModel, table=True):
    """
    Metadata for one uploaded damage photo.

    The image itself lives on disk as <photo_uid><ext> under the photo
    storage root; only the row is captured, the file travels as an
    attachment added at upload time.
    """

    __tablename__ = "photo_data"

    photo_uid: str = Field(primary_key=True)
    quotation_uid: Optional[str] = Field(default=None, index=True)
    related_uid: Optional[str] = None
    position: Optional[str] = None
    comment: Optional[str] = None
    photo_shape: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    flag_finish: Optional[bool] = None
    maintenance_progress: Optional[Decimal] = Field(default=None, max_digits=5, decimal_places=2)
    fix_type: Optional[str] = None
