"""Vehicle reference data: brands, brand models and customer cars."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Brand(SQLModel, table=True):
    __tablename__ = "brands"

    brand_uid: str = Field(primary_key=True)
    brand_name: str


class BrandModel(SQLModel, table=True):
    __tablename__ = "models"

    model_id: Optional[int] = Field(default=None, primary_key=True)
    brand_uid: str = Field(index=True)
    model_name: str


class Car(SQLModel, table=True):
    __tablename__ = "cars"

    car_uid: str = Field(primary_key=True)
    car_no: Optional[str] = Field(default=None, index=True)
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    car_remark: Optional[str] = None
    milage: Optional[int] = None

    creation_timestamp: Optional[datetime] = None
    created_by: Optional[str] = None
    modification_timestamp: Optional[datetime] = None
    modified_by: Optional[str] = None
