from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


AssetStatus = Literal["active", "inactive", "maintenance", "retired"]


class AssetBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    category_id: int
    description: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    purchase_date: Optional[date] = None
    purchase_price: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    location: Optional[str] = None
    warranty_expiry: Optional[date] = None
    notes: Optional[str] = None

    @field_validator("description", "brand", "model", "serial_number", "supplier", "location", "notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class AssetCreate(AssetBase):
    asset_code: str = Field(min_length=1, max_length=20)
    status: AssetStatus = "active"
    # only set at creation; later changes go through an approved responsive form
    responsible_user_id: Optional[int] = None

    @field_validator("asset_code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("asset_code is required")
        return v


class AssetUpdate(AssetBase):
    status: Optional[AssetStatus] = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = None
