from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


MaintenanceType = Literal["preventive", "corrective", "predictive"]


class MaintenanceBase(BaseModel):
    type: MaintenanceType
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    technician_id: Optional[int] = None
    cost: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    notes: Optional[str] = None


class MaintenanceCreate(MaintenanceBase):
    asset_id: int
    scheduled_date: date


class MaintenanceUpdate(MaintenanceBase):
    scheduled_date: Optional[date] = None


class CompleteRequest(BaseModel):
    notes: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, ge=0)
