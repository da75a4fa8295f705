from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, StrictBool


RequisitionType = Literal["purchase", "service"]
Priority = Literal["low", "medium", "high", "critical"]


class RequisitionItemIn(BaseModel):
    item_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class RequisitionBase(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    type: RequisitionType = "purchase"
    description: Optional[str] = None
    department: Optional[str] = None
    priority: Priority = "medium"
    estimated_cost: Optional[Decimal] = Field(default=None, ge=0)
    justification: Optional[str] = None
    notes: Optional[str] = None


class RequisitionCreate(RequisitionBase):
    items: List[RequisitionItemIn] = Field(default_factory=list)


class RequisitionUpdate(RequisitionBase):
    items: Optional[List[RequisitionItemIn]] = None


class RequisitionDecision(BaseModel):
    approved: StrictBool
    notes: Optional[str] = None
