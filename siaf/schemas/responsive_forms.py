from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, StrictBool


class ResponsiveFormCreate(BaseModel):
    asset_id: int
    new_responsible_id: int
    transfer_date: date
    reason: str = Field(min_length=1)
    conditions: Optional[str] = None
    observations: Optional[str] = None


class DecisionRequest(BaseModel):
    approved: StrictBool
    comments: Optional[str] = None
