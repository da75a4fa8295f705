from typing import Literal, Optional

from pydantic import BaseModel, Field


Priority = Literal["low", "medium", "high", "critical"]
IncidentStatus = Literal["open", "assigned", "in_progress", "resolved", "closed"]


class IncidentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    priority: Priority = "medium"
    asset_id: Optional[int] = None
    assigned_to: Optional[int] = None


class IncidentUpdate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    priority: Optional[Priority] = None
    status: Optional[IncidentStatus] = None
    assigned_to: Optional[int] = None
    solution: Optional[str] = None


class AssignRequest(BaseModel):
    assigned_to: int


class ResolveRequest(BaseModel):
    solution: str = Field(min_length=1)
