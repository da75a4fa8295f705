from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    Text,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def int_pk() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


# Enumerations are stored as plain strings; allowed values live here and in the schemas
USER_ROLES = ("admin", "user")
ASSET_STATUSES = ("active", "inactive", "maintenance", "retired")
INCIDENT_PRIORITIES = ("low", "medium", "high", "critical")
INCIDENT_STATUSES = ("open", "assigned", "in_progress", "resolved", "closed")
MAINTENANCE_TYPES = ("preventive", "corrective", "predictive")
MAINTENANCE_STATUSES = ("scheduled", "in_progress", "completed")
FORM_STATUSES = ("pending", "approved", "rejected")
REQUISITION_TYPES = ("purchase", "service")
REQUISITION_STATUSES = ("pending", "approved", "rejected", "completed")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = int_pk()
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)  # hash, never plain text
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="user")
    department: Mapped[Optional[str]] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


class AssetCategory(Base):
    __tablename__ = "asset_categories"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Asset(Base):
    __tablename__ = "assets"

    id: Mapped[int] = int_pk()
    asset_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("asset_categories.id"))
    brand: Mapped[Optional[str]] = mapped_column(String(50))
    model: Mapped[Optional[str]] = mapped_column(String(50))
    serial_number: Mapped[Optional[str]] = mapped_column(String(100))
    purchase_date: Mapped[Optional[date]] = mapped_column(Date)
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    supplier: Mapped[Optional[str]] = mapped_column(String(100))
    location: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(20), default="active")
    responsible_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    warranty_expiry: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    category = relationship("AssetCategory")
    responsible = relationship("User")


class Incident(Base):
    __tablename__ = "incidents"

    id: Mapped[int] = int_pk()
    incident_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    asset_id: Mapped[Optional[int]] = mapped_column(ForeignKey("assets.id"))
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    status: Mapped[str] = mapped_column(String(20), default="open")
    reported_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    reported_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    resolved_date: Mapped[Optional[datetime]] = mapped_column(DateTime)  # stamped once, on resolve/close
    solution: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Maintenance(Base):
    __tablename__ = "maintenances"

    id: Mapped[int] = int_pk()
    maintenance_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="preventive")
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date)
    completed_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(20), default="scheduled")
    technician_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    supplier: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ResponsiveForm(Base):
    __tablename__ = "responsive_forms"

    id: Mapped[int] = int_pk()
    form_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    previous_responsible_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    new_responsible_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text)
    conditions: Mapped[Optional[str]] = mapped_column(Text)
    observations: Mapped[Optional[str]] = mapped_column(Text)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    status: Mapped[str] = mapped_column(String(20), default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Requisition(Base):
    __tablename__ = "requisitions"

    id: Mapped[int] = int_pk()
    requisition_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="purchase")
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    department: Mapped[Optional[str]] = mapped_column(String(50))
    priority: Mapped[str] = mapped_column(String(10), default="medium")
    estimated_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    justification: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    approval_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    items = relationship("RequisitionItem", back_populates="requisition", cascade="all, delete-orphan")


class RequisitionItem(Base):
    __tablename__ = "requisition_items"

    id: Mapped[int] = int_pk()
    requisition_id: Mapped[int] = mapped_column(ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False)
    item_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))

    requisition = relationship("Requisition", back_populates="items")
