"""
Cross-entity reports.

The dashboard and user-activity endpoints are aggregate batches run through
``services.aggregator``; the per-entity reports return their full filtered
row set and summarise those rows in-process.
"""
from collections import Counter
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db, get_session_factory
from ..errors import ValidationError
from ..models.models import Asset, AssetCategory, Incident, Maintenance, Requisition, ResponsiveForm, User
from ..auth.security import get_current_user
from ..services import aggregator
from ..services.query_builder import FilteredQuery, build_predicates, date_range, exact
from ..services.sql import days_ago, utc_today
from .assets import ASSET_SELECT
from .incidents import INCIDENT_SELECT
from .maintenances import MAINTENANCE_SELECT
from .requisitions import REQUISITION_SELECT
from .responsive_forms import FORM_SELECT


router = APIRouter(prefix="/reports", tags=["reports"])
logger = structlog.get_logger(__name__)

OPEN_INCIDENT_STATES = ("open", "assigned", "in_progress")

INVENTORY_REPORT = FilteredQuery(
    ASSET_SELECT.add_columns(User.department.label("responsible_department")),
    filters=[
        exact("category", Asset.category_id),
        exact("status", Asset.status),
        exact("responsible", Asset.responsible_user_id),
        *date_range(Asset.created_at),
    ],
    order_by=[Asset.created_at.desc(), Asset.id.desc()],
)

INCIDENT_REPORT = FilteredQuery(
    INCIDENT_SELECT,
    filters=[
        exact("status", Incident.status),
        exact("priority", Incident.priority),
        exact("asset_id", Incident.asset_id),
        *date_range(Incident.reported_date),
    ],
    order_by=[Incident.reported_date.desc(), Incident.id.desc()],
)

MAINTENANCE_REPORT = FilteredQuery(
    MAINTENANCE_SELECT,
    filters=[
        exact("type", Maintenance.type),
        exact("status", Maintenance.status),
        exact("asset_id", Maintenance.asset_id),
        *date_range(Maintenance.scheduled_date),
    ],
    order_by=[Maintenance.scheduled_date.desc(), Maintenance.id.desc()],
)

FORM_REPORT = FilteredQuery(
    FORM_SELECT,
    filters=[
        exact("status", ResponsiveForm.status),
        exact("asset_id", ResponsiveForm.asset_id),
        *date_range(ResponsiveForm.transfer_date),
    ],
    order_by=[ResponsiveForm.transfer_date.desc(), ResponsiveForm.id.desc()],
)

REQUISITION_REPORT = FilteredQuery(
    REQUISITION_SELECT,
    filters=[
        exact("status", Requisition.status),
        exact("type", Requisition.type),
        exact("department", Requisition.department),
        *date_range(Requisition.created_at),
    ],
    order_by=[Requisition.created_at.desc(), Requisition.id.desc()],
)


def _tally(rows: Iterable[dict], key: str, missing: str = "unknown") -> dict:
    return dict(Counter(row.get(key) or missing for row in rows))


def _money(rows: Iterable[dict], key: str) -> float:
    return float(sum((row.get(key) or Decimal("0") for row in rows), Decimal("0")))


def resolution_hours(incident: dict) -> Optional[float]:
    reported, resolved = incident.get("reported_date"), incident.get("resolved_date")
    if reported is None or resolved is None:
        return None
    return round((resolved - reported).total_seconds() / 3600, 2)


def _report(title: str, filters: dict, rows: List[dict], summary: dict) -> dict:
    return {
        "title": title,
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "filters": filters,
        "data": rows,
        "summary": summary,
    }


@router.get("/dashboard")
def dashboard(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    today = utc_today()
    horizon = today + timedelta(days=settings.upcoming_window_days)

    assets = select(func.count()).select_from(Asset)
    incidents = select(func.count()).select_from(Incident)
    maintenances = select(func.count()).select_from(Maintenance)
    scheduled = maintenances.where(Maintenance.status == "scheduled")

    stats = aggregator.gather(session_factory, {
        "totalAssets": aggregator.scalar(assets.where(Asset.status != "inactive")),
        "assetsByCategory": (
            select(AssetCategory.name, func.count(Asset.id).label("count"))
            .select_from(AssetCategory)
            .outerjoin(Asset, and_(Asset.category_id == AssetCategory.id, Asset.status != "inactive"))
            .group_by(AssetCategory.id, AssetCategory.name)
            .order_by(AssetCategory.name)
        ),
        "assetsWithoutResponsible": aggregator.scalar(
            assets.where(Asset.responsible_user_id.is_(None), Asset.status == "active")
        ),
        "expiredWarranties": aggregator.scalar(
            assets.where(Asset.warranty_expiry < today, Asset.status == "active")
        ),
        "totalIncidents": aggregator.scalar(incidents),
        "openIncidents": aggregator.scalar(incidents.where(Incident.status.in_(OPEN_INCIDENT_STATES))),
        "incidentsByPriority": select(Incident.priority, func.count().label("count")).group_by(Incident.priority),
        "totalMaintenances": aggregator.scalar(maintenances),
        "upcomingMaintenances": aggregator.scalar(
            scheduled.where(Maintenance.scheduled_date >= today, Maintenance.scheduled_date <= horizon)
        ),
        "overdueMaintenances": aggregator.scalar(scheduled.where(Maintenance.scheduled_date < today)),
        "pendingForms": aggregator.scalar(
            select(func.count()).select_from(ResponsiveForm).where(ResponsiveForm.status == "pending")
        ),
        "pendingRequisitions": aggregator.scalar(
            select(func.count()).select_from(Requisition).where(Requisition.status == "pending")
        ),
        "approvedRequisitionsValue": aggregator.scalar(
            select(func.coalesce(func.sum(Requisition.estimated_cost), 0))
            .where(Requisition.status == "approved", Requisition.created_at >= days_ago(30))
        ),
    })
    stats["approvedRequisitionsValue"] = float(stats["approvedRequisitionsValue"] or 0)
    return {"dashboard": stats}


@router.get("/inventory")
def inventory_report(
    category: Optional[int] = None,
    status: Optional[str] = None,
    responsible: Optional[int] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = {"category": category, "status": status, "responsible": responsible, "dateFrom": dateFrom, "dateTo": dateTo}
    assets = INVENTORY_REPORT.apply(filters).fetch_all(db)
    return _report("Inventory Report", filters, assets, {
        "totalAssets": len(assets),
        "byCategory": _tally(assets, "category_name", missing="Uncategorized"),
        "byStatus": _tally(assets, "status"),
        "totalValue": _money(assets, "purchase_price"),
    })


@router.get("/incidents")
def incident_report(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    asset_id: Optional[int] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = {"status": status, "priority": priority, "asset_id": asset_id, "dateFrom": dateFrom, "dateTo": dateTo}
    incidents = INCIDENT_REPORT.apply(filters).fetch_all(db)
    for incident in incidents:
        incident["resolution_hours"] = resolution_hours(incident)
    resolved = [i["resolution_hours"] for i in incidents if i["resolution_hours"] is not None]
    average = round(sum(resolved) / len(resolved), 2) if resolved else 0
    return _report("Incident Report", filters, incidents, {
        "totalIncidents": len(incidents),
        "byStatus": _tally(incidents, "status"),
        "byPriority": _tally(incidents, "priority"),
        "averageResolutionTime": average,
        "resolvedCount": len(resolved),
    })


@router.get("/maintenance")
def maintenance_report(
    type: Optional[str] = None,
    status: Optional[str] = None,
    asset_id: Optional[int] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = {"type": type, "status": status, "asset_id": asset_id, "dateFrom": dateFrom, "dateTo": dateTo}
    maintenances = MAINTENANCE_REPORT.apply(filters).fetch_all(db)
    return _report("Maintenance Report", filters, maintenances, {
        "totalMaintenances": len(maintenances),
        "byType": _tally(maintenances, "type"),
        "byStatus": _tally(maintenances, "status"),
        "totalCost": _money(maintenances, "cost"),
        "completedCount": sum(1 for m in maintenances if m["status"] == "completed"),
    })


@router.get("/responsive-forms")
def responsive_form_report(
    status: Optional[str] = None,
    asset_id: Optional[int] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = {"status": status, "asset_id": asset_id, "dateFrom": dateFrom, "dateTo": dateTo}
    forms = FORM_REPORT.apply(filters).fetch_all(db)
    return _report("Responsive Form Report", filters, forms, {
        "totalForms": len(forms),
        "byStatus": _tally(forms, "status"),
        "approvedCount": sum(1 for f in forms if f["status"] == "approved"),
        "pendingCount": sum(1 for f in forms if f["status"] == "pending"),
    })


@router.get("/requisitions")
def requisition_report(
    status: Optional[str] = None,
    type: Optional[str] = None,
    department: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    filters = {"status": status, "type": type, "department": department, "dateFrom": dateFrom, "dateTo": dateTo}
    requisitions = REQUISITION_REPORT.apply(filters).fetch_all(db)
    approved = [r for r in requisitions if r["status"] in ("approved", "completed")]
    return _report("Requisition Report", filters, requisitions, {
        "totalRequisitions": len(requisitions),
        "byStatus": _tally(requisitions, "status"),
        "byType": _tally(requisitions, "type"),
        "totalEstimatedCost": _money(requisitions, "estimated_cost"),
        "approvedValue": _money(approved, "estimated_cost"),
    })


def _activity_count(model, owner_column, date_column, params: dict):
    predicates = [owner_column == params["user_id"]]
    predicates += build_predicates(date_range(date_column), params)
    return aggregator.scalar(select(func.count()).select_from(model).where(*predicates))


@router.get("/user-activity")
def user_activity(
    user_id: Optional[int] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    session_factory=Depends(get_session_factory),
    _=Depends(get_current_user),
):
    if user_id is None:
        raise ValidationError.single("user_id", "User id is required")
    params = {"user_id": user_id, "dateFrom": dateFrom, "dateTo": dateTo}
    activity = aggregator.gather(session_factory, {
        "incidents_reported": _activity_count(Incident, Incident.reported_by, Incident.reported_date, params),
        "incidents_assigned": _activity_count(Incident, Incident.assigned_to, Incident.reported_date, params),
        "maintenances_assigned": _activity_count(Maintenance, Maintenance.technician_id, Maintenance.scheduled_date, params),
        "requisitions_made": _activity_count(Requisition, Requisition.requested_by, Requisition.created_at, params),
        "forms_approved": _activity_count(ResponsiveForm, ResponsiveForm.approved_by, ResponsiveForm.created_at, params),
    })
    logger.info("user_activity_report", user_id=user_id, date_from=dateFrom, date_to=dateTo)
    return {
        "title": "User Activity Report",
        "user_id": user_id,
        "dateFrom": dateFrom,
        "dateTo": dateTo,
        "activity": activity,
    }
