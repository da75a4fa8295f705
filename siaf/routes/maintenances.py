from datetime import timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db, get_session_factory, commit_or_conflict
from ..errors import NotFoundError, ValidationError
from ..models.models import Asset, Maintenance, User
from ..auth.security import get_current_user
from ..schemas.maintenances import CompleteRequest, MaintenanceCreate, MaintenanceUpdate
from ..services import aggregator
from ..services.codes import MAINTENANCE_PREFIX, allocate_code
from ..services.query_builder import FilteredQuery, Pagination, exact
from ..services.sql import days_ago, utc_now, utc_today
from ..services.transitions import apply_transition


router = APIRouter(prefix="/maintenances", tags=["maintenances"])
logger = structlog.get_logger(__name__)

MAINTENANCE_SELECT = (
    select(
        Maintenance.__table__,
        Asset.name.label("asset_name"),
        Asset.asset_code.label("asset_code"),
        User.full_name.label("technician_name"),
    )
    .select_from(Maintenance)
    .outerjoin(Asset, Maintenance.asset_id == Asset.id)
    .outerjoin(User, Maintenance.technician_id == User.id)
)

MAINTENANCE_LISTING = FilteredQuery(
    MAINTENANCE_SELECT,
    filters=[
        exact("status", Maintenance.status),
        exact("type", Maintenance.type),
        exact("asset_id", Maintenance.asset_id),
        exact("technician_id", Maintenance.technician_id),
    ],
    order_by=[Maintenance.scheduled_date.desc(), Maintenance.created_at.desc(), Maintenance.id.desc()],
)


def fetch_maintenance(db: Session, maintenance_id: int) -> Optional[dict]:
    row = db.execute(MAINTENANCE_SELECT.where(Maintenance.id == maintenance_id)).first()
    return dict(row._mapping) if row else None


def _upcoming(days: int):
    today = utc_today()
    return (
        Maintenance.scheduled_date.between(today, today + timedelta(days=days)),
        Maintenance.status == "scheduled",
    )


def _overdue():
    return (Maintenance.scheduled_date < utc_today(), Maintenance.status == "scheduled")


def _check_technician(db: Session, technician_id: Optional[int]) -> None:
    if technician_id is not None and db.get(User, technician_id) is None:
        raise ValidationError.single("technician_id", "User not found")


@router.get("/stats/overview")
def maintenance_stats(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    count = select(func.count()).select_from(Maintenance)
    stats = aggregator.gather(session_factory, {
        "total": aggregator.scalar(count),
        "byStatus": select(Maintenance.status, func.count().label("count")).group_by(Maintenance.status),
        "byType": select(Maintenance.type, func.count().label("count")).group_by(Maintenance.type),
        "upcoming": aggregator.scalar(count.where(*_upcoming(settings.upcoming_window_days))),
        "overdue": aggregator.scalar(count.where(*_overdue())),
        "totalCost": aggregator.scalar(
            select(func.coalesce(func.sum(Maintenance.cost), 0)).where(
                Maintenance.completed_date >= days_ago(365), Maintenance.cost.is_not(None)
            )
        ),
    })
    stats["totalCost"] = float(stats["totalCost"] or 0)
    return {"stats": stats}


@router.get("/upcoming/list")
def upcoming_maintenances(
    days: int = Query(settings.upcoming_window_days, ge=1, le=365),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    q = MAINTENANCE_SELECT.where(*_upcoming(days)).order_by(Maintenance.scheduled_date.asc(), Maintenance.id.asc())
    return {"upcomingMaintenances": [dict(r._mapping) for r in db.execute(q)]}


@router.get("/overdue/list")
def overdue_maintenances(db: Session = Depends(get_db), _=Depends(get_current_user)):
    q = MAINTENANCE_SELECT.where(*_overdue()).order_by(Maintenance.scheduled_date.asc(), Maintenance.id.asc())
    return {"overdueMaintenances": [dict(r._mapping) for r in db.execute(q)]}


@router.get("")
def list_maintenances(
    status: Optional[str] = None,
    type: Optional[str] = None,
    asset_id: Optional[int] = None,
    technician_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    params = {"status": status, "type": type, "asset_id": asset_id, "technician_id": technician_id}
    maintenances, pagination = MAINTENANCE_LISTING.page(db, params, Pagination(page, limit))
    return {"maintenances": maintenances, "pagination": pagination}


@router.get("/{maintenance_id}")
def get_maintenance(maintenance_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    maintenance = fetch_maintenance(db, maintenance_id)
    if not maintenance:
        raise NotFoundError("Maintenance not found")
    return {"maintenance": maintenance}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_maintenance(payload: MaintenanceCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if db.get(Asset, payload.asset_id) is None:
        raise NotFoundError("Asset not found")
    _check_technician(db, payload.technician_id)
    row = Maintenance(
        maintenance_code=allocate_code(db, Maintenance.maintenance_code, MAINTENANCE_PREFIX),
        status="scheduled",
        **payload.model_dump(),
    )
    db.add(row)
    commit_or_conflict(db, "Maintenance code already taken, try again")
    logger.info("maintenance_scheduled", maintenance_id=row.id, code=row.maintenance_code, asset_id=row.asset_id, by=user.id)
    return {"message": "Maintenance scheduled successfully", "maintenance": fetch_maintenance(db, row.id)}


@router.put("/{maintenance_id}")
def update_maintenance(maintenance_id: int, payload: MaintenanceUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    values = payload.model_dump(exclude_unset=True)
    _check_technician(db, values.get("technician_id"))
    values["updated_at"] = utc_now()
    apply_transition(db, Maintenance, maintenance_id, values, entity="Maintenance")
    db.commit()
    logger.info("maintenance_updated", maintenance_id=maintenance_id, by=user.id)
    return {"message": "Maintenance updated successfully", "maintenance": fetch_maintenance(db, maintenance_id)}


@router.put("/{maintenance_id}/start")
def start_maintenance(maintenance_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    apply_transition(
        db, Maintenance, maintenance_id,
        {"status": "in_progress", "updated_at": utc_now()},
        allowed_from=("scheduled",),
        entity="Maintenance",
    )
    db.commit()
    logger.info("maintenance_started", maintenance_id=maintenance_id, by=user.id)
    return {"message": "Maintenance started successfully", "maintenance": fetch_maintenance(db, maintenance_id)}


@router.put("/{maintenance_id}/complete")
def complete_maintenance(
    maintenance_id: int,
    payload: Optional[CompleteRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    now = utc_now()
    values = {"status": "completed", "completed_date": now, "updated_at": now}
    if payload is not None:
        if payload.notes:
            values["notes"] = payload.notes
        if payload.cost is not None:
            values["cost"] = payload.cost
    apply_transition(
        db, Maintenance, maintenance_id, values,
        allowed_from=("scheduled", "in_progress"),
        entity="Maintenance",
    )
    db.commit()
    logger.info("maintenance_completed", maintenance_id=maintenance_id, by=user.id)
    return {"message": "Maintenance completed successfully", "maintenance": fetch_maintenance(db, maintenance_id)}
