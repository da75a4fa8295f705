from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..db import get_db, get_session_factory, commit_or_conflict
from ..errors import NotFoundError, ValidationError
from ..models.models import Asset, Incident, User
from ..auth.security import get_current_user
from ..schemas.incidents import AssignRequest, IncidentCreate, IncidentUpdate, ResolveRequest
from ..services import aggregator
from ..services.codes import INCIDENT_PREFIX, allocate_code
from ..services.query_builder import FilteredQuery, Pagination, exact, like
from ..services.sql import hours_between, utc_now
from ..services.transitions import apply_transition


router = APIRouter(prefix="/incidents", tags=["incidents"])
logger = structlog.get_logger(__name__)

OPEN_STATES = ("open", "assigned", "in_progress")
RESOLVED_STATES = ("resolved", "closed")

reporter = aliased(User, name="reporter")
assignee = aliased(User, name="assignee")

INCIDENT_SELECT = (
    select(
        Incident.__table__,
        Asset.name.label("asset_name"),
        Asset.asset_code.label("asset_code"),
        reporter.full_name.label("reported_by_name"),
        assignee.full_name.label("assigned_to_name"),
    )
    .select_from(Incident)
    .outerjoin(Asset, Incident.asset_id == Asset.id)
    .outerjoin(reporter, Incident.reported_by == reporter.id)
    .outerjoin(assignee, Incident.assigned_to == assignee.id)
)

INCIDENT_LISTING = FilteredQuery(
    INCIDENT_SELECT,
    filters=[
        exact("status", Incident.status),
        exact("priority", Incident.priority),
        exact("asset_id", Incident.asset_id),
        exact("assigned_to", Incident.assigned_to),
        exact("reported_by", Incident.reported_by),
        like("search", Incident.incident_code, Incident.title),
    ],
    order_by=[Incident.created_at.desc(), Incident.id.desc()],
)


def fetch_incident(db: Session, incident_id: int) -> Optional[dict]:
    row = db.execute(INCIDENT_SELECT.where(Incident.id == incident_id)).first()
    return dict(row._mapping) if row else None


def _resolution_stamp(now):
    # keep the first resolution time
    return func.coalesce(Incident.resolved_date, now)


def _check_references(db: Session, asset_id: Optional[int], assigned_to: Optional[int]) -> None:
    errors = []
    if asset_id is not None and db.get(Asset, asset_id) is None:
        errors.append({"field": "asset_id", "message": "Asset not found"})
    if assigned_to is not None and db.get(User, assigned_to) is None:
        errors.append({"field": "assigned_to", "message": "User not found"})
    if errors:
        raise ValidationError(errors)


@router.get("/stats/overview")
def incident_stats(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    count = select(func.count()).select_from(Incident)
    stats = aggregator.gather(session_factory, {
        "total": aggregator.scalar(count),
        "byStatus": select(Incident.status, func.count().label("count")).group_by(Incident.status),
        "byPriority": select(Incident.priority, func.count().label("count")).group_by(Incident.priority),
        "open": aggregator.scalar(count.where(Incident.status.in_(OPEN_STATES))),
        "resolved": aggregator.scalar(count.where(Incident.status == "resolved")),
        "avgResolutionTime": aggregator.scalar(
            select(func.avg(hours_between(Incident.reported_date, Incident.resolved_date)))
            .where(Incident.resolved_date.is_not(None))
        ),
    })
    avg = stats["avgResolutionTime"]
    stats["avgResolutionTime"] = round(float(avg), 2) if avg is not None else None
    return {"stats": stats}


@router.get("")
def list_incidents(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    asset_id: Optional[int] = None,
    assigned_to: Optional[int] = None,
    reported_by: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    params = {
        "status": status,
        "priority": priority,
        "asset_id": asset_id,
        "assigned_to": assigned_to,
        "reported_by": reported_by,
        "search": search,
    }
    incidents, pagination = INCIDENT_LISTING.page(db, params, Pagination(page, limit))
    return {"incidents": incidents, "pagination": pagination}


@router.get("/{incident_id}")
def get_incident(incident_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    incident = fetch_incident(db, incident_id)
    if not incident:
        raise NotFoundError("Incident not found")
    return {"incident": incident}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_incident(payload: IncidentCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _check_references(db, payload.asset_id, payload.assigned_to)
    row = Incident(
        incident_code=allocate_code(db, Incident.incident_code, INCIDENT_PREFIX),
        title=payload.title,
        description=payload.description,
        asset_id=payload.asset_id,
        priority=payload.priority,
        reported_by=user.id,
        assigned_to=payload.assigned_to,
        status="open",
        reported_date=utc_now(),
    )
    db.add(row)
    commit_or_conflict(db, "Incident code already taken, try again")
    logger.info("incident_created", incident_id=row.id, code=row.incident_code, priority=row.priority, by=user.id)
    return {"message": "Incident created successfully", "incident": fetch_incident(db, row.id)}


@router.put("/{incident_id}")
def update_incident(incident_id: int, payload: IncidentUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    values = payload.model_dump(exclude_unset=True)
    _check_references(db, None, values.get("assigned_to"))
    now = utc_now()
    values["updated_at"] = now
    new_status = values.get("status")
    if new_status in RESOLVED_STATES:
        values["resolved_date"] = _resolution_stamp(now)
    elif new_status in OPEN_STATES:
        # reopened: no resolution until the next resolving transition
        values["resolved_date"] = None
    apply_transition(db, Incident, incident_id, values, entity="Incident")
    db.commit()
    logger.info("incident_updated", incident_id=incident_id, status=new_status, by=user.id)
    return {"message": "Incident updated successfully", "incident": fetch_incident(db, incident_id)}


@router.put("/{incident_id}/assign")
def assign_incident(incident_id: int, payload: AssignRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _check_references(db, None, payload.assigned_to)
    apply_transition(
        db, Incident, incident_id,
        {"assigned_to": payload.assigned_to, "status": "assigned", "updated_at": utc_now()},
        allowed_from=OPEN_STATES,
        entity="Incident",
    )
    db.commit()
    logger.info("incident_assigned", incident_id=incident_id, assigned_to=payload.assigned_to, by=user.id)
    return {"message": "Incident assigned successfully", "incident": fetch_incident(db, incident_id)}


@router.put("/{incident_id}/start")
def start_incident(incident_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    apply_transition(
        db, Incident, incident_id,
        {"status": "in_progress", "updated_at": utc_now()},
        allowed_from=("open", "assigned"),
        entity="Incident",
    )
    db.commit()
    return {"message": "Incident started successfully", "incident": fetch_incident(db, incident_id)}


@router.put("/{incident_id}/resolve")
def resolve_incident(incident_id: int, payload: ResolveRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    now = utc_now()
    apply_transition(
        db, Incident, incident_id,
        {"solution": payload.solution, "status": "resolved", "resolved_date": _resolution_stamp(now), "updated_at": now},
        allowed_from=OPEN_STATES + ("resolved",),
        entity="Incident",
    )
    db.commit()
    logger.info("incident_resolved", incident_id=incident_id, by=user.id)
    return {"message": "Incident resolved successfully", "incident": fetch_incident(db, incident_id)}


@router.put("/{incident_id}/close")
def close_incident(incident_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    now = utc_now()
    apply_transition(
        db, Incident, incident_id,
        {"status": "closed", "resolved_date": _resolution_stamp(now), "updated_at": now},
        allowed_from=("resolved",),
        entity="Incident",
    )
    db.commit()
    logger.info("incident_closed", incident_id=incident_id, by=user.id)
    return {"message": "Incident closed successfully", "incident": fetch_incident(db, incident_id)}
