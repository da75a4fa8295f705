from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..db import get_db, get_session_factory, commit_or_conflict
from ..errors import NotFoundError
from ..models.models import Requisition, RequisitionItem, User
from ..auth.security import get_current_user, require_roles
from ..schemas.requisitions import RequisitionCreate, RequisitionDecision, RequisitionItemIn, RequisitionUpdate
from ..services import aggregator
from ..services.codes import REQUISITION_PREFIX, allocate_code
from ..services.query_builder import FilteredQuery, Pagination, exact, like
from ..services.sql import utc_now
from ..services.transitions import apply_transition


router = APIRouter(prefix="/requisitions", tags=["requisitions"])
logger = structlog.get_logger(__name__)

requester = aliased(User, name="requester")
approver = aliased(User, name="approver")

REQUISITION_SELECT = (
    select(
        Requisition.__table__,
        requester.full_name.label("requested_by_name"),
        approver.full_name.label("approved_by_name"),
    )
    .select_from(Requisition)
    .outerjoin(requester, Requisition.requested_by == requester.id)
    .outerjoin(approver, Requisition.approved_by == approver.id)
)

REQUISITION_LISTING = FilteredQuery(
    REQUISITION_SELECT,
    filters=[
        exact("status", Requisition.status),
        exact("type", Requisition.type),
        exact("priority", Requisition.priority),
        exact("department", Requisition.department),
        exact("requested_by", Requisition.requested_by),
        like("search", Requisition.requisition_code, Requisition.title),
    ],
    order_by=[Requisition.created_at.desc(), Requisition.id.desc()],
)


def _build_items(items: List[RequisitionItemIn]) -> List[RequisitionItem]:
    rows = []
    for item in items:
        total = item.unit_price * item.quantity if item.unit_price is not None else None
        rows.append(RequisitionItem(
            item_name=item.item_name,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=total,
        ))
    return rows


def _items_total(rows: List[RequisitionItem]) -> Optional[Decimal]:
    priced = [r.total_price for r in rows if r.total_price is not None]
    return sum(priced, Decimal("0")) if priced else None


def fetch_requisition(db: Session, requisition_id: int) -> Optional[dict]:
    row = db.execute(REQUISITION_SELECT.where(Requisition.id == requisition_id)).first()
    if not row:
        return None
    requisition = dict(row._mapping)
    items = db.execute(
        select(RequisitionItem.__table__)
        .where(RequisitionItem.requisition_id == requisition_id)
        .order_by(RequisitionItem.id)
    )
    requisition["items"] = [dict(i._mapping) for i in items]
    return requisition


@router.get("/stats/overview")
def requisition_stats(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    count = select(func.count()).select_from(Requisition)
    value = select(func.coalesce(func.sum(Requisition.estimated_cost), 0))
    stats = aggregator.gather(session_factory, {
        "total": aggregator.scalar(count),
        "byStatus": select(Requisition.status, func.count().label("count")).group_by(Requisition.status),
        "pending": aggregator.scalar(count.where(Requisition.status == "pending")),
        "approvedValue": aggregator.scalar(value.where(Requisition.status == "approved")),
        "completedValue": aggregator.scalar(value.where(Requisition.status == "completed")),
    })
    stats["approvedValue"] = float(stats["approvedValue"] or 0)
    stats["completedValue"] = float(stats["completedValue"] or 0)
    return {"stats": stats}


@router.get("")
def list_requisitions(
    status: Optional[str] = None,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    department: Optional[str] = None,
    requested_by: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    params = {
        "status": status,
        "type": type,
        "priority": priority,
        "department": department,
        "requested_by": requested_by,
        "search": search,
    }
    requisitions, pagination = REQUISITION_LISTING.page(db, params, Pagination(page, limit))
    return {"requisitions": requisitions, "pagination": pagination}


@router.get("/{requisition_id}")
def get_requisition(requisition_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    requisition = fetch_requisition(db, requisition_id)
    if not requisition:
        raise NotFoundError("Requisition not found")
    return {"requisition": requisition}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_requisition(payload: RequisitionCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    items = _build_items(payload.items)
    data = payload.model_dump(exclude={"items"})
    if data["estimated_cost"] is None:
        data["estimated_cost"] = _items_total(items)
    if not data["department"]:
        data["department"] = user.department
    row = Requisition(
        requisition_code=allocate_code(db, Requisition.requisition_code, REQUISITION_PREFIX),
        requested_by=user.id,
        status="pending",
        items=items,
        **data,
    )
    db.add(row)
    commit_or_conflict(db, "Requisition code already taken, try again")
    logger.info("requisition_created", requisition_id=row.id, code=row.requisition_code, items=len(items), by=user.id)
    return {"message": "Requisition created successfully", "requisition": fetch_requisition(db, row.id)}


@router.put("/{requisition_id}")
def update_requisition(requisition_id: int, payload: RequisitionUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    values = payload.model_dump(exclude_unset=True, exclude={"items"})
    items = _build_items(payload.items) if payload.items is not None else None
    if items is not None and values.get("estimated_cost") is None:
        values["estimated_cost"] = _items_total(items)
    values["updated_at"] = utc_now()
    apply_transition(db, Requisition, requisition_id, values, allowed_from=("pending",), entity="Requisition")
    if items is not None:
        db.execute(delete(RequisitionItem).where(RequisitionItem.requisition_id == requisition_id))
        for item in items:
            item.requisition_id = requisition_id
        db.add_all(items)
    db.commit()
    logger.info("requisition_updated", requisition_id=requisition_id, by=user.id)
    return {"message": "Requisition updated successfully", "requisition": fetch_requisition(db, requisition_id)}


@router.put("/{requisition_id}/approve")
def decide_requisition(
    requisition_id: int,
    payload: RequisitionDecision,
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles("admin")),
):
    now = utc_now()
    decision = "approved" if payload.approved else "rejected"
    values = {"status": decision, "approved_by": admin.id, "approval_date": now, "updated_at": now}
    if payload.notes:
        values["notes"] = payload.notes
    apply_transition(db, Requisition, requisition_id, values, allowed_from=("pending",), entity="Requisition")
    db.commit()
    logger.info("requisition_decided", requisition_id=requisition_id, decision=decision, by=admin.id)
    return {"message": f"Requisition {decision} successfully", "requisition": fetch_requisition(db, requisition_id)}


@router.put("/{requisition_id}/complete")
def complete_requisition(requisition_id: int, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    now = utc_now()
    apply_transition(
        db, Requisition, requisition_id,
        {"status": "completed", "completion_date": now, "updated_at": now},
        allowed_from=("approved",),
        entity="Requisition",
    )
    db.commit()
    logger.info("requisition_completed", requisition_id=requisition_id, by=admin.id)
    return {"message": "Requisition completed successfully", "requisition": fetch_requisition(db, requisition_id)}
