from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from ..config import settings
from ..db import get_db, get_session_factory, commit_or_conflict
from ..errors import NotFoundError, ValidationError
from ..models.models import Asset, ResponsiveForm, User
from ..auth.security import get_current_user
from ..schemas.responsive_forms import DecisionRequest, ResponsiveFormCreate
from ..services import aggregator
from ..services.codes import FORM_PREFIX, allocate_code
from ..services.pdf import create_responsive_form_pdf
from ..services.query_builder import FilteredQuery, Pagination, exact
from ..services.sql import month_bounds, utc_now, utc_today
from ..services.transitions import apply_transition


router = APIRouter(prefix="/responsive-forms", tags=["responsive-forms"])
logger = structlog.get_logger(__name__)

previous = aliased(User, name="prev")
new = aliased(User, name="new_resp")
approver = aliased(User, name="approver")

FORM_SELECT = (
    select(
        ResponsiveForm.__table__,
        Asset.name.label("asset_name"),
        Asset.asset_code.label("asset_code"),
        previous.full_name.label("previous_responsible_name"),
        new.full_name.label("new_responsible_name"),
        approver.full_name.label("approved_by_name"),
    )
    .select_from(ResponsiveForm)
    .outerjoin(Asset, ResponsiveForm.asset_id == Asset.id)
    .outerjoin(previous, ResponsiveForm.previous_responsible_id == previous.id)
    .outerjoin(new, ResponsiveForm.new_responsible_id == new.id)
    .outerjoin(approver, ResponsiveForm.approved_by == approver.id)
)

# Detail view adds what the printed form shows
FORM_DETAIL_SELECT = FORM_SELECT.add_columns(
    Asset.brand.label("brand"),
    Asset.model.label("model"),
    Asset.serial_number.label("serial_number"),
    Asset.description.label("asset_description"),
    previous.department.label("previous_department"),
    new.department.label("new_department"),
)

FORM_LISTING = FilteredQuery(
    FORM_SELECT,
    filters=[
        exact("status", ResponsiveForm.status),
        exact("asset_id", ResponsiveForm.asset_id),
        exact("new_responsible_id", ResponsiveForm.new_responsible_id),
    ],
    order_by=[ResponsiveForm.created_at.desc(), ResponsiveForm.id.desc()],
)


def fetch_form(db: Session, form_id: int) -> Optional[dict]:
    row = db.execute(FORM_DETAIL_SELECT.where(ResponsiveForm.id == form_id)).first()
    return dict(row._mapping) if row else None


def assign_responsible(db: Session, asset_id: int, user_id: int, now) -> None:
    result = db.execute(
        update(Asset)
        .where(Asset.id == asset_id)
        .values(responsible_user_id=user_id, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Asset not found")


@router.get("/stats/overview")
def form_stats(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    count = select(func.count()).select_from(ResponsiveForm)
    month_start, month_end = month_bounds(utc_today())
    stats = aggregator.gather(session_factory, {
        "total": aggregator.scalar(count),
        "byStatus": select(ResponsiveForm.status, func.count().label("count")).group_by(ResponsiveForm.status),
        "pending": aggregator.scalar(count.where(ResponsiveForm.status == "pending")),
        "approved": aggregator.scalar(count.where(ResponsiveForm.status == "approved")),
        "rejected": aggregator.scalar(count.where(ResponsiveForm.status == "rejected")),
        "thisMonth": aggregator.scalar(
            count.where(ResponsiveForm.created_at >= month_start, ResponsiveForm.created_at < month_end)
        ),
    })
    return {"stats": stats}


@router.get("/pending/approval")
def pending_forms(db: Session = Depends(get_db), _=Depends(get_current_user)):
    q = FORM_SELECT.where(ResponsiveForm.status == "pending").order_by(ResponsiveForm.created_at.asc(), ResponsiveForm.id.asc())
    return {"pendingForms": [dict(r._mapping) for r in db.execute(q)]}


@router.get("/asset/{asset_id}/history")
def asset_history(asset_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    q = (
        FORM_DETAIL_SELECT
        .where(ResponsiveForm.asset_id == asset_id, ResponsiveForm.status == "approved")
        .order_by(ResponsiveForm.transfer_date.desc(), ResponsiveForm.id.desc())
    )
    return {"history": [dict(r._mapping) for r in db.execute(q)]}


@router.get("")
def list_forms(
    status: Optional[str] = None,
    asset_id: Optional[int] = None,
    new_responsible_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    params = {"status": status, "asset_id": asset_id, "new_responsible_id": new_responsible_id}
    forms, pagination = FORM_LISTING.page(db, params, Pagination(page, limit))
    return {"forms": forms, "pagination": pagination}


@router.get("/{form_id}")
def get_form(form_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    form = fetch_form(db, form_id)
    if not form:
        raise NotFoundError("Responsive form not found")
    return {"form": form}


@router.get("/{form_id}/pdf")
def form_pdf(form_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    form = fetch_form(db, form_id)
    if not form:
        raise NotFoundError("Responsive form not found")
    content = create_responsive_form_pdf(form)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{form["form_code"]}.pdf"'},
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_form(payload: ResponsiveFormCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    # the outgoing responsible is whoever holds the asset right now
    previous_responsible_id = db.execute(
        select(Asset.responsible_user_id).where(Asset.id == payload.asset_id)
    ).first()
    if previous_responsible_id is None:
        raise NotFoundError("Asset not found")
    if db.get(User, payload.new_responsible_id) is None:
        raise ValidationError.single("new_responsible_id", "User not found")
    row = ResponsiveForm(
        form_code=allocate_code(db, ResponsiveForm.form_code, FORM_PREFIX),
        previous_responsible_id=previous_responsible_id[0],
        status="pending",
        **payload.model_dump(),
    )
    db.add(row)
    commit_or_conflict(db, "Form code already taken, try again")
    logger.info("responsive_form_created", form_id=row.id, code=row.form_code, asset_id=row.asset_id, by=user.id)
    return {"message": "Responsive form created successfully", "form": fetch_form(db, row.id)}


@router.put("/{form_id}/approve")
def decide_form(form_id: int, payload: DecisionRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    form = db.execute(
        select(ResponsiveForm.asset_id, ResponsiveForm.new_responsible_id).where(ResponsiveForm.id == form_id)
    ).first()
    if form is None:
        raise NotFoundError("Responsive form not found")

    now = utc_now()
    decision = "approved" if payload.approved else "rejected"
    values = {"status": decision, "approved_by": user.id, "updated_at": now}
    if payload.comments:
        values["observations"] = payload.comments

    # form status and asset responsible commit together or not at all
    try:
        apply_transition(db, ResponsiveForm, form_id, values, allowed_from=("pending",), entity="Responsive form")
        if payload.approved:
            assign_responsible(db, form.asset_id, form.new_responsible_id, now)
        db.commit()
    except (SQLAlchemyError, NotFoundError):
        db.rollback()
        raise
    logger.info("responsive_form_decided", form_id=form_id, decision=decision, asset_id=form.asset_id, by=user.id)
    return {"message": f"Responsive form {decision} successfully", "form": fetch_form(db, form_id)}
