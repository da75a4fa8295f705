from datetime import timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db, get_session_factory, commit_or_conflict
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Asset, AssetCategory, User
from ..auth.security import get_current_user, require_roles
from ..schemas.assets import AssetCreate, AssetUpdate, CategoryCreate
from ..services import aggregator
from ..services.query_builder import FilteredQuery, Pagination, exact, like
from ..services.sql import utc_now, utc_today


router = APIRouter(prefix="/assets", tags=["assets"])
logger = structlog.get_logger(__name__)


ASSET_SELECT = (
    select(
        Asset.__table__,
        AssetCategory.name.label("category_name"),
        User.full_name.label("responsible_name"),
    )
    .select_from(Asset)
    .outerjoin(AssetCategory, Asset.category_id == AssetCategory.id)
    .outerjoin(User, Asset.responsible_user_id == User.id)
)

ASSET_LISTING = FilteredQuery(
    ASSET_SELECT,
    filters=[
        exact("category", Asset.category_id),
        exact("status", Asset.status),
        exact("responsible", Asset.responsible_user_id),
        like("search", Asset.name, Asset.asset_code, Asset.brand, Asset.model),
    ],
    order_by=[Asset.created_at.desc(), Asset.id.desc()],
)


def fetch_asset(db: Session, asset_id: int) -> Optional[dict]:
    row = db.execute(ASSET_SELECT.where(Asset.id == asset_id)).first()
    return dict(row._mapping) if row else None


def _check_references(db: Session, category_id: Optional[int], responsible_user_id: Optional[int]) -> None:
    errors = []
    if category_id is not None and db.get(AssetCategory, category_id) is None:
        errors.append({"field": "category_id", "message": "Category not found"})
    if responsible_user_id is not None and db.get(User, responsible_user_id) is None:
        errors.append({"field": "responsible_user_id", "message": "User not found"})
    if errors:
        raise ValidationError(errors)


# ---------- CATEGORIES ----------
@router.get("/categories/all")
def list_categories(db: Session = Depends(get_db), _=Depends(get_current_user)):
    rows = db.execute(select(AssetCategory.__table__).order_by(AssetCategory.name)).all()
    return {"categories": [dict(r._mapping) for r in rows]}


@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryCreate, db: Session = Depends(get_db), _=Depends(require_roles("admin"))):
    row = AssetCategory(name=payload.name.strip(), description=payload.description)
    db.add(row)
    db.commit()
    db.refresh(row)
    return {
        "message": "Category created successfully",
        "category": {"id": row.id, "name": row.name, "description": row.description},
    }


# ---------- STATS ----------
@router.get("/stats/overview")
def asset_stats(session_factory=Depends(get_session_factory), _=Depends(get_current_user)):
    today = utc_today()
    window_end = today + timedelta(days=settings.upcoming_window_days)
    live = Asset.status != "inactive"
    stats = aggregator.gather(session_factory, {
        "total": aggregator.scalar(select(func.count()).select_from(Asset).where(live)),
        "byStatus": select(Asset.status, func.count().label("count")).where(live).group_by(Asset.status),
        "byCategory": (
            select(AssetCategory.name, func.count(Asset.id).label("count"))
            .select_from(AssetCategory)
            .outerjoin(Asset, and_(AssetCategory.id == Asset.category_id, live))
            .group_by(AssetCategory.id, AssetCategory.name)
            .order_by(AssetCategory.name)
        ),
        "expiredWarranty": aggregator.scalar(
            select(func.count()).select_from(Asset).where(Asset.warranty_expiry < today, Asset.status == "active")
        ),
        "expiringWarranty": aggregator.scalar(
            select(func.count()).select_from(Asset).where(
                Asset.warranty_expiry.between(today, window_end), Asset.status == "active"
            )
        ),
    })
    return {"stats": stats}


# ---------- ASSETS ----------
@router.get("")
def list_assets(
    category: Optional[int] = None,
    status: Optional[str] = None,
    responsible: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    params = {"category": category, "status": status, "responsible": responsible, "search": search}
    assets, pagination = ASSET_LISTING.page(db, params, Pagination(page, limit))
    return {"assets": assets, "pagination": pagination}


@router.get("/{asset_id}")
def get_asset(asset_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    asset = fetch_asset(db, asset_id)
    if not asset:
        raise NotFoundError("Asset not found")
    return {"asset": asset}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_asset(payload: AssetCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if db.execute(select(Asset.id).where(Asset.asset_code == payload.asset_code)).first():
        raise ConflictError("Asset code already exists")
    _check_references(db, payload.category_id, payload.responsible_user_id)
    row = Asset(**payload.model_dump())
    db.add(row)
    commit_or_conflict(db, "Asset code already exists")
    logger.info("asset_created", asset_id=row.id, asset_code=row.asset_code, by=user.id)
    return {"message": "Asset created successfully", "asset": fetch_asset(db, row.id)}


@router.put("/{asset_id}")
def update_asset(asset_id: int, payload: AssetUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    values = payload.model_dump(exclude_unset=True)
    _check_references(db, values.get("category_id"), None)
    values["updated_at"] = utc_now()
    result = db.execute(update(Asset).where(Asset.id == asset_id).values(**values))
    if result.rowcount == 0:
        db.rollback()
        raise NotFoundError("Asset not found")
    db.commit()
    logger.info("asset_updated", asset_id=asset_id, by=user.id)
    return {"message": "Asset updated successfully", "asset": fetch_asset(db, asset_id)}


@router.delete("/{asset_id}")
def delete_asset(asset_id: int, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    result = db.execute(
        update(Asset).where(Asset.id == asset_id).values(status="inactive", updated_at=utc_now())
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFoundError("Asset not found")
    db.commit()
    logger.info("asset_deactivated", asset_id=asset_id, by=admin.id)
    return {"message": "Asset deleted successfully"}
