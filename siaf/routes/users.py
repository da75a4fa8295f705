from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db, commit_or_conflict
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import User
from ..auth.security import get_current_user, require_roles
from ..schemas.auth import UserUpdate
from ..services.query_builder import FilteredQuery, Pagination, exact, like
from ..services.sql import utc_now


router = APIRouter(prefix="/users", tags=["users"])
logger = structlog.get_logger(__name__)

# Every column except the password hash
USER_COLUMNS = (
    User.id,
    User.username,
    User.email,
    User.full_name,
    User.role,
    User.department,
    User.active,
    User.created_at,
    User.updated_at,
)

USER_LISTING = FilteredQuery(
    select(*USER_COLUMNS),
    filters=[
        exact("role", User.role),
        exact("department", User.department),
        exact("active", User.active),
        like("search", User.username, User.email, User.full_name),
    ],
    order_by=[User.created_at.desc(), User.id.desc()],
)


def user_to_dict(u: User) -> dict:
    return {
        "id": u.id,
        "username": u.username,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "department": u.department,
        "active": u.active,
        "created_at": u.created_at,
    }


def ensure_email_free(db: Session, email: str, exclude_id: Optional[int] = None) -> None:
    q = select(User.id).where(User.email == email)
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    if db.execute(q).first():
        raise ConflictError("Email already in use")


@router.get("")
def list_users(
    role: Optional[str] = None,
    department: Optional[str] = None,
    active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    db: Session = Depends(get_db),
    _=Depends(require_roles("admin")),
):
    params = {"role": role, "department": department, "active": active, "search": search}
    users, pagination = USER_LISTING.page(db, params, Pagination(page, limit))
    return {"users": users, "pagination": pagination}


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), _=Depends(get_current_user)):
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError("User not found")
    return {"user": user_to_dict(u)}


@router.put("/{user_id}")
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    values = payload.model_dump(exclude_unset=True)
    if not values:
        raise ValidationError.single("body", "No fields to update")
    if user_id == admin.id and (values.get("active") is False or values.get("role") == "user"):
        raise ValidationError.single("role", "Administrators cannot demote or disable themselves")
    if "email" in values:
        ensure_email_free(db, values["email"], exclude_id=user_id)
    values["updated_at"] = utc_now()
    result = db.execute(update(User).where(User.id == user_id).values(**values))
    if result.rowcount == 0:
        db.rollback()
        raise NotFoundError("User not found")
    commit_or_conflict(db, "Email already in use")
    logger.info("user_updated", user_id=user_id, by=admin.id, fields=sorted(values))
    return {"message": "User updated successfully", "user": user_to_dict(db.get(User, user_id))}


@router.delete("/{user_id}")
def disable_user(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    if user_id == admin.id:
        raise ValidationError.single("user_id", "Administrators cannot disable themselves")
    result = db.execute(update(User).where(User.id == user_id).values(active=False, updated_at=utc_now()))
    if result.rowcount == 0:
        db.rollback()
        raise NotFoundError("User not found")
    db.commit()
    logger.info("user_disabled", user_id=user_id, by=admin.id)
    return {"message": "User disabled successfully"}
