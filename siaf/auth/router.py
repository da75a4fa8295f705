import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..db import get_db, commit_or_conflict
from ..errors import AuthError, ConflictError, ValidationError
from ..models.models import User
from ..routes.users import ensure_email_free, user_to_dict
from ..schemas.auth import ChangePasswordRequest, LoginRequest, ProfileUpdate, RegisterRequest
from ..services.sql import utc_now
from .security import (
    create_access_token,
    get_current_user,
    get_password_hash,
    require_roles,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.execute(
        select(User).where(
            or_(User.username == req.username, User.email == req.username),
            User.active.is_(True),
        )
    ).scalars().first()
    if not user or not verify_password(req.password, user.password):
        logger.info("login_failed", identifier=req.username)
        raise AuthError("Invalid credentials")
    token = create_access_token(user.id, user.role)
    user.updated_at = utc_now()
    db.commit()
    logger.info("login_succeeded", user_id=user.id)
    return {
        "message": "Login successful",
        "token": token,
        "user": {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
            "role": user.role,
            "department": user.department,
        },
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    existing = db.execute(
        select(User.id).where(or_(User.username == payload.username, User.email == payload.email))
    ).first()
    if existing:
        raise ConflictError("Username or email already exists")
    user = User(
        username=payload.username,
        email=payload.email,
        password=get_password_hash(payload.password),
        full_name=payload.full_name,
        role=payload.role,
        department=payload.department,
    )
    db.add(user)
    commit_or_conflict(db, "Username or email already exists")
    db.refresh(user)
    logger.info("user_registered", user_id=user.id, role=user.role, by=admin.id)
    return {"message": "User created successfully", "user": user_to_dict(user)}


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return {"user": user_to_dict(user)}


@router.put("/profile")
def update_profile(payload: ProfileUpdate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    values = payload.model_dump(exclude_unset=True)
    if not values:
        raise ValidationError.single("body", "No fields to update")
    # department may be cleared; name and email are required columns
    for field in ("full_name", "email"):
        if field in values and values[field] is None:
            raise ValidationError.single(field, f"{field} cannot be empty")
    if "email" in values and values["email"] != user.email:
        ensure_email_free(db, values["email"], exclude_id=user.id)
    for key, value in values.items():
        setattr(user, key, value)
    user.updated_at = utc_now()
    commit_or_conflict(db, "Email already in use")
    db.refresh(user)
    return {"message": "Profile updated successfully", "user": user_to_dict(user)}


@router.put("/change-password")
def change_password(payload: ChangePasswordRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if not verify_password(payload.currentPassword, user.password):
        raise ValidationError.single("currentPassword", "Current password is incorrect")
    user.password = get_password_hash(payload.newPassword)
    user.updated_at = utc_now()
    db.commit()
    logger.info("password_changed", user_id=user.id)
    return {"message": "Password updated successfully"}
