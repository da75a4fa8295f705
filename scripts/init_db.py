"""
Create the SIAF tables and seed the default admin user and asset categories.

Usage:
  python scripts/init_db.py

This script is idempotent: existing users and categories are left untouched.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy.orm import Session

from siaf.config import settings
from siaf.db import Base, SessionLocal, engine
from siaf.auth.security import get_password_hash
from siaf.models.models import AssetCategory, User


DEFAULT_CATEGORIES = [
    "Computadoras",
    "Impresoras",
    "Cámaras de Seguridad",
    "Equipos de Red",
    "Software",
    "Mobiliario de Oficina",
    "Equipos de Audio/Video",
    "Otros",
]


def seed_defaults(db: Session) -> dict:
    """Insert the admin account and default categories when missing. Returns what was created."""
    created = {"admin": False, "categories": []}

    admin = db.query(User).filter(
        (User.username == settings.admin_username) | (User.email == settings.admin_email)
    ).first()
    if not admin:
        db.add(User(
            username=settings.admin_username,
            email=settings.admin_email,
            password=get_password_hash(settings.admin_password),
            full_name="Administrador del Sistema",
            role="admin",
            department="Sistemas",
        ))
        created["admin"] = True

    existing = {name for (name,) in db.query(AssetCategory.name).all()}
    for name in DEFAULT_CATEGORIES:
        if name not in existing:
            db.add(AssetCategory(name=name))
            created["categories"].append(name)

    db.commit()
    return created


def init_db():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed_defaults(db)
        print("Database initialized")
        if created["admin"]:
            print(f"Default user created: {settings.admin_username} / {settings.admin_password}")
        if created["categories"]:
            print(f"Categories added: {', '.join(created['categories'])}")
    except Exception as e:
        db.rollback()
        print(f"Error initializing database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_db()
