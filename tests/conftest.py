import os
import tempfile

# Settings and the engine are read at import time
_tmpdir = tempfile.mkdtemp(prefix="siaf-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'siaf.db')}"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from fastapi.testclient import TestClient

from siaf.auth.security import create_access_token, get_password_hash
from siaf.db import Base, SessionLocal, engine
from siaf.main import app
from siaf.models.models import AssetCategory, User


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client():
    return TestClient(app)


def _make_user(db, username, role="user", department=None, password="secret123", active=True):
    user = User(
        username=username,
        email=f"{username}@beachscape.com",
        password=get_password_hash(password),
        full_name=username.title(),
        role=role,
        department=department,
        active=active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def make_user(db):
    def factory(username, **kwargs):
        return _make_user(db, username, **kwargs)
    return factory


@pytest.fixture()
def admin(db):
    return _make_user(db, "admin", role="admin", department="Sistemas")


@pytest.fixture()
def staff(db):
    return _make_user(db, "maria", department="Recepcion")


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture()
def user_headers(staff):
    return auth_headers(staff)


@pytest.fixture()
def category(db):
    row = AssetCategory(name="Computadoras")
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def asset(client, admin_headers, category):
    r = client.post(
        "/assets",
        json={"asset_code": "PC-001", "name": "Front desk PC", "category_id": category.id, "purchase_price": "850.00"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    return r.json()["asset"]
