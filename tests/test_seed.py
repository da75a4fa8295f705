from scripts.init_db import DEFAULT_CATEGORIES, seed_defaults

from siaf.auth.security import verify_password
from siaf.models.models import AssetCategory, User


def test_seed_is_idempotent(db):
    first = seed_defaults(db)
    assert first["admin"] is True
    assert first["categories"] == DEFAULT_CATEGORIES

    second = seed_defaults(db)
    assert second == {"admin": False, "categories": []}
    assert db.query(AssetCategory).count() == len(DEFAULT_CATEGORIES)

    admin = db.query(User).filter(User.username == "admin").one()
    assert admin.role == "admin"
    assert verify_password("admin123", admin.password)


def test_seeded_admin_can_log_in(client, db):
    seed_defaults(db)
    r = client.post("/auth/login", json={"username": "admin", "password": "admin123"})
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "admin"
