from datetime import timedelta

from siaf.services.sql import utc_today


def _schedule(client, headers, asset_id, days=3, **extra):
    payload = {
        "asset_id": asset_id,
        "type": "preventive",
        "title": "Clean fans",
        "scheduled_date": (utc_today() + timedelta(days=days)).isoformat(),
    }
    payload.update(extra)
    r = client.post("/maintenances", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["maintenance"]


def test_schedule_requires_existing_asset(client, user_headers):
    r = client.post(
        "/maintenances",
        json={"asset_id": 999, "type": "corrective", "title": "x", "scheduled_date": "2030-01-01"},
        headers=user_headers,
    )
    assert r.status_code == 404


def test_complete_is_not_repeatable(client, user_headers, asset):
    m = _schedule(client, user_headers, asset["id"])
    assert m["status"] == "scheduled"
    assert m["maintenance_code"].startswith("MNT-")

    r = client.put(f"/maintenances/{m['id']}/complete", json={"cost": "120.50", "notes": "done"}, headers=user_headers)
    assert r.status_code == 200
    done = r.json()["maintenance"]
    assert done["status"] == "completed"
    assert done["completed_date"] is not None
    assert float(done["cost"]) == 120.5

    r = client.put(f"/maintenances/{m['id']}/complete", headers=user_headers)
    assert r.status_code == 409
    assert client.get(f"/maintenances/{m['id']}", headers=user_headers).json()["maintenance"]["completed_date"] == done["completed_date"]


def test_start_only_from_scheduled(client, user_headers, asset):
    m = _schedule(client, user_headers, asset["id"])
    assert client.put(f"/maintenances/{m['id']}/start", headers=user_headers).json()["maintenance"]["status"] == "in_progress"
    assert client.put(f"/maintenances/{m['id']}/start", headers=user_headers).status_code == 409
    assert client.put(f"/maintenances/{m['id']}/complete", headers=user_headers).status_code == 200
    assert client.put("/maintenances/999/start", headers=user_headers).status_code == 404


def test_upcoming_and_overdue(client, user_headers, asset):
    soon = _schedule(client, user_headers, asset["id"], days=2, title="Soon")
    _schedule(client, user_headers, asset["id"], days=90, title="Later")
    late = _schedule(client, user_headers, asset["id"], days=-4, title="Late")

    upcoming = client.get("/maintenances/upcoming/list", headers=user_headers).json()["upcomingMaintenances"]
    assert [m["id"] for m in upcoming] == [soon["id"]]
    overdue = client.get("/maintenances/overdue/list", headers=user_headers).json()["overdueMaintenances"]
    assert [m["id"] for m in overdue] == [late["id"]]

    stats = client.get("/maintenances/stats/overview", headers=user_headers).json()["stats"]
    assert stats["total"] == 3
    assert stats["upcoming"] == 1
    assert stats["overdue"] == 1
    assert stats["totalCost"] == 0


def test_list_filters(client, user_headers, asset):
    _schedule(client, user_headers, asset["id"], type="corrective")
    _schedule(client, user_headers, asset["id"])
    r = client.get("/maintenances?type=corrective", headers=user_headers)
    assert r.json()["pagination"]["total"] == 1
    assert r.json()["maintenances"][0]["asset_code"] == "PC-001"
