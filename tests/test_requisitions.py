ITEMS = [
    {"item_name": "Toner HP 58A", "quantity": 4, "unit_price": "65.00"},
    {"item_name": "Paper ream", "quantity": 10, "unit_price": "4.50"},
    {"item_name": "Labels", "quantity": 2},
]


def _create(client, headers, **extra):
    payload = {"title": "Office supplies", "type": "purchase", "priority": "high", "items": ITEMS}
    payload.update(extra)
    r = client.post("/requisitions", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()["requisition"]


def test_create_with_items(client, staff, user_headers):
    req = _create(client, user_headers)
    assert req["requisition_code"].startswith("REQ-")
    assert req["status"] == "pending"
    assert req["requested_by"] == staff.id
    assert req["requested_by_name"] == "Maria"
    assert req["department"] == "Recepcion"
    assert float(req["estimated_cost"]) == 305.0
    totals = [i["total_price"] and float(i["total_price"]) for i in req["items"]]
    assert totals == [260.0, 45.0, None]


def test_explicit_estimate_wins(client, user_headers):
    req = _create(client, user_headers, estimated_cost="500.00")
    assert float(req["estimated_cost"]) == 500.0


def test_update_replaces_items_while_pending(client, user_headers):
    req = _create(client, user_headers)
    r = client.put(
        f"/requisitions/{req['id']}",
        json={"title": "Toner only", "items": [{"item_name": "Toner HP 58A", "quantity": 1, "unit_price": "65.00"}]},
        headers=user_headers,
    )
    assert r.status_code == 200
    updated = r.json()["requisition"]
    assert updated["title"] == "Toner only"
    assert [i["item_name"] for i in updated["items"]] == ["Toner HP 58A"]
    assert float(updated["estimated_cost"]) == 65.0


def test_approval_flow(client, admin, admin_headers, user_headers):
    req = _create(client, user_headers)
    assert client.put(f"/requisitions/{req['id']}/approve", json={"approved": True}, headers=user_headers).status_code == 403
    assert client.put(f"/requisitions/{req['id']}/complete", headers=admin_headers).status_code == 409

    r = client.put(f"/requisitions/{req['id']}/approve", json={"approved": True}, headers=admin_headers)
    assert r.status_code == 200
    approved = r.json()["requisition"]
    assert approved["status"] == "approved"
    assert approved["approved_by"] == admin.id
    assert approved["approval_date"] is not None

    r = client.put(f"/requisitions/{req['id']}", json={"title": "Too late"}, headers=user_headers)
    assert r.status_code == 409

    r = client.put(f"/requisitions/{req['id']}/complete", headers=admin_headers)
    assert r.json()["requisition"]["status"] == "completed"
    assert r.json()["requisition"]["completion_date"] is not None


def test_rejection(client, admin_headers, user_headers):
    req = _create(client, user_headers)
    r = client.put(
        f"/requisitions/{req['id']}/approve",
        json={"approved": False, "notes": "Over budget"},
        headers=admin_headers,
    )
    assert r.json()["requisition"]["status"] == "rejected"
    assert r.json()["requisition"]["notes"] == "Over budget"
    assert client.put(f"/requisitions/{req['id']}/approve", json={"approved": True}, headers=admin_headers).status_code == 409


def test_items_need_a_positive_quantity(client, user_headers):
    r = client.post(
        "/requisitions",
        json={"title": "Bad", "items": [{"item_name": "x", "quantity": 0}]},
        headers=user_headers,
    )
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "items.0.quantity"


def test_list_and_stats(client, admin_headers, user_headers):
    first = _create(client, user_headers, type="service", title="AC repair", items=[])
    _create(client, user_headers)
    client.put(f"/requisitions/{first['id']}/approve", json={"approved": True}, headers=admin_headers)

    r = client.get("/requisitions?type=service", headers=user_headers)
    assert [q["title"] for q in r.json()["requisitions"]] == ["AC repair"]
    assert client.get("/requisitions?search=office", headers=user_headers).json()["pagination"]["total"] == 1
    assert client.get("/requisitions/999", headers=user_headers).status_code == 404

    stats = client.get("/requisitions/stats/overview", headers=user_headers).json()["stats"]
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["approvedValue"] == 0
    assert stats["completedValue"] == 0
