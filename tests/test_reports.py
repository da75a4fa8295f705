from datetime import datetime

from siaf.db import engine
from siaf.models.models import Incident, Maintenance, Requisition
from siaf.routes.reports import resolution_hours


def test_dashboard(client, db, user_headers, staff, asset):
    client.post("/incidents", json={"title": "No signal", "description": "TV room 12", "priority": "high"}, headers=user_headers)
    client.post("/requisitions", json={"title": "Cables"}, headers=user_headers)

    r = client.get("/reports/dashboard", headers=user_headers)
    assert r.status_code == 200
    dashboard = r.json()["dashboard"]
    assert dashboard["totalAssets"] == 1
    assert dashboard["assetsWithoutResponsible"] == 1
    assert dashboard["assetsByCategory"] == [{"name": "Computadoras", "count": 1}]
    assert dashboard["openIncidents"] == 1
    assert dashboard["incidentsByPriority"] == [{"priority": "high", "count": 1}]
    assert dashboard["pendingRequisitions"] == 1
    assert dashboard["approvedRequisitionsValue"] == 0
    assert list(dashboard)[0] == "totalAssets"


def test_inventory_report(client, user_headers, asset):
    r = client.get("/reports/inventory?status=active", headers=user_headers)
    body = r.json()
    assert body["title"] == "Inventory Report"
    assert body["filters"]["status"] == "active"
    assert [a["asset_code"] for a in body["data"]] == ["PC-001"]
    assert body["summary"] == {
        "totalAssets": 1,
        "byCategory": {"Computadoras": 1},
        "byStatus": {"active": 1},
        "totalValue": 850.0,
    }
    r = client.get("/reports/inventory?dateTo=2000-01-01", headers=user_headers)
    assert r.json()["summary"]["totalAssets"] == 0


def test_incident_report_resolution_time(client, db, user_headers):
    db.add_all([
        Incident(
            incident_code="INC-240301-001", title="a", description="a", status="resolved",
            reported_date=datetime(2024, 3, 1, 8, 0), resolved_date=datetime(2024, 3, 1, 12, 0),
        ),
        Incident(
            incident_code="INC-240302-001", title="b", description="b", status="closed",
            reported_date=datetime(2024, 3, 2, 8, 0), resolved_date=datetime(2024, 3, 3, 8, 0),
        ),
        Incident(
            incident_code="INC-240305-001", title="c", description="c", status="open",
            reported_date=datetime(2024, 3, 5, 9, 0),
        ),
    ])
    db.commit()

    r = client.get("/reports/incidents?dateFrom=2024-03-01&dateTo=2024-03-02", headers=user_headers)
    body = r.json()
    assert [i["incident_code"] for i in body["data"]] == ["INC-240302-001", "INC-240301-001"]
    assert [i["resolution_hours"] for i in body["data"]] == [24.0, 4.0]
    assert body["summary"]["averageResolutionTime"] == 14.0
    assert body["summary"]["resolvedCount"] == 2

    everything = client.get("/reports/incidents", headers=user_headers).json()["summary"]
    assert everything["totalIncidents"] == 3
    assert everything["byStatus"] == {"resolved": 1, "closed": 1, "open": 1}


def test_resolution_hours_needs_both_timestamps():
    assert resolution_hours({"reported_date": datetime(2024, 1, 1), "resolved_date": None}) is None
    assert resolution_hours({"reported_date": datetime(2024, 1, 1), "resolved_date": datetime(2024, 1, 1, 1, 30)}) == 1.5


def test_maintenance_report_on_date_column(client, db, user_headers, asset):
    from datetime import date
    db.add_all([
        Maintenance(maintenance_code="MNT-1", asset_id=asset["id"], title="a", scheduled_date=date(2024, 5, 1)),
        Maintenance(maintenance_code="MNT-2", asset_id=asset["id"], title="b", scheduled_date=date(2024, 5, 31), status="completed", cost=40),
        Maintenance(maintenance_code="MNT-3", asset_id=asset["id"], title="c", scheduled_date=date(2024, 6, 1)),
    ])
    db.commit()
    r = client.get("/reports/maintenance?dateFrom=2024-05-01&dateTo=2024-05-31", headers=user_headers)
    summary = r.json()["summary"]
    assert summary["totalMaintenances"] == 2
    assert summary["completedCount"] == 1
    assert summary["totalCost"] == 40.0


def test_requisition_and_form_reports(client, admin_headers, user_headers, staff, asset):
    r = client.post("/requisitions", json={"title": "Router", "estimated_cost": "300"}, headers=user_headers)
    req_id = r.json()["requisition"]["id"]
    client.post("/requisitions", json={"title": "Cables", "estimated_cost": "20"}, headers=user_headers)
    client.put(f"/requisitions/{req_id}/approve", json={"approved": True}, headers=admin_headers)

    summary = client.get("/reports/requisitions", headers=user_headers).json()["summary"]
    assert summary["totalRequisitions"] == 2
    assert summary["totalEstimatedCost"] == 320.0
    assert summary["approvedValue"] == 300.0

    client.post(
        "/responsive-forms",
        json={"asset_id": asset["id"], "new_responsible_id": staff.id, "transfer_date": "2024-06-01", "reason": "x"},
        headers=user_headers,
    )
    forms = client.get("/reports/responsive-forms?dateFrom=2024-06-01", headers=user_headers).json()
    assert forms["summary"] == {"totalForms": 1, "byStatus": {"pending": 1}, "approvedCount": 0, "pendingCount": 1}


def test_user_activity(client, staff, user_headers):
    client.post("/incidents", json={"title": "x", "description": "y"}, headers=user_headers)
    client.post("/requisitions", json={"title": "z"}, headers=user_headers)

    r = client.get("/reports/user-activity", headers=user_headers)
    assert r.status_code == 400

    r = client.get(f"/reports/user-activity?user_id={staff.id}", headers=user_headers)
    assert r.json()["activity"] == {
        "incidents_reported": 1,
        "incidents_assigned": 0,
        "maintenances_assigned": 0,
        "requisitions_made": 1,
        "forms_approved": 0,
    }
    r = client.get(f"/reports/user-activity?user_id={staff.id}&dateTo=2000-01-01", headers=user_headers)
    assert r.json()["activity"]["incidents_reported"] == 0


def test_failed_query_yields_no_partial_report(client, staff, user_headers):
    Requisition.__table__.drop(bind=engine)
    r = client.get(f"/reports/user-activity?user_id={staff.id}", headers=user_headers)
    assert r.status_code == 500
    assert r.json() == {"message": "Internal server error"}
