from datetime import date, datetime

import pytest
from sqlalchemy import select

from siaf.errors import ValidationError
from siaf.models.models import Asset, Incident
from siaf.services.query_builder import (
    FilteredQuery,
    Pagination,
    build_predicates,
    date_range,
    exact,
    like,
)


LISTING = FilteredQuery(
    select(Asset.id, Asset.asset_code, Asset.status, Asset.name),
    filters=[
        exact("status", Asset.status),
        like("search", Asset.name, Asset.asset_code),
    ],
    order_by=[Asset.id.asc()],
)


@pytest.fixture()
def assets(db, category):
    rows = []
    for i in range(25):
        rows.append(Asset(
            asset_code=f"A-{i:03d}",
            name=f"Laptop {i}" if i % 2 else f"Printer {i}",
            category_id=category.id,
            status="active" if i % 5 else "maintenance",
        ))
    db.add_all(rows)
    db.commit()
    return rows


def test_blank_and_missing_params_are_skipped():
    specs = [exact("status", Asset.status), like("search", Asset.name)]
    assert build_predicates(specs, {}) == []
    assert build_predicates(specs, {"status": None, "search": "   "}) == []
    assert len(build_predicates(specs, {"status": "active", "search": ""})) == 1


def test_false_is_a_real_filter_value():
    from siaf.models.models import User
    assert len(build_predicates([exact("active", User.active)], {"active": False})) == 1


def test_pagination_rejects_non_positive_values():
    with pytest.raises(ValueError):
        Pagination(page=0, limit=10)
    with pytest.raises(ValueError):
        Pagination(page=1, limit=0)


def test_pagination_math():
    p = Pagination(page=3, limit=10)
    assert p.offset == 20
    assert p.as_dict(25) == {"page": 3, "limit": 10, "total": 25, "totalPages": 3}
    assert Pagination().as_dict(0)["totalPages"] == 0


def test_last_page_holds_the_remainder(db, assets):
    rows, pagination = LISTING.page(db, {}, Pagination(page=3, limit=10))
    assert len(rows) == 5
    assert pagination == {"page": 3, "limit": 10, "total": 25, "totalPages": 3}


def test_page_past_the_end_is_empty_with_true_total(db, assets):
    rows, pagination = LISTING.page(db, {}, Pagination(page=9, limit=10))
    assert rows == []
    assert pagination["total"] == 25


@pytest.mark.parametrize("params", [
    {},
    {"status": "maintenance"},
    {"search": "laptop"},
    {"status": "active", "search": "PRINTER"},
    {"status": "retired"},
])
def test_count_matches_rows_for_every_filter_subset(db, assets, params):
    applied = LISTING.apply(params)
    every_row = applied.fetch_all(db)
    rows, total = applied.fetch_page(db, Pagination(page=1, limit=100))
    assert total == len(every_row) == len(rows)


def test_search_is_case_insensitive_across_columns(db, assets):
    rows = LISTING.apply({"search": "a-01"}).fetch_all(db)
    assert [r["asset_code"] for r in rows] == [f"A-{i:03d}" for i in range(10, 20)]


def test_date_to_covers_the_whole_day_on_timestamp_columns(db):
    db.add_all([
        Incident(incident_code="INC-1", title="a", description="a", reported_date=datetime(2024, 3, 1, 8, 0)),
        Incident(incident_code="INC-2", title="b", description="b", reported_date=datetime(2024, 3, 1, 23, 30)),
        Incident(incident_code="INC-3", title="c", description="c", reported_date=datetime(2024, 3, 2, 0, 5)),
    ])
    db.commit()
    query = FilteredQuery(
        select(Incident.incident_code),
        filters=[*date_range(Incident.reported_date)],
        order_by=[Incident.id],
    )
    rows = query.apply({"dateFrom": "2024-03-01", "dateTo": "2024-03-01"}).fetch_all(db)
    assert [r["incident_code"] for r in rows] == ["INC-1", "INC-2"]


def test_date_bounds_on_date_columns_are_plain_dates():
    spec_from, spec_to = date_range(Asset.purchase_date)
    predicate = spec_to.predicate("2024-05-31")
    assert predicate.right.value == date(2024, 5, 31)
    assert spec_from.predicate(date(2024, 1, 1)).right.value == date(2024, 1, 1)


def test_malformed_date_is_a_validation_error():
    spec_from, _ = date_range(Incident.reported_date)
    with pytest.raises(ValidationError) as exc:
        spec_from.predicate("yesterday")
    assert exc.value.errors[0]["field"] == "dateFrom"


def test_listing_endpoint_rejects_bad_paging(client, user_headers):
    r = client.get("/assets?limit=0", headers=user_headers)
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "limit"
    r = client.get("/assets?page=0", headers=user_headers)
    assert r.status_code == 400


@pytest.mark.parametrize("page,expected_rows", [(1, 10), (2, 10), (3, 5)])
def test_asset_listing_pages(client, user_headers, assets, page, expected_rows):
    r = client.get(f"/assets?limit=10&page={page}", headers=user_headers)
    assert r.status_code == 200
    body = r.json()
    assert len(body["assets"]) == expected_rows
    assert body["pagination"] == {"page": page, "limit": 10, "total": 25, "totalPages": 3}
