import random
import re
from datetime import date

import pytest

from siaf.errors import ConflictError
from siaf.models.models import Incident
from siaf.services.codes import INCIDENT_PREFIX, allocate_code, generate_code


class FixedRandom(random.Random):
    def __init__(self, values):
        super().__init__()
        self._values = list(values)

    def randint(self, a, b):
        return self._values.pop(0)


def test_code_format():
    code = generate_code("INC", today=date(2024, 7, 5), rng=FixedRandom([7]))
    assert code == "INC-240705-007"


def test_random_suffix_is_three_digits():
    for _ in range(50):
        assert re.fullmatch(r"MNT-\d{6}-\d{3}", generate_code("MNT"))


def _taken(db, code):
    db.add(Incident(incident_code=code, title="t", description="d"))
    db.commit()


def test_collision_is_resampled(db):
    first = generate_code(INCIDENT_PREFIX, rng=FixedRandom([42]))
    _taken(db, first)
    code = allocate_code(db, Incident.incident_code, INCIDENT_PREFIX, rng=FixedRandom([42, 43]))
    assert code.endswith("-043")


def test_exhausted_attempts_raise_conflict(db):
    _taken(db, generate_code(INCIDENT_PREFIX, rng=FixedRandom([1])))
    with pytest.raises(ConflictError):
        allocate_code(db, Incident.incident_code, INCIDENT_PREFIX, attempts=3, rng=FixedRandom([1, 1, 1]))


def test_created_records_get_distinct_codes(client, user_headers):
    codes = set()
    for i in range(5):
        r = client.post("/incidents", json={"title": f"Issue {i}", "description": "x"}, headers=user_headers)
        assert r.status_code == 201
        codes.add(r.json()["incident"]["incident_code"])
    assert len(codes) == 5
    assert all(c.startswith("INC-") for c in codes)
