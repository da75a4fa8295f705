"""
Human-readable identifiers: ``<PREFIX>-<YYMMDD>-<NNN>``.

The date part is the UTC generation date and NNN is uniform over 000-999, so
two records of the same kind created the same day collide with probability
1/1000. Collisions are resampled up to ``settings.code_attempts`` times; the
unique constraint on the code column still rejects a concurrent duplicate.
"""
import random
from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError


INCIDENT_PREFIX = "INC"
MAINTENANCE_PREFIX = "MNT"
FORM_PREFIX = "FR"
REQUISITION_PREFIX = "REQ"

logger = structlog.get_logger(__name__)


def generate_code(prefix: str, today: Optional[date] = None, rng: random.Random = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    rng = rng or random
    return f"{prefix}-{today:%y%m%d}-{rng.randint(0, 999):03d}"


def allocate_code(db: Session, column, prefix: str, attempts: Optional[int] = None, rng: random.Random = None) -> str:
    """Draw codes until one is free in ``column``; raise ConflictError when attempts run out."""
    attempts = attempts or settings.code_attempts
    for attempt in range(1, attempts + 1):
        candidate = generate_code(prefix, rng=rng)
        taken = db.execute(select(column).where(column == candidate).limit(1)).first()
        if taken is None:
            return candidate
        logger.info("code_collision", prefix=prefix, code=candidate, attempt=attempt)
    raise ConflictError(f"Could not allocate a unique {prefix} code, try again")
