"""Guarded status transitions: one conditional UPDATE, zero rows means not-found or conflict."""
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError


def apply_transition(
    db: Session,
    model,
    row_id: int,
    values: dict,
    allowed_from: Optional[Iterable[str]] = None,
    entity: str = "Record",
) -> None:
    """Update ``model`` row ``row_id`` only while its status is in ``allowed_from``.

    Nothing is committed here. When no row changes, the transaction is rolled back
    and a 404 (row absent) or 409 (row in another state) is raised.
    """
    stmt = update(model).where(model.id == row_id)
    if allowed_from is not None:
        stmt = stmt.where(model.status.in_(tuple(allowed_from)))
    result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    if result.rowcount:
        return
    current = db.execute(select(model.status).where(model.id == row_id)).scalar_one_or_none()
    db.rollback()
    if current is None:
        raise NotFoundError(f"{entity} not found")
    raise ConflictError(f"{entity} is '{current}' and cannot make this transition")
