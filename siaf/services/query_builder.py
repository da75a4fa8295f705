"""
Filtered list/report queries.

A listing is declared once as a base SELECT (joins included), an ordered
tuple of ``FilterSpec`` and an ORDER BY. ``FilteredQuery.apply`` turns the
request parameters into a single predicate list; the page query and the
count query are both derived from that one filtered statement, so they can
never disagree about which rows match.
"""
import enum
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import Date, DateTime, Select, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from ..errors import ValidationError


# Appended to date-only upper bounds on timestamp columns so the whole day is included
END_OF_DAY = time(23, 59, 59)


class Match(str, enum.Enum):
    exact = "exact"
    like = "like"
    date_from = "date_from"
    date_to = "date_to"


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _as_date(param: str, value: Any) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError.single(param, "Invalid date, expected YYYY-MM-DD")


def _as_datetime(param: str, value: Any, upper: bool) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and len(value.strip()) > 10:
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError.single(param, "Invalid date, expected ISO 8601")
    day = _as_date(param, value)
    return datetime.combine(day, END_OF_DAY if upper else time.min)


@dataclass(frozen=True, eq=False)
class FilterSpec:
    """One optional filter: request parameter -> predicate over one or more columns."""

    param: str
    columns: Tuple[ColumnElement, ...]
    match: Match = Match.exact

    def predicate(self, value: Any) -> ColumnElement:
        if self.match is Match.like:
            term = f"%{str(value).strip()}%"
            return or_(*[c.ilike(term) for c in self.columns])

        column = self.columns[0]
        if self.match is Match.exact:
            return column == value

        upper = self.match is Match.date_to
        if isinstance(column.type, DateTime):
            bound = _as_datetime(self.param, value, upper)
        elif isinstance(column.type, Date):
            bound = _as_date(self.param, value)
        else:
            bound = value
        return column <= bound if upper else column >= bound


def exact(param: str, column: ColumnElement) -> FilterSpec:
    return FilterSpec(param, (column,), Match.exact)


def like(param: str, *columns: ColumnElement) -> FilterSpec:
    return FilterSpec(param, tuple(columns), Match.like)


def date_range(column: ColumnElement, from_param: str = "dateFrom", to_param: str = "dateTo") -> Tuple[FilterSpec, FilterSpec]:
    return (
        FilterSpec(from_param, (column,), Match.date_from),
        FilterSpec(to_param, (column,), Match.date_to),
    )


def build_predicates(specs: Sequence[FilterSpec], params: Mapping[str, Any]) -> List[ColumnElement]:
    """Predicates for the non-blank params, in declaration order."""
    predicates = []
    for spec in specs:
        value = params.get(spec.param)
        if _is_blank(value):
            continue
        predicates.append(spec.predicate(value))
    return predicates


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    limit: int = 10

    def __post_init__(self):
        if self.page < 1:
            raise ValueError("page must be >= 1")
        if self.limit < 1:
            raise ValueError("limit must be >= 1")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.limit)

    def as_dict(self, total: int) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "totalPages": self.total_pages(total),
        }


class AppliedQuery:
    def __init__(self, statement: Select, predicates: List[ColumnElement], order_by: Sequence[ColumnElement]):
        self.statement = statement
        self.predicates = predicates
        self.order_by = tuple(order_by)

    def count_statement(self) -> Select:
        return select(func.count()).select_from(self.statement.order_by(None).subquery())

    def all_statement(self) -> Select:
        return self.statement.order_by(*self.order_by)

    def page_statement(self, pagination: Pagination) -> Select:
        return self.all_statement().limit(pagination.limit).offset(pagination.offset)

    def fetch_page(self, db, pagination: Pagination) -> Tuple[List[dict], int]:
        rows = [dict(r._mapping) for r in db.execute(self.page_statement(pagination))]
        total = db.execute(self.count_statement()).scalar_one()
        return rows, total

    def fetch_all(self, db) -> List[dict]:
        return [dict(r._mapping) for r in db.execute(self.all_statement())]


class FilteredQuery:
    def __init__(self, base: Select, filters: Sequence[FilterSpec] = (), order_by: Sequence[ColumnElement] = ()):
        self.base = base
        self.filters = tuple(filters)
        self.order_by = tuple(order_by)

    def apply(self, params: Optional[Mapping[str, Any]] = None) -> AppliedQuery:
        predicates = build_predicates(self.filters, params or {})
        statement = self.base.where(*predicates) if predicates else self.base
        return AppliedQuery(statement, predicates, self.order_by)

    def page(self, db, params: Mapping[str, Any], pagination: Pagination) -> Tuple[List[dict], dict]:
        rows, total = self.apply(params).fetch_page(db, pagination)
        return rows, pagination.as_dict(total)
