"""Dialect-aware SQL helpers and date windows used by the stats queries."""
from datetime import date, datetime, timedelta, timezone
from typing import Tuple

from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.expression import FunctionElement
from sqlalchemy.types import Float


class hours_between(FunctionElement):
    """Elapsed hours from the first timestamp argument to the second."""

    type = Float()
    name = "hours_between"
    inherit_cache = True


@compiles(hours_between)
def _hours_between_default(element, compiler, **kw):
    start, end = list(element.clauses)
    return "EXTRACT(EPOCH FROM (%s - %s)) / 3600.0" % (
        compiler.process(end, **kw),
        compiler.process(start, **kw),
    )


@compiles(hours_between, "sqlite")
def _hours_between_sqlite(element, compiler, **kw):
    start, end = list(element.clauses)
    return "(julianday(%s) - julianday(%s)) * 24" % (
        compiler.process(end, **kw),
        compiler.process(start, **kw),
    )


def utc_now() -> datetime:
    # naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_today() -> date:
    return utc_now().date()


def month_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime(day.year, day.month, 1)
    if day.month == 12:
        end = datetime(day.year + 1, 1, 1)
    else:
        end = datetime(day.year, day.month + 1, 1)
    return start, end


def days_ago(days: int) -> datetime:
    return datetime.combine(utc_today() - timedelta(days=days), datetime.min.time())
