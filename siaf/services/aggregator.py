"""
Concurrent batches of independent read-only aggregate queries.

Every query in a batch runs on its own Session (and therefore its own pooled
connection) in a worker thread. The batch is all-or-nothing: the first
failure cancels whatever has not started yet and the caller gets a
StoreError instead of a partial dict.
"""
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

import structlog
from sqlalchemy.orm import Session
from sqlalchemy.sql import Executable

from ..errors import StoreError


logger = structlog.get_logger(__name__)


@dataclass(frozen=True, eq=False)
class Aggregate:
    statement: Executable
    scalar: bool = False  # return the first column of the first row instead of a row list


def scalar(statement: Executable) -> Aggregate:
    return Aggregate(statement, scalar=True)


def _run(session_factory: Callable[[], Session], query: Aggregate) -> Any:
    db = session_factory()
    try:
        result = db.execute(query.statement)
        if query.scalar:
            return result.scalar()
        return [dict(r._mapping) for r in result]
    finally:
        db.close()


def gather(
    session_factory: Callable[[], Session],
    queries: Mapping[str, Union[Executable, Aggregate]],
    max_workers: Optional[int] = None,
) -> Dict[str, Any]:
    """Run every query concurrently and return ``{name: result}`` in declaration order."""
    batch = {name: q if isinstance(q, Aggregate) else Aggregate(q) for name, q in queries.items()}
    if not batch:
        return {}
    # every query is in flight at once; the engine pool must hold a whole batch
    workers = max_workers or len(batch)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="report") as pool:
        futures = {pool.submit(_run, session_factory, q): name for name, q in batch.items()}
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for future in pending:
            future.cancel()
        for future in done:
            exc = future.exception()
            if exc is not None:
                name = futures[future]
                logger.error("report_batch_failed", query=name, error=str(exc), batch=list(batch))
                raise StoreError(f"Aggregate query {name!r} failed", cause=exc)
        results = {name: future.result() for future, name in futures.items()}

    return {name: results[name] for name in batch}
