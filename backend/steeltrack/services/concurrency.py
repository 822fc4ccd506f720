# Overview: Row locking and retry helpers shared by balance-affecting services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Optimistic version_id checks on users still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a unit of DB work with retry on concurrency-related failures.

    func must flush its own changes so that version conflicts surface here,
    and must re-load every row it touches (the session is rolled back
    between attempts, so nothing half-applied survives a retry).
    """
    for attempt in range(attempts):
        try:
            return func()
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Retrying %s after %s (attempt %d/%d)",
                getattr(func, "__name__", "operation"),
                type(exc).__name__,
                attempt + 1,
                attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))


def commit_or_rollback() -> None:
    """Commit the request's unit of work; roll everything back if that fails."""
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
