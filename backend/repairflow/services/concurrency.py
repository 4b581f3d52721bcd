# Overview: Row locking and retry wrapper shared by every lifecycle write.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import InvalidTransition, RepairFlowError
from ..extensions import db


def lock_for_update(query):
    """
    Lock the rows a lifecycle write is about to change.

    NOTE: SQLite ignores SELECT ... FOR UPDATE. Tickets, estimates, invoices,
    payments and claims also carry a version_id column, so a writer that
    slips past the lock still loses with StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(op, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one lifecycle write (load, validate, mutate, ledger, commit).

    RULES:
    - StaleDataError means another writer committed a newer version of a row
      op had loaded. The move op validated is no longer the move it would
      make, so it is never replayed: the caller gets InvalidTransition.
    - OperationalError (locked / deadlocked before anything was written) is
      rolled back and retried with backoff. op must re-read its rows.
    - A RepairFlowError rolls back whatever op already flushed (ticket rows,
      ledger events) and propagates unchanged.
    """
    for attempt in range(1, attempts + 1):
        try:
            return op()
        except RepairFlowError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            current_app.logger.warning("Write lost to a concurrent update: %s", exc)
            raise InvalidTransition(
                "Conflict: the record was changed by someone else, reload and try again",
                details={"conflict": "stale_version"},
            ) from exc
        except OperationalError as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error("Write gave up after %d attempts: %s", attempts, exc)
                raise
            current_app.logger.warning("Write conflict on attempt %d, retrying: %s", attempt, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
