from __future__ import annotations

import logging
from typing import Callable, TypeVar

from domain.errors import StoreError
from domain.repositories import Session, Transaction

from .results import OperationResult

logger = logging.getLogger(__name__)

# SQLite does not support concurrent writes, but multiple workers share the
# database. A transaction that hits the write lock is started this many
# times in total before the request is given up on.
MAX_ATTEMPTS = 6

ResultT = TypeVar("ResultT", bound=OperationResult)


def should_retry(error: StoreError) -> bool:
    """Only contention on the write lock is worth another attempt."""

    return error.busy


class TransactionRunner:
    """
    Runs a unit of work inside a transaction on one session.

    - Results with a success-like status (below 400, redirects included)
      are committed, failure-like results are rolled back and returned.
    - A busy store restarts the unit of work from scratch, up to
      `max_attempts` attempts, after which a 503 result is returned.
    - Any other store error is fatal: the transaction is rolled back on a
      best-effort basis and the error propagates, so the owner of the
      session can replace it.
    """

    def __init__(self, session: Session, max_attempts: int = MAX_ATTEMPTS) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self._session = session
        self._max_attempts = max_attempts

    def run(self, unit_of_work: Callable[[Transaction], ResultT]) -> ResultT | OperationResult:
        for attempt in range(1, self._max_attempts + 1):
            tx = None
            try:
                tx = self._session.begin()
                result = unit_of_work(tx)
                if result.success:
                    tx.commit()
                else:
                    tx.rollback()
                return result
            except StoreError as err:
                if tx is not None:
                    self._rollback_quietly(tx)
                if not should_retry(err):
                    logger.error("Fatal database error: %s", err, exc_info=True)
                    raise
                logger.warning(
                    "Database is locked (attempt %d/%d): %s",
                    attempt,
                    self._max_attempts,
                    err,
                )
            except Exception:
                # A bug in the unit of work must not leave the transaction
                # open on this session.
                if tx is not None:
                    self._rollback_quietly(tx)
                raise

        logger.error("Database stayed busy after %d attempts", self._max_attempts)
        return OperationResult.service_unavailable(
            "The database is busy, wait a few seconds and try again."
        )

    @staticmethod
    def _rollback_quietly(tx: Transaction) -> None:
        # If this fails too, the session is replaced anyway or the next BEGIN
        # reports the problem.
        try:
            tx.rollback()
        except StoreError as err:
            logger.debug("Rollback failed: %s", err)
