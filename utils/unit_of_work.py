"""Unit of work - the single transactional scope passed to every money-moving call"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional
from sqlalchemy.orm import Session

from database import SessionLocal

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Wraps the session of one open database transaction.

    Services that mutate balances, trust scores or outbox rows require one of these
    instead of accepting an optional session, so every write they perform belongs
    to the caller's transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    def depth(self) -> int:
        return getattr(self.session, '_unit_of_work_depth', 0)

    def flush(self) -> None:
        self.session.flush()

    @contextmanager
    def savepoint(self) -> Generator["UnitOfWork", None, None]:
        """Nested SAVEPOINT - a failure inside rolls back only the nested writes"""
        with self.session.begin_nested():
            yield self


@contextmanager
def unit_of_work(session: Optional[Session] = None) -> Generator[UnitOfWork, None, None]:
    """
    Context manager for an atomic unit of work with rollback on any error.

    Nested use on the same session defers the commit to the outermost scope.
    When no session is provided a new one is opened and closed here.
    """
    session_provided = session is not None
    if not session_provided:
        session = SessionLocal()
        logger.debug("Created new session for unit of work")

    transaction_depth = getattr(session, '_unit_of_work_depth', 0)
    setattr(session, '_unit_of_work_depth', transaction_depth + 1)
    try:
        yield UnitOfWork(session)

        # For nested units, let the outermost handle commit
        if transaction_depth == 0:
            session.commit()
            logger.debug("Unit of work committed")
        else:
            logger.debug(f"Nested unit of work completed (depth: {transaction_depth + 1}), deferring commit")
    except Exception as e:
        if transaction_depth == 0:
            session.rollback()
            logger.error(f"Unit of work rolled back due to error: {e}")
        raise
    finally:
        setattr(session, '_unit_of_work_depth', transaction_depth)
        if not session_provided:
            session.close()
