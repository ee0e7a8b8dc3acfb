import contextlib
import logging

from database.repository import SourcingRepository

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def sourcing_uow(session_factory=None):
    """Per-unit-of-work transaction scope.

    Yields a SourcingRepository bound to a fresh Session. Commits on success,
    rolls back on exception, always closes.

    Usage:
        with sourcing_uow() as repo:
            search = repo.searches.get_by_id(search_id)
            # perform operations...
        # commit happens automatically on successful exit
    """
    if session_factory is None:
        from database.database import SessionLocal
        session_factory = SessionLocal

    session = session_factory()
    try:
        repo = SourcingRepository(session)
        yield repo
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
