import contextlib

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from core.config_loader import get_config
from database.models import Base

DATABASE_URL = get_config().database.url

engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextlib.contextmanager
def db_session_scope(session_factory=None):
    """Provide a transactional scope around a series of operations."""
    session: Session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
