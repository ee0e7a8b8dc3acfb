from datetime import datetime, timezone

from sqlalchemy.orm import Session


class BaseRepository:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
