from sqlalchemy.orm import Session

from database.repositories import (
    SearchRepository,
    StrategyRepository,
    CandidateRepository,
    ScoringModelRepository,
    CreditRepository,
)


class SourcingRepository:
    """One session, every table the pipeline touches."""

    def __init__(self, db: Session):
        self.db = db
        self.searches = SearchRepository(db)
        self.strategies = StrategyRepository(db)
        self.candidates = CandidateRepository(db)
        self.scoring_models = ScoringModelRepository(db)
        self.credits = CreditRepository(db)

    def flush(self) -> None:
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
