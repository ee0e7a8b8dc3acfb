import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, func, case, and_
from sqlalchemy.exc import IntegrityError

from database.models import Candidate, SearchCandidate
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CandidateRepository(BaseRepository):
    def get_by_external_id(self, external_id: str) -> Optional[Candidate]:
        stmt = select(Candidate).where(Candidate.external_id == external_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, candidate_id: str) -> Optional[Candidate]:
        stmt = select(Candidate).where(Candidate.id == candidate_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def upsert_candidate(self, external_id: str, fields: Dict[str, Any]) -> Candidate:
        """
        Insert or refresh a candidate profile by its external id.

        A concurrent insert of the same external id loses on the unique
        constraint inside a savepoint and falls back to updating the winner.
        """
        existing = self.get_by_external_id(external_id)
        if existing is None:
            try:
                with self.db.begin_nested():
                    candidate = Candidate(external_id=external_id, **fields)
                    self.db.add(candidate)
                return candidate
            except IntegrityError:
                logger.debug(f"Candidate {external_id} inserted concurrently, updating instead")
                existing = self.get_by_external_id(external_id)

        for key, value in fields.items():
            setattr(existing, key, value)
        self.db.flush()
        return existing

    def link_to_search(
        self,
        search_id: str,
        candidate_id: str,
        source_strategy_id: Optional[str] = None,
    ) -> SearchCandidate:
        """Attach a candidate to a search. An existing link, and its score, is left untouched."""
        existing = self.get_link(search_id, candidate_id)
        if existing:
            return existing

        try:
            with self.db.begin_nested():
                link = SearchCandidate(
                    search_id=search_id,
                    candidate_id=candidate_id,
                    source_strategy_id=source_strategy_id,
                    scoring_attempts=0,
                )
                self.db.add(link)
            return link
        except IntegrityError:
            return self.get_link(search_id, candidate_id)

    def get_link(self, search_id: str, candidate_id: str) -> Optional[SearchCandidate]:
        stmt = select(SearchCandidate).where(
            SearchCandidate.search_id == search_id,
            SearchCandidate.candidate_id == candidate_id,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_search_candidate(self, search_candidate_id: str) -> Optional[SearchCandidate]:
        stmt = select(SearchCandidate).where(SearchCandidate.id == search_candidate_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_unscored(self, search_id: str) -> List[SearchCandidate]:
        """Candidates without a score, oldest first. Earlier scoring errors are retried."""
        stmt = (
            select(SearchCandidate)
            .where(
                SearchCandidate.search_id == search_id,
                SearchCandidate.match_score.is_(None),
            )
            .order_by(SearchCandidate.created_at, SearchCandidate.id)
        )
        return self.db.execute(stmt).scalars().all()

    def list_for_search(self, search_id: str, limit: Optional[int] = None) -> List[SearchCandidate]:
        stmt = (
            select(SearchCandidate)
            .where(SearchCandidate.search_id == search_id)
            .order_by(SearchCandidate.match_score.desc().nulls_last(), SearchCandidate.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        return self.db.execute(stmt).scalars().all()

    def count_for_search(self, search_id: str) -> int:
        stmt = select(func.count(SearchCandidate.id)).where(SearchCandidate.search_id == search_id)
        return self.db.execute(stmt).scalar_one()

    def increment_attempts(self, search_candidate_id: str) -> int:
        self.db.execute(
            update(SearchCandidate)
            .where(SearchCandidate.id == search_candidate_id)
            .values(scoring_attempts=SearchCandidate.scoring_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        stmt = select(SearchCandidate.scoring_attempts).where(SearchCandidate.id == search_candidate_id)
        return self.db.execute(stmt).scalar_one()

    def record_score(
        self,
        search_candidate_id: str,
        score: int,
        result: Dict[str, Any],
        version: Optional[str],
        model_id: Optional[str],
    ) -> None:
        now = self.now()
        self.db.execute(
            update(SearchCandidate)
            .where(SearchCandidate.id == search_candidate_id)
            .values(
                match_score=score,
                scoring_result=result,
                scoring_version=version,
                scoring_model_id=model_id,
                scoring_error=None,
                scoring_error_at=None,
                scoring_updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    def record_error(self, search_candidate_id: str, error: str, clear_score: bool = False) -> None:
        """
        Record a terminal scoring failure.

        An existing score survives unless ``clear_score`` is set, since a
        redelivered job must not wipe an earlier success.
        """
        now = self.now()
        values: Dict[str, Any] = {
            'scoring_error': error,
            'scoring_error_at': now,
            'scoring_updated_at': now,
        }
        stmt = update(SearchCandidate).where(SearchCandidate.id == search_candidate_id)
        if clear_score:
            values['match_score'] = None
            values['scoring_result'] = None
        else:
            stmt = stmt.where(SearchCandidate.match_score.is_(None))
        self.db.execute(stmt.values(**values).execution_options(synchronize_session=False))

    def score_counts(self, search_id: str) -> Dict[str, int]:
        """Aggregate scoring counts for a search in a single query."""
        score = SearchCandidate.match_score
        stmt = select(
            func.count(SearchCandidate.id).label('total'),
            func.count(score).label('scored'),
            func.count(case((and_(score.is_(None), SearchCandidate.scoring_error.isnot(None)), 1))).label('errors'),
            func.count(case((score >= 80, 1))).label('excellent'),
            func.count(case((score >= 70, 1))).label('good'),
            func.count(case((score >= 50, 1))).label('fair'),
        ).where(SearchCandidate.search_id == search_id)
        row = self.db.execute(stmt).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}
