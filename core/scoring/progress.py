"""Derived scoring progress. Nothing here is stored; every call re-reads the rows."""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict

from core.exceptions import NotFoundError
from database.uow import sourcing_uow

logger = logging.getLogger(__name__)


@dataclass
class ScoringCounts:
    total: int = 0
    scored: int = 0
    errors: int = 0
    unscored: int = 0
    excellent: int = 0
    good: int = 0
    fair: int = 0

    @property
    def is_scoring_complete(self) -> bool:
        return self.unscored == 0

    @property
    def finished(self) -> int:
        return self.scored + self.errors

    @classmethod
    def from_row(cls, row: Dict[str, int]) -> "ScoringCounts":
        total = row.get('total', 0)
        scored = row.get('scored', 0)
        errors = row.get('errors', 0)
        return cls(
            total=total,
            scored=scored,
            errors=errors,
            unscored=max(total - scored - errors, 0),
            excellent=row.get('excellent', 0),
            good=row.get('good', 0),
            fair=row.get('fair', 0),
        )


class ProgressAggregator:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory

    def count_in(self, repo, search_id: str) -> ScoringCounts:
        """Counts inside an already-open unit of work."""
        return ScoringCounts.from_row(repo.candidates.score_counts(search_id))

    def get_counts(self, search_id: str) -> ScoringCounts:
        with sourcing_uow(self.session_factory) as repo:
            return self.count_in(repo, search_id)

    def get_search_progress(self, search_id: str) -> Dict[str, Any]:
        """
        Scoring counts plus the search's own status, for polling clients.

        ``excellent``/``good``/``fair`` are cumulative (80+, 70+, 50+) so they
        line up with score filters.
        """
        with sourcing_uow(self.session_factory) as repo:
            search = repo.searches.get_by_id(search_id)
            if search is None:
                raise NotFoundError(f"Search {search_id} not found")
            counts = self.count_in(repo, search_id)
            result = asdict(counts)
            result['is_scoring_complete'] = counts.is_scoring_complete
            result['search_status'] = search.status
            result['search_progress'] = search.progress
            return result
