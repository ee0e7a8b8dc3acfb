import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, func

from database.models import SourcingStrategy
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

TERMINAL_STRATEGY_STATUSES = ('completed', 'error')


class StrategyRepository(BaseRepository):
    def get_by_id(self, strategy_id: str) -> Optional[SourcingStrategy]:
        stmt = select(SourcingStrategy).where(SourcingStrategy.id == strategy_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_search(self, search_id: str) -> List[SourcingStrategy]:
        stmt = (
            select(SourcingStrategy)
            .where(SourcingStrategy.search_id == search_id)
            .order_by(SourcingStrategy.created_at, SourcingStrategy.id)
        )
        return self.db.execute(stmt).scalars().all()

    def get_many(self, search_id: str, strategy_ids: Iterable[str]) -> List[SourcingStrategy]:
        stmt = select(SourcingStrategy).where(
            SourcingStrategy.search_id == search_id,
            SourcingStrategy.id.in_(list(strategy_ids)),
        )
        return self.db.execute(stmt).scalars().all()

    def create_strategy(
        self,
        search_id: str,
        payload: Dict[str, Any],
        name: str = '',
        description: Optional[str] = None,
        relaunched_from_id: Optional[str] = None,
    ) -> SourcingStrategy:
        strategy = SourcingStrategy(
            search_id=search_id,
            name=name,
            description=description,
            payload=payload,
            status='pending',
            poll_count=0,
            candidates_found=0,
            relaunched_from_id=relaunched_from_id,
        )
        self.db.add(strategy)
        self.db.flush()
        return strategy

    def transition(self, strategy_id: str, allowed_from: Iterable[str], status: str, **values: Any) -> bool:
        """
        Move a strategy forward, guarded on its current status.

        Returns False when another delivery already moved it, so a duplicate
        tick never regresses a strategy.
        """
        result = self.db.execute(
            update(SourcingStrategy)
            .where(
                SourcingStrategy.id == strategy_id,
                SourcingStrategy.status.in_(list(allowed_from)),
            )
            .values(status=status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def increment_poll_count(self, strategy_id: str, expected: Optional[int] = None) -> Optional[int]:
        """
        Count one poll against the strategy's budget.

        With ``expected`` the increment only applies while the stored count
        still equals it. None is returned when it does not, meaning another
        delivery already took this poll.
        """
        stmt = update(SourcingStrategy).where(
            SourcingStrategy.id == strategy_id,
            SourcingStrategy.status == 'polling',
        )
        if expected is not None:
            stmt = stmt.where(SourcingStrategy.poll_count == expected)
        result = self.db.execute(
            stmt.values(poll_count=SourcingStrategy.poll_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        stmt = select(SourcingStrategy.poll_count).where(SourcingStrategy.id == strategy_id)
        return self.db.execute(stmt).scalar_one()

    def record_partial_results(self, strategy_id: str, found: int) -> None:
        """Raise ``candidates_found`` while the strategy is still polling."""
        self.db.execute(
            update(SourcingStrategy)
            .where(
                SourcingStrategy.id == strategy_id,
                SourcingStrategy.status == 'polling',
                SourcingStrategy.candidates_found < found,
            )
            .values(candidates_found=found)
            .execution_options(synchronize_session=False)
        )

    def status_counts(self, search_id: str) -> Dict[str, int]:
        stmt = (
            select(SourcingStrategy.status, func.count(SourcingStrategy.id))
            .where(SourcingStrategy.search_id == search_id)
            .group_by(SourcingStrategy.status)
        )
        return {status: count for status, count in self.db.execute(stmt).all()}
