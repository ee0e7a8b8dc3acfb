import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import select, update

from database.models import Search
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

TERMINAL_SEARCH_STATUSES = ('completed', 'error')


class SearchRepository(BaseRepository):
    def get_by_id(self, search_id: str) -> Optional[Search]:
        stmt = select(Search).where(Search.id == search_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_search(
        self,
        query: str,
        name: str = '',
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Search:
        search = Search(
            query=query,
            name=name or query[:80],
            organization_id=organization_id,
            user_id=user_id,
            status='created',
            progress=0,
        )
        self.db.add(search)
        self.db.flush()
        return search

    def set_status(self, search_id: str, status: str, progress: Optional[int] = None) -> None:
        values: Dict[str, Any] = {'status': status}
        if progress is not None:
            values['progress'] = progress
        self.db.execute(
            update(Search).where(Search.id == search_id).values(**values)
        )

    def set_progress(self, search_id: str, progress: int) -> None:
        self.db.execute(
            update(Search)
            .where(Search.id == search_id, Search.status.notin_(TERMINAL_SEARCH_STATUSES))
            .values(progress=progress)
        )

    def transition_status(
        self,
        search_id: str,
        allowed_from: Iterable[str],
        status: str,
        progress: Optional[int] = None,
    ) -> bool:
        """
        Conditionally move a search to ``status``.

        Returns True only for the caller whose UPDATE matched, which makes
        finalisation happen exactly once under concurrent callers.
        """
        values: Dict[str, Any] = {'status': status}
        if progress is not None:
            values['progress'] = progress
        result = self.db.execute(
            update(Search)
            .where(Search.id == search_id, Search.status.in_(list(allowed_from)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def save_parsed_criteria(
        self,
        search: Search,
        parsed: Optional[Dict[str, Any]],
        schema_version: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        search.parsed_criteria = parsed
        search.parse_schema_version = schema_version
        search.parse_error = error
        search.parse_updated_at = self.now()
        self.db.flush()
