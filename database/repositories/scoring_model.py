import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from database.models import ScoringModelCache
from database.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ScoringModelRepository(BaseRepository):
    def get_for_search(self, search_id: str) -> Optional[ScoringModelCache]:
        stmt = select(ScoringModelCache).where(ScoringModelCache.search_id == search_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_or_create(self, search_id: str) -> ScoringModelCache:
        """Return the cache row for a search, inserting a pending one if absent."""
        existing = self.get_for_search(search_id)
        if existing:
            return existing

        try:
            with self.db.begin_nested():
                row = ScoringModelCache(search_id=search_id, status='pending')
                self.db.add(row)
            return row
        except IntegrityError:
            logger.debug(f"Scoring model cache row for search {search_id} created concurrently")
            return self.get_for_search(search_id)

    def mark_computed(
        self,
        row: ScoringModelCache,
        model: Dict[str, Any],
        content_hash: str,
        model_id: str,
        version: Optional[str],
    ) -> ScoringModelCache:
        row.status = 'computed'
        row.model = model
        row.content_hash = content_hash
        row.model_id = model_id
        row.version = version
        row.error = None
        row.computed_at = self.now()
        self.db.flush()
        return row

    def mark_error(self, row: ScoringModelCache, error: str) -> ScoringModelCache:
        row.status = 'error'
        row.error = error
        self.db.flush()
        return row

    def invalidate(self, search_id: str) -> bool:
        row = self.get_for_search(search_id)
        if not row:
            return False
        row.status = 'pending'
        row.model = None
        row.content_hash = None
        row.model_id = None
        row.version = None
        row.error = None
        row.computed_at = None
        self.db.flush()
        logger.info(f"Invalidated scoring model cache for search {search_id}")
        return True
