"""
Once-per-search scoring model.

The parse result and the scoring model are computed by the external
scoring API the first time a search needs them and cached on the search.
Scoring workers only ever read the cache.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import NotFoundError, UpstreamError
from core.scoring_client import ScoringClient
from core.utils import content_hash
from database.models import generate_id
from database.uow import sourcing_uow

logger = logging.getLogger(__name__)


def version_string(version: Any) -> Optional[str]:
    """Versions are stored as text; the API may send them as numbers."""
    if version is None or version == '':
        return None
    return str(version)


@dataclass
class ScoringModelSnapshot:
    search_id: str
    model_id: str
    version: Optional[str]
    content_hash: str
    model: Dict[str, Any]

    @classmethod
    def from_row(cls, row) -> "ScoringModelSnapshot":
        return cls(
            search_id=row.search_id,
            model_id=row.model_id,
            version=row.version,
            content_hash=row.content_hash,
            model=row.model,
        )


class ScoringModelService:
    def __init__(self, scoring_client: ScoringClient, session_factory=None):
        self.scoring_client = scoring_client
        self.session_factory = session_factory

    def ensure_parsed(self, search_id: str) -> Dict[str, Any]:
        """Return the cached parse of the search query, calling the parse API on first use."""
        with sourcing_uow(self.session_factory) as repo:
            search = repo.searches.get_by_id(search_id)
            if search is None:
                raise NotFoundError(f"Search {search_id} not found")
            if isinstance(search.parsed_criteria, dict):
                return search.parsed_criteria
            query = search.query

        try:
            parsed = self.scoring_client.parse_query(query)
        except UpstreamError as e:
            with sourcing_uow(self.session_factory) as repo:
                search = repo.searches.get_by_id(search_id)
                repo.searches.save_parsed_criteria(search, None, error=str(e))
            raise

        with sourcing_uow(self.session_factory) as repo:
            search = repo.searches.get_by_id(search_id)
            repo.searches.save_parsed_criteria(search, parsed, schema_version=parsed.get('schema_version'))
        logger.info(f"Cached parsed criteria for search {search_id}")
        return parsed

    def get_model(self, search_id: str) -> Optional[ScoringModelSnapshot]:
        with sourcing_uow(self.session_factory) as repo:
            row = repo.scoring_models.get_for_search(search_id)
            if row is None or not row.is_computed:
                return None
            return ScoringModelSnapshot.from_row(row)

    def ensure_model(self, search_id: str, force: bool = False) -> ScoringModelSnapshot:
        """
        Compute the scoring model for a search unless it is already cached.

        Two concurrent callers may both call the calculation API; only the
        first to store a result wins and the second returns the stored one.

        Raises:
            NotFoundError: unknown search
            UpstreamError: parse or calculation failed (recorded on the cache row)
        """
        with sourcing_uow(self.session_factory) as repo:
            if repo.searches.get_by_id(search_id) is None:
                raise NotFoundError(f"Search {search_id} not found")
            row = repo.scoring_models.get_or_create(search_id)
            if row.is_computed and not force:
                return ScoringModelSnapshot.from_row(row)

        try:
            parsed = self.ensure_parsed(search_id)
            model = self.scoring_client.calculate_model(parsed)
        except UpstreamError as e:
            logger.error(f"Scoring model computation failed for search {search_id}: {e}")
            with sourcing_uow(self.session_factory) as repo:
                row = repo.scoring_models.get_or_create(search_id)
                if not row.is_computed:
                    repo.scoring_models.mark_error(row, str(e))
            raise

        with sourcing_uow(self.session_factory) as repo:
            row = repo.scoring_models.get_or_create(search_id)
            if row.is_computed and not force:
                logger.info(f"Scoring model for search {search_id} was cached concurrently")
                return ScoringModelSnapshot.from_row(row)
            digest = content_hash(model)
            # an id names one model content; a recompute that changed it gets a new one
            model_id = row.model_id if row.model_id and row.content_hash == digest else generate_id()
            row = repo.scoring_models.mark_computed(
                row,
                model=model,
                content_hash=digest,
                model_id=model_id,
                version=version_string(model.get('version') if isinstance(model, dict) else None),
            )
            snapshot = ScoringModelSnapshot.from_row(row)

        logger.info(
            f"Cached scoring model {snapshot.model_id} for search {search_id} "
            f"(version={snapshot.version}, hash={snapshot.content_hash[:12]})"
        )
        return snapshot

    def invalidate(self, search_id: str) -> bool:
        with sourcing_uow(self.session_factory) as repo:
            return repo.scoring_models.invalidate(search_id)
