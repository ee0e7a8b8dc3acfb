"""Fan-out of per-candidate scoring jobs with bounded parallelism."""

import logging
from typing import Any, Dict, List, Optional

from core.candidate_profile import candidate_to_dict
from core.exceptions import NotFoundError, SequencingError, ValidationError
from database.uow import sourcing_uow
from notification import events
from notification.realtime import RealtimeBus
from pipeline.queue import TaskPublisher

logger = logging.getLogger(__name__)

SCORE_CANDIDATE_PATH = "/api/scoring/candidate"


def compute_delays(count: int, parallelism: int, bucket_seconds: int = 2) -> List[int]:
    """
    Delivery delay per job: the i-th job goes into bucket ``i // parallelism``.

    At most ``parallelism`` jobs share a delay, so the external API sees
    bounded concurrency without any in-process pool.

    >>> compute_delays(7, 3)
    [0, 0, 0, 2, 2, 2, 4]
    """
    return [(i // parallelism) * bucket_seconds for i in range(count)]


def validate_parallelism(parallelism: Any) -> int:
    if isinstance(parallelism, bool) or not isinstance(parallelism, int) or parallelism < 1:
        raise ValidationError(f"parallelism must be an integer >= 1, got {parallelism!r}")
    return parallelism


class ScoringDispatcher:
    def __init__(
        self,
        publisher: TaskPublisher,
        realtime: RealtimeBus,
        session_factory=None,
        default_parallelism: int = 5,
        bucket_seconds: int = 2
    ):
        self.publisher = publisher
        self.realtime = realtime
        self.session_factory = session_factory
        self.default_parallelism = default_parallelism
        self.bucket_seconds = bucket_seconds

    def dispatch(
        self,
        search_id: str,
        parallelism: Optional[int] = None,
        rescore: bool = False
    ) -> Dict[str, Any]:
        """
        Queue one scoring job per candidate that still needs a score.

        Args:
            search_id: Search whose candidates are scored
            parallelism: Jobs per delay bucket, default from config
            rescore: Queue every candidate, with a flag that lets the worker
                overwrite existing scores

        Returns:
            {"success": True, "queued": n, "searchId": search_id}

        Raises:
            ValidationError: parallelism < 1
            NotFoundError: unknown search
            SequencingError: no computed scoring model cached for the search
        """
        parallelism = validate_parallelism(
            self.default_parallelism if parallelism is None else parallelism
        )

        with sourcing_uow(self.session_factory) as repo:
            if repo.searches.get_by_id(search_id) is None:
                raise NotFoundError(f"Search {search_id} not found")

            cache = repo.scoring_models.get_for_search(search_id)
            if cache is None or not cache.is_computed:
                raise SequencingError(f"Search {search_id} is missing cached scoring model")

            total = repo.candidates.count_for_search(search_id)
            links = repo.candidates.list_for_search(search_id) if rescore else repo.candidates.list_unscored(search_id)
            messages = []
            for link in links:
                body = {
                    "searchId": search_id,
                    "searchCandidateId": link.id,
                    "candidateId": link.candidate_id,
                    "candidateData": candidate_to_dict(link.candidate),
                    "total": total,
                }
                if rescore:
                    body["rescore"] = True
                messages.append(body)

        self.realtime.emit_search(search_id, events.SCORING_STARTED, events.ScoringStarted(total=total))

        delays = compute_delays(len(messages), parallelism, self.bucket_seconds)
        for body, delay in zip(messages, delays):
            self.publisher.publish(SCORE_CANDIDATE_PATH, body, delay_seconds=delay)

        logger.info(
            f"Queued {len(messages)} scoring jobs for search {search_id} "
            f"(total={total}, parallelism={parallelism}, rescore={rescore})"
        )
        return {"success": True, "queued": len(messages), "searchId": search_id}
