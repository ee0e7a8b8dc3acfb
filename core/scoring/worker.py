"""
Scoring of a single candidate.

One invocation per queued job. The worker holds no state between jobs;
everything it needs is on the job message or in the database.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_incrementing,
    retry_if_exception_type,
    before_sleep_log
)

from core.candidate_profile import candidate_to_dict, prepare_candidate_for_scoring
from core.exceptions import NotFoundError, UpstreamError, ValidationError
from core.scoring.model_cache import version_string
from core.scoring.progress import ProgressAggregator, ScoringCounts
from core.scoring_client import ScoringClient
from core.utils import round_half_up
from database.uow import sourcing_uow
from notification import events
from notification.realtime import RealtimeBus

logger = logging.getLogger(__name__)

MISSING_PARSE_ERROR = "Missing cached parse response"
MISSING_MODEL_ERROR = "Missing cached scoring model"


class ScoringWorker:
    def __init__(
        self,
        scoring_client: ScoringClient,
        realtime: RealtimeBus,
        progress: Optional[ProgressAggregator] = None,
        session_factory=None,
        max_attempts: int = 3,
        backoff_seconds: float = 0.4,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            scoring_client: Evaluate API client
            realtime: Bus for scoring.progress / scoring.completed
            progress: Aggregator used to recount after each write
            session_factory: Session factory, default is the app's SessionLocal
            max_attempts: Evaluate attempts per candidate
            backoff_seconds: Wait after attempt n is n * backoff_seconds
            sleep: Injected for tests
        """
        self.scoring_client = scoring_client
        self.realtime = realtime
        self.session_factory = session_factory
        self.progress = progress or ProgressAggregator(session_factory)
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def score_candidate(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """
        Score one candidate and record the outcome on its search link.

        Returns:
            {"success", "score", "scored", "total"} plus "error" on failure
            or "skipped" when the candidate already had a score

        Raises:
            ValidationError: message lacks searchId or a candidate reference
            NotFoundError: the search candidate row does not exist
        """
        search_id = message.get("searchId")
        search_candidate_id = message.get("searchCandidateId")
        candidate_id = message.get("candidateId")
        rescore = bool(message.get("rescore", False))
        if not search_id or not (search_candidate_id or candidate_id):
            raise ValidationError("Missing required fields")

        with sourcing_uow(self.session_factory) as repo:
            link = None
            if search_candidate_id:
                link = repo.candidates.get_search_candidate(search_candidate_id)
            if link is None and candidate_id:
                link = repo.candidates.get_link(search_id, candidate_id)
            if link is None or link.search_id != search_id:
                raise NotFoundError(f"Search candidate {search_candidate_id or candidate_id} not found")

            search_candidate_id = link.id
            candidate_id = link.candidate_id

            if link.match_score is not None and not rescore:
                counts = self.progress.count_in(repo, search_id)
                logger.info(f"Candidate {candidate_id} already scored for search {search_id}, skipping")
                return {
                    "success": True,
                    "skipped": True,
                    "score": link.match_score,
                    "scored": counts.scored,
                    "total": counts.total,
                }

            candidate_data = message.get("candidateData") or candidate_to_dict(link.candidate)
            search = repo.searches.get_by_id(search_id)
            cache = repo.scoring_models.get_for_search(search_id)

            precondition_error = None
            scoring_model = model_id = model_version = None
            if search is None or not isinstance(search.parsed_criteria, dict):
                precondition_error = MISSING_PARSE_ERROR
            elif cache is None or not cache.is_computed or not isinstance(cache.model, dict):
                precondition_error = MISSING_MODEL_ERROR
            else:
                scoring_model = cache.model
                model_id = cache.model_id
                model_version = cache.version

        score = None
        error = None
        result = None
        if precondition_error:
            error = precondition_error
            logger.error(f"Cannot score candidate {candidate_id} for search {search_id}: {error}")
        else:
            profile = prepare_candidate_for_scoring(candidate_data)
            try:
                result = self._evaluate_with_retries(search_candidate_id, candidate_id, profile, scoring_model)
                score = round_half_up(result["final_score"])
            except UpstreamError as e:
                error = str(e)
                logger.error(
                    f"Scoring failed for candidate {candidate_id} after {self.max_attempts} attempts: {error}"
                )

        with sourcing_uow(self.session_factory) as repo:
            if score is not None:
                repo.candidates.record_score(
                    search_candidate_id,
                    score,
                    result,
                    version=version_string(result.get("version")) or model_version,
                    model_id=model_id,
                )
            else:
                repo.candidates.record_error(search_candidate_id, error, clear_score=rescore)
            counts = self.progress.count_in(repo, search_id)

        self._emit_progress(search_id, candidate_id, search_candidate_id, score, counts)

        response = {
            "success": score is not None,
            "score": score,
            "scored": counts.scored,
            "total": counts.total,
        }
        if error:
            response["error"] = error
        return response

    def _evaluate_with_retries(
        self,
        search_candidate_id: str,
        candidate_id: str,
        profile: Dict[str, Any],
        scoring_model: Dict[str, Any]
    ) -> Dict[str, Any]:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception_type(UpstreamError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True
        )
        return retryer(self._attempt, search_candidate_id, candidate_id, profile, scoring_model)

    def _attempt(
        self,
        search_candidate_id: str,
        candidate_id: str,
        profile: Dict[str, Any],
        scoring_model: Dict[str, Any]
    ) -> Dict[str, Any]:
        with sourcing_uow(self.session_factory) as repo:
            attempt = repo.candidates.increment_attempts(search_candidate_id)
        logger.debug(f"Evaluating candidate {candidate_id}, attempt {attempt}")
        return self.scoring_client.evaluate(profile, scoring_model, candidate_id)

    def _emit_progress(
        self,
        search_id: str,
        candidate_id: str,
        search_candidate_id: str,
        score: Optional[int],
        counts: ScoringCounts
    ) -> None:
        self.realtime.emit_search(
            search_id,
            events.SCORING_PROGRESS,
            events.ScoringProgress(
                candidate_id=candidate_id,
                search_candidate_id=search_candidate_id,
                score=score,
                scored=counts.scored,
                total=counts.total,
            )
        )
        if counts.finished >= counts.total:
            logger.info(f"Scoring complete for search {search_id}: {counts.scored} scored, {counts.errors} errors")
            self.realtime.emit_search(
                search_id,
                events.SCORING_COMPLETED,
                events.ScoringCompleted(scored=counts.scored, errors=counts.errors)
            )
