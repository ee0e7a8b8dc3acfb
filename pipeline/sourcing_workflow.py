"""
Search-level sourcing: plan strategies, track them, finalise once, hand off to scoring.

Progress bands on the search row:
    10  processing   (query accepted)
    20  generating   (strategies saved)
    30  executing    (strategy ticks scheduled)
    30..90           (share of strategies finished)
    100 completed
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from core.exceptions import NotFoundError, UpstreamError
from core.scoring.model_cache import ScoringModelService
from core.sourcing_client import SourcingClient
from database.uow import sourcing_uow
from notification import events
from notification.realtime import RealtimeBus
from pipeline.queue import TaskPublisher
from pipeline.strategy_workflow import STRATEGY_TICK_PATH

logger = logging.getLogger(__name__)

SCORING_DISPATCH_PATH = "/api/workflow/scoring"

PROGRESS_PROCESSING = 10
PROGRESS_GENERATING = 20
PROGRESS_EXECUTING = 30
PROGRESS_STRATEGY_SPAN = 60

ACTIVE_SEARCH_STATUSES = ('created', 'processing', 'generating', 'executing', 'polling')


def strategy_progress(finished: int, total: int) -> int:
    """30 while nothing has finished, 90 once every strategy has."""
    if total <= 0:
        return PROGRESS_EXECUTING
    return PROGRESS_EXECUTING + (PROGRESS_STRATEGY_SPAN * finished) // total


class SourcingWorkflow:
    def __init__(
        self,
        sourcing_client: SourcingClient,
        model_service: ScoringModelService,
        publisher: TaskPublisher,
        realtime: RealtimeBus,
        session_factory=None,
        strategy_max_items: int = 25,
        scoring_parallelism: int = 5
    ):
        self.sourcing_client = sourcing_client
        self.model_service = model_service
        self.publisher = publisher
        self.realtime = realtime
        self.session_factory = session_factory
        self.strategy_max_items = strategy_max_items
        self.scoring_parallelism = scoring_parallelism

    def _status(self, search_id: str, status: str, message: str, progress: int) -> None:
        with sourcing_uow(self.session_factory) as repo:
            repo.searches.set_status(search_id, status, progress)
        self.realtime.emit_search(
            search_id,
            events.STATUS_UPDATED,
            events.StatusUpdated(status=status, message=message, progress=progress)
        )

    def _fail_search(self, search_id: str, error: str) -> None:
        with sourcing_uow(self.session_factory) as repo:
            repo.searches.set_status(search_id, 'error', 0)
        self.realtime.emit_search(search_id, events.SEARCH_FAILED, events.SearchFailed(error=error))
        logger.error(f"Search {search_id} failed: {error}")

    def create_search(
        self,
        query: str,
        name: str = '',
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> str:
        with sourcing_uow(self.session_factory) as repo:
            search = repo.searches.create_search(query, name=name, organization_id=organization_id, user_id=user_id)
            return search.id

    def _clamp(self, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        clamped = copy.deepcopy(payload) if payload else {}
        clamped['maxItems'] = self.strategy_max_items
        return clamped

    def start(self, search_id: str, strategies: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        Plan and launch sourcing for a search.

        Args:
            search_id: Search to source
            strategies: Pre-built strategies; generated from the query when empty

        Returns:
            {"success": True, "searchId": ..., "strategyIds": [...]}

        Raises:
            NotFoundError: unknown search
            UpstreamError: parsing or strategy generation failed (search set to error)
        """
        with sourcing_uow(self.session_factory) as repo:
            search = repo.searches.get_by_id(search_id)
            if search is None:
                raise NotFoundError(f"Search {search_id} not found")
            query = search.query

        logger.info(f"Sourcing started for search {search_id}")
        self._status(search_id, 'processing', "Analyzing requirements...", PROGRESS_PROCESSING)

        if not strategies:
            try:
                criteria = self.model_service.ensure_parsed(search_id)
                strategies = self.sourcing_client.generate_strategies(query, criteria)
            except UpstreamError as e:
                self._fail_search(search_id, str(e))
                raise
            if not strategies:
                self._fail_search(search_id, "No strategies were generated")
                raise UpstreamError("No strategies were generated")

        with sourcing_uow(self.session_factory) as repo:
            repo.searches.set_status(search_id, 'generating', PROGRESS_GENERATING)
            strategy_ids = []
            for item in strategies:
                payload = item.get('apify_payload') or item.get('payload') or {}
                strategy = repo.strategies.create_strategy(
                    search_id,
                    payload=self._clamp(payload),
                    name=item.get('name') or '',
                    description=item.get('description'),
                )
                strategy_ids.append(strategy.id)

        self.realtime.emit_search(
            search_id,
            events.STATUS_UPDATED,
            events.StatusUpdated(
                status='generating',
                message=f"Generated {len(strategy_ids)} sourcing strategies",
                progress=PROGRESS_GENERATING
            )
        )

        self._launch(search_id, strategy_ids, f"Executing {len(strategy_ids)} strategies...")
        return {"success": True, "searchId": search_id, "strategyIds": strategy_ids}

    def _launch(self, search_id: str, strategy_ids: List[str], message: str) -> None:
        # executing must be persisted before the first tick can finish a strategy
        self._status(search_id, 'executing', message, PROGRESS_EXECUTING)
        for strategy_id in strategy_ids:
            self.publisher.publish(STRATEGY_TICK_PATH, {"strategyId": strategy_id, "pollCount": 0}, delay_seconds=0)
        logger.info(f"Scheduled {len(strategy_ids)} strategies for search {search_id}")

    def relaunch(self, search_id: str, strategy_ids: List[str]) -> List[str]:
        """
        "Find more": run strategies again on their next result page.

        Each listed id yields a new pending strategy whose payload has
        ``startPage`` advanced by one; an id listed twice advances twice.
        The originals keep their terminal status.
        """
        with sourcing_uow(self.session_factory) as repo:
            if repo.searches.get_by_id(search_id) is None:
                raise NotFoundError(f"Search {search_id} not found")

            originals = {s.id: s for s in repo.strategies.get_many(search_id, set(strategy_ids))}
            pages: Dict[str, int] = {}
            new_ids = []
            for strategy_id in strategy_ids:
                original = originals.get(strategy_id)
                if original is None:
                    logger.warning(f"Strategy {strategy_id} not found on search {search_id}, skipping")
                    continue
                base_page = pages.get(strategy_id, (original.payload or {}).get('startPage') or 1)
                next_page = base_page + 1
                pages[strategy_id] = next_page

                payload = self._clamp(original.payload)
                payload['startPage'] = next_page
                strategy = repo.strategies.create_strategy(
                    search_id,
                    payload=payload,
                    name=original.name,
                    description=original.description,
                    relaunched_from_id=original.id,
                )
                new_ids.append(strategy.id)

            for strategy_id, page in pages.items():
                original = originals[strategy_id]
                original.payload = {**(original.payload or {}), 'startPage': page}

        if not new_ids:
            raise NotFoundError(f"No strategies to relaunch for search {search_id}")

        self._launch(search_id, new_ids, f"Continuing with {len(new_ids)} strategies...")
        return new_ids

    def on_strategy_finished(self, search_id: str) -> Optional[str]:
        """
        Record that one of the search's strategies reached a terminal state.

        Safe to call more than once: the final status is written by a
        conditional update, so only one caller finalises and hands off to
        scoring.

        Returns:
            The final search status if this call finalised it, else None
        """
        with sourcing_uow(self.session_factory) as repo:
            counts = repo.strategies.status_counts(search_id)
            total = sum(counts.values())
            completed = counts.get('completed', 0)
            finished = completed + counts.get('error', 0)
            if total == 0:
                return None

            if finished < total:
                progress = strategy_progress(finished, total)
                repo.searches.set_progress(search_id, progress)
            else:
                final_status = 'completed' if completed > 0 else 'error'
                won = repo.searches.transition_status(
                    search_id,
                    ACTIVE_SEARCH_STATUSES,
                    final_status,
                    100 if final_status == 'completed' else 0
                )
                candidates_count = repo.candidates.count_for_search(search_id)

        if finished < total:
            self.realtime.emit_search(
                search_id,
                events.PROGRESS_UPDATED,
                events.ProgressUpdated(progress=progress, message=f"{finished} of {total} strategies finished")
            )
            return None

        if not won:
            logger.debug(f"Search {search_id} already finalised")
            return None

        if final_status == 'error':
            self.realtime.emit_search(
                search_id, events.SEARCH_FAILED, events.SearchFailed(error="All sourcing strategies failed")
            )
            logger.error(f"Search {search_id} failed: all {total} strategies failed")
            return final_status

        self.realtime.emit_search(
            search_id,
            events.SEARCH_COMPLETED,
            events.SearchCompleted(candidates_count=candidates_count, status=final_status)
        )
        logger.info(f"Search {search_id} completed with {candidates_count} candidates")

        if candidates_count > 0:
            self._hand_off_to_scoring(search_id)
        return final_status

    def _hand_off_to_scoring(self, search_id: str) -> None:
        """
        Build the scoring model and queue the dispatch.

        Runs after the search was finalised, so nothing here may raise: a
        redelivered tick would find the search already final and never
        retry the hand-off. Failures are reported as scoring.failed.
        """
        try:
            self.model_service.ensure_model(search_id)
            self.publisher.publish(
                SCORING_DISPATCH_PATH,
                {"searchId": search_id, "parallelism": self.scoring_parallelism},
                delay_seconds=0
            )
        except Exception as e:
            logger.error(f"Scoring hand-off failed for search {search_id}: {e}", exc_info=True)
            self.realtime.emit_search(search_id, events.SCORING_FAILED, events.ScoringFailed(error=str(e)))
            return
        logger.info(f"Scoring dispatch queued for search {search_id}")

    def list_strategies(self, search_id: str) -> List[Dict[str, Any]]:
        with sourcing_uow(self.session_factory) as repo:
            if repo.searches.get_by_id(search_id) is None:
                raise NotFoundError(f"Search {search_id} not found")
            return [
                {
                    "id": s.id,
                    "name": s.name,
                    "description": s.description,
                    "status": s.status,
                    "task_id": s.task_id,
                    "poll_count": s.poll_count,
                    "candidates_found": s.candidates_found,
                    "error": s.error,
                    "relaunched_from_id": s.relaunched_from_id,
                    "payload": s.payload or {},
                }
                for s in repo.strategies.list_for_search(search_id)
            ]
