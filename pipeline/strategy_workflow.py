"""
Per-strategy sourcing state machine.

    pending -> executing -> polling -> completed | error

Each call to ``advance`` performs exactly one step from the persisted
status and says how long to wait before the next one. Nothing lives in
process memory between steps: the poll counter and the external task id
are on the strategy row, so a tick redelivered to another worker resumes
where the last one stopped.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from core.candidate_profile import profile_to_candidate_fields
from core.exceptions import NotFoundError, PollingTimeoutError, UpstreamError
from core.sourcing_client import SourcingClient
from database.repositories.strategy import TERMINAL_STRATEGY_STATUSES
from database.uow import sourcing_uow
from notification import events
from notification.realtime import NullRealtimeBus, RealtimeBus
from pipeline.queue import TaskPublisher

logger = logging.getLogger(__name__)

STRATEGY_TICK_PATH = "/api/workflow/strategy"

POLLING_TIMEOUT_ERROR = "Polling timeout"
DEFAULT_FAILED_ERROR = "Search failed"


@dataclass
class TickResult:
    strategy_id: str
    search_id: str
    status: str
    next_delay: Optional[int] = None
    candidates_found: int = 0
    error: Optional[str] = None
    poll_count: Optional[int] = None
    transitioned: bool = True

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STRATEGY_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategyId": self.strategy_id,
            "searchId": self.search_id,
            "status": self.status,
            "nextDelay": self.next_delay,
            "pollCount": self.poll_count,
            "candidatesFound": self.candidates_found,
            "error": self.error,
        }


class StrategyWorkflow:
    def __init__(
        self,
        sourcing_client: SourcingClient,
        publisher: Optional[TaskPublisher] = None,
        session_factory=None,
        poll_interval_seconds: int = 5,
        max_polls: int = 60,
        realtime: Optional[RealtimeBus] = None,
        on_finished: Optional[Callable[[str], Any]] = None
    ):
        """
        Args:
            sourcing_client: External execute/results API
            publisher: Queue used to schedule the next tick; required for tick()
            session_factory: Session factory, default is the app's SessionLocal
            poll_interval_seconds: Delay between polls
            max_polls: Poll budget per strategy
            realtime: Bus for candidates.added events
            on_finished: Called with the search id whenever a strategy ends
        """
        self.sourcing_client = sourcing_client
        self.publisher = publisher
        self.session_factory = session_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.max_polls = max_polls
        self.realtime = realtime or NullRealtimeBus()
        self.on_finished = on_finished

    # --- Durable driver ---

    def schedule(self, strategy_id: str, delay_seconds: int = 0, poll_count: int = 0) -> Optional[str]:
        if self.publisher is None:
            raise RuntimeError("StrategyWorkflow has no publisher configured")
        return self.publisher.publish(
            STRATEGY_TICK_PATH,
            {"strategyId": strategy_id, "pollCount": poll_count},
            delay_seconds=delay_seconds
        )

    def tick(self, strategy_id: str, poll_count: int = 0) -> TickResult:
        """
        One queue-delivered step: advance, then re-publish or report the end.

        ``poll_count`` is the count the sender saw. A redelivered tick whose
        count was already consumed is dropped without scheduling a successor,
        so duplicates never fork a second poll chain.
        """
        result = self.advance(strategy_id, expected_poll_count=poll_count)
        if result.next_delay is not None:
            self.schedule(strategy_id, result.next_delay, poll_count=result.poll_count or 0)
        elif result.terminal:
            self._notify_finished(result.search_id)
        return result

    def run_to_completion(self, strategy_id: str, sleep: Callable[[float], None] = time.sleep) -> TickResult:
        """
        Drive one strategy in-process until it is terminal.

        Raises:
            PollingTimeoutError: the strategy is still not terminal after the
                full poll budget, e.g. because another worker owns it
        """
        max_ticks = self.max_polls + 2
        result = None
        for _ in range(max_ticks):
            result = self.advance(strategy_id)
            if result.terminal:
                self._notify_finished(result.search_id)
                return result
            sleep(result.next_delay if result.next_delay is not None else self.poll_interval_seconds)
        raise PollingTimeoutError(f"Strategy {strategy_id} did not finish within {max_ticks} ticks")

    def _notify_finished(self, search_id: str) -> None:
        if self.on_finished is not None:
            self.on_finished(search_id)

    # --- State machine ---

    def advance(self, strategy_id: str, expected_poll_count: Optional[int] = None) -> TickResult:
        """
        Perform one step from the persisted status.

        Args:
            strategy_id: Strategy to advance
            expected_poll_count: Only poll when the stored poll count still
                equals this; None polls unconditionally
        """
        with sourcing_uow(self.session_factory) as repo:
            strategy = repo.strategies.get_by_id(strategy_id)
            if strategy is None:
                raise NotFoundError(f"Strategy {strategy_id} not found")
            search_id = strategy.search_id
            status = strategy.status
            task_id = strategy.task_id
            payload = dict(strategy.payload or {})
            snapshot = TickResult(
                strategy_id=strategy_id,
                search_id=search_id,
                status=status,
                candidates_found=strategy.candidates_found,
                error=strategy.error,
                poll_count=strategy.poll_count,
                transitioned=False,
            )

        if status in TERMINAL_STRATEGY_STATUSES:
            logger.info(f"Strategy {strategy_id} already {status}, nothing to do")
            return snapshot

        if status == 'pending':
            with sourcing_uow(self.session_factory) as repo:
                claimed = repo.strategies.transition(strategy_id, ['pending'], 'executing')
            if not claimed:
                logger.info(f"Strategy {strategy_id} claimed by another delivery")
                return snapshot
            return self._execute(strategy_id, search_id, payload)

        if status == 'executing' and not task_id:
            logger.warning(f"Strategy {strategy_id} found executing without a task id, resubmitting")
            return self._execute(strategy_id, search_id, payload)

        return self._poll(strategy_id, search_id, task_id, snapshot, expected_poll_count)

    def _execute(self, strategy_id: str, search_id: str, payload: Dict[str, Any]) -> TickResult:
        try:
            task_id = self.sourcing_client.execute_strategy(search_id, payload)
        except UpstreamError as e:
            return self._fail(strategy_id, search_id, ['executing'], str(e))

        with sourcing_uow(self.session_factory) as repo:
            repo.strategies.transition(strategy_id, ['executing'], 'polling', task_id=task_id, poll_count=0)
        logger.info(f"Strategy {strategy_id} polling task {task_id}")
        return TickResult(
            strategy_id=strategy_id,
            search_id=search_id,
            status='polling',
            next_delay=self.poll_interval_seconds,
            poll_count=0,
        )

    def _poll(
        self,
        strategy_id: str,
        search_id: str,
        task_id: str,
        snapshot: TickResult,
        expected_poll_count: Optional[int]
    ) -> TickResult:
        with sourcing_uow(self.session_factory) as repo:
            poll_count = repo.strategies.increment_poll_count(strategy_id, expected=expected_poll_count)
        if poll_count is None:
            logger.info(
                f"Dropping stale tick for strategy {strategy_id} "
                f"(poll {expected_poll_count} already taken)"
            )
            return snapshot

        try:
            data = self.sourcing_client.get_results(task_id)
        except Exception as e:
            logger.warning(f"Poll {poll_count} for strategy {strategy_id} failed: {e}")
            data = None

        if data:
            status = data.get("status")
            candidates = data.get("candidates") or data.get("results") or []
            if status == "completed":
                return self._complete(strategy_id, search_id, candidates)
            if status == "failed":
                return self._fail(strategy_id, search_id, ['polling'], data.get("error") or DEFAULT_FAILED_ERROR)
            if candidates:
                self._save_partial(strategy_id, search_id, candidates)

        if poll_count >= self.max_polls:
            logger.warning(f"Strategy {strategy_id} exhausted {self.max_polls} polls")
            return self._finish_exhausted(strategy_id, search_id)

        return TickResult(
            strategy_id=strategy_id,
            search_id=search_id,
            status='polling',
            next_delay=self.poll_interval_seconds,
            poll_count=poll_count,
        )

    def _persist_candidates(self, repo, strategy_id: str, search_id: str, candidates: List[Dict[str, Any]]) -> int:
        saved = 0
        for profile in candidates:
            if not isinstance(profile, dict):
                continue
            external_id, fields = profile_to_candidate_fields(profile)
            if not external_id:
                logger.debug(f"Skipping profile without id or LinkedIn URL for strategy {strategy_id}")
                continue
            candidate = repo.candidates.upsert_candidate(external_id, fields)
            repo.candidates.link_to_search(search_id, candidate.id, source_strategy_id=strategy_id)
            saved += 1
        return saved

    def _save_partial(self, strategy_id: str, search_id: str, candidates: List[Dict[str, Any]]) -> None:
        """Persist results the upstream returned before finishing; only the unseen tail is new."""
        with sourcing_uow(self.session_factory) as repo:
            strategy = repo.strategies.get_by_id(strategy_id)
            already = strategy.candidates_found if strategy is not None else 0
            if len(candidates) <= already:
                return
            new = candidates[already:]
            self._persist_candidates(repo, strategy_id, search_id, new)
            repo.strategies.record_partial_results(strategy_id, len(candidates))

        logger.info(f"Strategy {strategy_id} saved {len(new)} partial candidates ({len(candidates)} so far)")
        self.realtime.emit_search(
            search_id,
            events.CANDIDATES_ADDED,
            events.CandidatesAdded(count=len(new), total=len(candidates), strategy_id=strategy_id)
        )

    def _finish_exhausted(self, strategy_id: str, search_id: str) -> TickResult:
        """Out of polls: keep what partial polls saved, time out only when there is nothing."""
        with sourcing_uow(self.session_factory) as repo:
            strategy = repo.strategies.get_by_id(strategy_id)
            found = strategy.candidates_found if strategy is not None else 0
            moved = False
            if found > 0:
                moved = repo.strategies.transition(strategy_id, ['polling'], 'completed', error=None)
        if found == 0:
            return self._fail(strategy_id, search_id, ['polling'], POLLING_TIMEOUT_ERROR)

        logger.info(f"Strategy {strategy_id} ran out of polls, completing with {found} partial candidates")
        return TickResult(
            strategy_id=strategy_id,
            search_id=search_id,
            status='completed',
            candidates_found=found,
            transitioned=moved,
        )

    def _complete(self, strategy_id: str, search_id: str, candidates: List[Dict[str, Any]]) -> TickResult:
        with sourcing_uow(self.session_factory) as repo:
            strategy = repo.strategies.get_by_id(strategy_id)
            # partial polls may already have saved more than the final page lists
            found = max(len(candidates), strategy.candidates_found if strategy is not None else 0)
            saved = self._persist_candidates(repo, strategy_id, search_id, candidates)
            moved = repo.strategies.transition(
                strategy_id, ['polling'], 'completed', candidates_found=found, error=None
            )

        if not moved:
            logger.info(f"Strategy {strategy_id} was finished by another delivery")
        logger.info(f"Strategy {strategy_id} completed: {found} candidates, {saved} saved")
        return TickResult(
            strategy_id=strategy_id,
            search_id=search_id,
            status='completed',
            candidates_found=found,
            transitioned=moved,
        )

    def _fail(self, strategy_id: str, search_id: str, allowed_from: List[str], error: str) -> TickResult:
        with sourcing_uow(self.session_factory) as repo:
            moved = repo.strategies.transition(strategy_id, allowed_from, 'error', error=error)
        logger.error(f"Strategy {strategy_id} failed: {error}")
        return TickResult(
            strategy_id=strategy_id,
            search_id=search_id,
            status='error',
            error=error,
            transitioned=moved,
        )
