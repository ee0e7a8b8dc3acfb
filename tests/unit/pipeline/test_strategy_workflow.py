#!/usr/bin/env python3
"""
Tests for the per-strategy state machine.

The workflow is advanced one tick at a time exactly as queue deliveries
would drive it.
"""

import unittest
from unittest.mock import Mock

from core.exceptions import NotFoundError, PollingTimeoutError, UpstreamError
from database.uow import sourcing_uow
from pipeline.strategy_workflow import (
    DEFAULT_FAILED_ERROR,
    POLLING_TIMEOUT_ERROR,
    STRATEGY_TICK_PATH,
    StrategyWorkflow
)
from tests import make_session_factory
from notification import events
from tests.mocks.sourcing_mocks import (
    FakePublisher,
    RecordingRealtimeBus,
    make_profile,
    seed_search,
    seed_strategy
)


class StrategyWorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        self.client = Mock()
        self.client.execute_strategy.return_value = "task-1"
        self.publisher = FakePublisher()
        self.on_finished = Mock()
        self.realtime = RecordingRealtimeBus()
        self.workflow = StrategyWorkflow(
            self.client,
            publisher=self.publisher,
            session_factory=self.session_factory,
            poll_interval_seconds=5,
            max_polls=3,
            realtime=self.realtime,
            on_finished=self.on_finished
        )
        self.search_id = seed_search(self.session_factory, status='executing')
        self.strategy_id = seed_strategy(self.session_factory, self.search_id)

    def strategy(self):
        with sourcing_uow(self.session_factory) as repo:
            s = repo.strategies.get_by_id(self.strategy_id)
            return {
                "status": s.status,
                "task_id": s.task_id,
                "poll_count": s.poll_count,
                "error": s.error,
                "candidates_found": s.candidates_found,
            }


class TestExecution(StrategyWorkflowTestCase):
    def test_pending_executes_and_schedules_poll(self):
        result = self.workflow.tick(self.strategy_id)

        self.assertEqual(result.status, 'polling')
        self.assertEqual(result.next_delay, 5)
        self.assertEqual(self.strategy()["task_id"], "task-1")
        self.client.execute_strategy.assert_called_once_with(
            self.search_id, {"searchQuery": "backend", "maxItems": 25}
        )
        self.assertEqual(self.publisher.to(STRATEGY_TICK_PATH), [({"strategyId": self.strategy_id, "pollCount": 0}, 5)])
        self.on_finished.assert_not_called()

    def test_execution_failure_ends_strategy(self):
        self.client.execute_strategy.side_effect = UpstreamError("Execution failed: 500", 500)

        result = self.workflow.tick(self.strategy_id)

        self.assertEqual(result.status, 'error')
        self.assertEqual(self.strategy()["error"], "Execution failed: 500")
        self.assertEqual(self.publisher.published, [])
        self.on_finished.assert_called_once_with(self.search_id)

    def test_executing_without_task_id_is_resubmitted(self):
        strategy_id = seed_strategy(self.session_factory, self.search_id, status='executing')

        result = self.workflow.advance(strategy_id)

        self.assertEqual(result.status, 'polling')
        self.client.execute_strategy.assert_called_once()

    def test_unknown_strategy(self):
        with self.assertRaises(NotFoundError):
            self.workflow.tick("missing")


class TestPolling(StrategyWorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.workflow.advance(self.strategy_id)

    def test_running_keeps_polling(self):
        self.client.get_results.return_value = {"status": "running"}

        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'polling')
        self.assertEqual(result.next_delay, 5)
        self.assertEqual(self.strategy()["poll_count"], 1)

    def test_completed_saves_candidates(self):
        self.client.get_results.return_value = {
            "status": "completed",
            "candidates": [make_profile(1), make_profile(2), make_profile(3, id=None, linkedinUrl=None)],
        }

        result = self.workflow.tick(self.strategy_id)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.candidates_found, 3)
        with sourcing_uow(self.session_factory) as repo:
            self.assertEqual(repo.candidates.count_for_search(self.search_id), 2)
            links = repo.candidates.list_for_search(self.search_id)
            self.assertTrue(all(link.source_strategy_id == self.strategy_id for link in links))
        self.on_finished.assert_called_once_with(self.search_id)

    def test_failed_uses_reported_error(self):
        self.client.get_results.return_value = {"status": "failed", "error": "Actor crashed"}

        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'error')
        self.assertEqual(self.strategy()["error"], "Actor crashed")

    def test_failed_default_error(self):
        self.client.get_results.return_value = {"status": "failed"}
        self.workflow.advance(self.strategy_id)
        self.assertEqual(self.strategy()["error"], DEFAULT_FAILED_ERROR)

    def test_timeout_after_max_polls(self):
        self.client.get_results.return_value = {"status": "running"}

        for _ in range(2):
            self.assertEqual(self.workflow.advance(self.strategy_id).status, 'polling')
        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'error')
        self.assertEqual(self.strategy()["error"], POLLING_TIMEOUT_ERROR)
        self.assertEqual(self.client.get_results.call_count, 3)

    def test_poll_error_consumes_a_tick(self):
        self.client.get_results.side_effect = UpstreamError("Poll failed: 502", 502)

        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'polling')
        self.assertEqual(self.strategy()["poll_count"], 1)

    def test_duplicate_delivery_after_completion(self):
        self.client.get_results.return_value = {"status": "completed", "candidates": [make_profile(1)]}
        self.workflow.advance(self.strategy_id)
        self.client.get_results.reset_mock()

        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'completed')
        self.assertFalse(result.transitioned)
        self.client.get_results.assert_not_called()


class TestPartialResults(StrategyWorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.workflow.advance(self.strategy_id)

    def test_running_poll_saves_candidates(self):
        self.client.get_results.return_value = {"status": "running", "candidates": [make_profile(1), make_profile(2)]}

        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'polling')
        self.assertEqual(self.strategy()["candidates_found"], 2)
        with sourcing_uow(self.session_factory) as repo:
            self.assertEqual(repo.candidates.count_for_search(self.search_id), 2)
        self.assertEqual(
            self.realtime.named(events.CANDIDATES_ADDED),
            [{"count": 2, "total": 2, "strategyId": self.strategy_id}]
        )

    def test_only_new_candidates_are_announced(self):
        self.client.get_results.side_effect = [
            {"status": "running", "results": [make_profile(1)]},
            {"status": "running", "results": [make_profile(1)]},
            {"status": "running", "results": [make_profile(1), make_profile(2), make_profile(3)]},
        ]

        for _ in range(3):
            self.workflow.advance(self.strategy_id)

        added = self.realtime.named(events.CANDIDATES_ADDED)
        self.assertEqual([(e["count"], e["total"]) for e in added], [(1, 1), (2, 3)])
        self.assertEqual(self.strategy()["candidates_found"], 3)

    def test_exhausted_budget_keeps_partial_candidates(self):
        self.client.get_results.return_value = {"status": "running", "candidates": [make_profile(1), make_profile(2)]}

        for _ in range(2):
            self.assertEqual(self.workflow.advance(self.strategy_id).status, 'polling')
        result = self.workflow.tick(self.strategy_id, poll_count=2)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(result.candidates_found, 2)
        state = self.strategy()
        self.assertEqual(state["status"], 'completed')
        self.assertIsNone(state["error"])
        self.on_finished.assert_called_once_with(self.search_id)

    def test_completion_keeps_larger_partial_count(self):
        self.client.get_results.side_effect = [
            {"status": "running", "candidates": [make_profile(1), make_profile(2), make_profile(3)]},
            {"status": "completed", "candidates": []},
        ]

        self.workflow.advance(self.strategy_id)
        result = self.workflow.advance(self.strategy_id)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(self.strategy()["candidates_found"], 3)


class TestRedeliveredTicks(StrategyWorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.client.get_results.return_value = {"status": "running"}
        self.workflow.tick(self.strategy_id)
        self.pending = self.publisher.drain()

    def test_second_copy_of_a_poll_tick_is_dropped(self):
        self.workflow.tick(self.strategy_id, poll_count=0)
        result = self.workflow.tick(self.strategy_id, poll_count=0)

        self.assertFalse(result.transitioned)
        self.assertIsNone(result.next_delay)
        self.assertEqual(self.client.get_results.call_count, 1)
        self.assertEqual(self.strategy()["poll_count"], 1)
        self.assertEqual(
            self.publisher.to(STRATEGY_TICK_PATH),
            [({"strategyId": self.strategy_id, "pollCount": 1}, 5)]
        )

    def test_every_tick_delivered_twice_keeps_full_budget(self):
        rounds = 0
        while self.pending:
            rounds += 1
            for _path, body, _delay in self.pending:
                for _ in range(2):
                    self.workflow.tick(body["strategyId"], poll_count=body["pollCount"])
            self.pending = self.publisher.drain()
            self.assertLess(rounds, 20)

        self.assertEqual(rounds, 3)
        self.assertEqual(self.client.get_results.call_count, 3)
        self.assertEqual(self.strategy()["error"], POLLING_TIMEOUT_ERROR)


class TestRunToCompletion(StrategyWorkflowTestCase):
    def test_drives_until_terminal(self):
        self.client.get_results.side_effect = [
            {"status": "running"},
            {"status": "completed", "candidates": [make_profile(1)]},
        ]
        sleeps = []

        result = self.workflow.run_to_completion(self.strategy_id, sleep=sleeps.append)

        self.assertEqual(result.status, 'completed')
        self.assertEqual(sleeps, [5, 5])
        self.on_finished.assert_called_once_with(self.search_id)
        self.assertEqual(self.publisher.published, [])

    def test_gives_up_when_never_terminal(self):
        workflow = StrategyWorkflow(self.client, session_factory=self.session_factory, max_polls=2)
        workflow.advance = Mock(return_value=Mock(terminal=False, next_delay=1))

        with self.assertRaises(PollingTimeoutError):
            workflow.run_to_completion(self.strategy_id, sleep=lambda _s: None)
        self.assertEqual(workflow.advance.call_count, 4)


if __name__ == '__main__':
    unittest.main()
