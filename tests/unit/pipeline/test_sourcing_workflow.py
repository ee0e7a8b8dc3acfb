#!/usr/bin/env python3
"""
Tests for search-level orchestration: start, relaunch and the one-time
finalisation that hands a search over to scoring.
"""

import unittest
from unittest.mock import Mock

from core.exceptions import NotFoundError, UpstreamError
from core.scoring.model_cache import ScoringModelService
from database.uow import sourcing_uow
from notification import events
from pipeline.sourcing_workflow import (
    SCORING_DISPATCH_PATH,
    SourcingWorkflow,
    strategy_progress
)
from pipeline.strategy_workflow import STRATEGY_TICK_PATH
from tests import make_session_factory
from tests.mocks.sourcing_mocks import (
    PARSED_CRITERIA,
    SCORING_MODEL,
    FakePublisher,
    RecordingRealtimeBus,
    seed_candidates,
    seed_search,
    seed_strategy
)

GENERATED = [
    {"id": "g1", "name": "Python in Berlin", "apify_payload": {"searchQuery": "python", "maxItems": 200}},
    {"id": "g2", "name": "Go in Berlin", "apify_payload": {"searchQuery": "golang"}},
]


class SourcingWorkflowTestCase(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        self.sourcing_client = Mock()
        self.sourcing_client.generate_strategies.return_value = GENERATED
        self.scoring_client = Mock()
        self.scoring_client.parse_query.return_value = PARSED_CRITERIA
        self.scoring_client.calculate_model.return_value = SCORING_MODEL
        self.model_service = ScoringModelService(self.scoring_client, session_factory=self.session_factory)
        self.publisher = FakePublisher()
        self.realtime = RecordingRealtimeBus()
        self.workflow = SourcingWorkflow(
            self.sourcing_client,
            self.model_service,
            self.publisher,
            self.realtime,
            session_factory=self.session_factory,
            strategy_max_items=25,
            scoring_parallelism=5
        )

    def search(self, search_id):
        with sourcing_uow(self.session_factory) as repo:
            s = repo.searches.get_by_id(search_id)
            return s.status, s.progress


class TestStrategyProgress(unittest.TestCase):
    def test_range(self):
        self.assertEqual(strategy_progress(0, 4), strategy_progress(0, 1))
        self.assertLess(strategy_progress(1, 4), strategy_progress(3, 4))
        self.assertLessEqual(strategy_progress(4, 4), 100)

    def test_no_strategies(self):
        self.assertEqual(strategy_progress(0, 0), strategy_progress(0, 5))


class TestStart(SourcingWorkflowTestCase):
    def test_start_generates_and_launches(self):
        search_id = self.workflow.create_search("Backend engineers in Berlin")

        result = self.workflow.start(search_id)

        self.assertTrue(result["success"])
        self.assertEqual(len(result["strategyIds"]), 2)
        self.sourcing_client.generate_strategies.assert_called_once_with(
            "Backend engineers in Berlin", PARSED_CRITERIA
        )
        self.assertEqual(self.search(search_id)[0], 'executing')

        ticks = self.publisher.to(STRATEGY_TICK_PATH)
        self.assertEqual(sorted(body["strategyId"] for body, _delay in ticks), sorted(result["strategyIds"]))

        statuses = [data["status"] for data in self.realtime.named(events.STATUS_UPDATED)]
        self.assertEqual(statuses, ['processing', 'generating', 'executing'])

    def test_max_items_forced(self):
        search_id = self.workflow.create_search("Backend engineers")

        result = self.workflow.start(search_id)

        with sourcing_uow(self.session_factory) as repo:
            payloads = [repo.strategies.get_by_id(i).payload for i in result["strategyIds"]]
        self.assertTrue(all(p["maxItems"] == 25 for p in payloads))

    def test_start_with_given_strategies(self):
        search_id = self.workflow.create_search("Backend engineers")

        result = self.workflow.start(search_id, strategies=[GENERATED[0]])

        self.assertEqual(len(result["strategyIds"]), 1)
        self.sourcing_client.generate_strategies.assert_not_called()

    def test_generation_failure_fails_search(self):
        self.sourcing_client.generate_strategies.side_effect = UpstreamError("Strategy generation failed: 500")
        search_id = self.workflow.create_search("Backend engineers")

        with self.assertRaises(UpstreamError):
            self.workflow.start(search_id)

        self.assertEqual(self.search(search_id), ('error', 0))
        self.assertEqual(len(self.realtime.named(events.SEARCH_FAILED)), 1)
        self.assertEqual(self.publisher.published, [])

    def test_no_strategies_generated(self):
        self.sourcing_client.generate_strategies.return_value = []
        search_id = self.workflow.create_search("Backend engineers")

        with self.assertRaises(UpstreamError):
            self.workflow.start(search_id)
        self.assertEqual(self.search(search_id)[0], 'error')

    def test_unknown_search(self):
        with self.assertRaises(NotFoundError):
            self.workflow.start("missing")


class TestFinalisation(SourcingWorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.search_id = seed_search(self.session_factory, parsed=PARSED_CRITERIA, status='executing')

    def test_partial_progress(self):
        seed_strategy(self.session_factory, self.search_id, status='completed')
        seed_strategy(self.session_factory, self.search_id, status='polling')

        self.assertIsNone(self.workflow.on_strategy_finished(self.search_id))

        status, progress = self.search(self.search_id)
        self.assertEqual(status, 'executing')
        self.assertEqual(progress, strategy_progress(1, 2))
        self.assertEqual(len(self.realtime.named(events.PROGRESS_UPDATED)), 1)

    def test_completed_hands_off_to_scoring_once(self):
        seed_strategy(self.session_factory, self.search_id, status='completed')
        seed_strategy(self.session_factory, self.search_id, status='error')
        seed_candidates(self.session_factory, self.search_id, 3)

        first = self.workflow.on_strategy_finished(self.search_id)
        second = self.workflow.on_strategy_finished(self.search_id)

        self.assertEqual(first, 'completed')
        self.assertIsNone(second)
        self.assertEqual(self.search(self.search_id), ('completed', 100))
        self.assertEqual(
            self.realtime.named(events.SEARCH_COMPLETED), [{"candidatesCount": 3, "status": "completed"}]
        )
        self.assertEqual(
            self.publisher.to(SCORING_DISPATCH_PATH), [({"searchId": self.search_id, "parallelism": 5}, 0)]
        )
        self.assertIsNotNone(self.model_service.get_model(self.search_id))

    def test_completed_without_candidates_skips_scoring(self):
        seed_strategy(self.session_factory, self.search_id, status='completed')

        self.assertEqual(self.workflow.on_strategy_finished(self.search_id), 'completed')

        self.assertEqual(self.publisher.published, [])
        self.scoring_client.calculate_model.assert_not_called()

    def test_all_failed(self):
        seed_strategy(self.session_factory, self.search_id, status='error')
        seed_strategy(self.session_factory, self.search_id, status='error')

        self.assertEqual(self.workflow.on_strategy_finished(self.search_id), 'error')

        self.assertEqual(self.search(self.search_id), ('error', 0))
        self.assertEqual(len(self.realtime.named(events.SEARCH_FAILED)), 1)

    def test_model_failure_emits_scoring_failed(self):
        self.scoring_client.calculate_model.side_effect = UpstreamError("Calculation failed 500", 500)
        seed_strategy(self.session_factory, self.search_id, status='completed')
        seed_candidates(self.session_factory, self.search_id, 1)

        self.assertEqual(self.workflow.on_strategy_finished(self.search_id), 'completed')

        self.assertEqual(self.realtime.named(events.SCORING_FAILED), [{"error": "Calculation failed 500"}])
        self.assertEqual(self.publisher.to(SCORING_DISPATCH_PATH), [])
        self.assertEqual(self.search(self.search_id)[0], 'completed')

    def test_queue_failure_emits_scoring_failed(self):
        self.workflow.publisher = Mock()
        self.workflow.publisher.publish.side_effect = ConnectionError("Redis unavailable")
        seed_strategy(self.session_factory, self.search_id, status='completed')
        seed_candidates(self.session_factory, self.search_id, 2)

        self.assertEqual(self.workflow.on_strategy_finished(self.search_id), 'completed')

        self.assertEqual(self.realtime.named(events.SCORING_FAILED), [{"error": "Redis unavailable"}])
        self.assertEqual(self.search(self.search_id), ('completed', 100))

    def test_unexpected_model_error_emits_scoring_failed(self):
        self.scoring_client.calculate_model.side_effect = RuntimeError("model store unreachable")
        seed_strategy(self.session_factory, self.search_id, status='completed')
        seed_candidates(self.session_factory, self.search_id, 1)

        self.assertEqual(self.workflow.on_strategy_finished(self.search_id), 'completed')

        self.assertEqual(self.realtime.named(events.SCORING_FAILED), [{"error": "model store unreachable"}])
        self.assertEqual(self.publisher.to(SCORING_DISPATCH_PATH), [])


class TestRelaunch(SourcingWorkflowTestCase):
    def setUp(self):
        super().setUp()
        self.search_id = seed_search(self.session_factory, parsed=PARSED_CRITERIA, status='completed')
        self.original = seed_strategy(
            self.session_factory, self.search_id, status='completed',
            payload={"searchQuery": "python", "maxItems": 25, "startPage": 1}
        )

    def payload(self, strategy_id):
        with sourcing_uow(self.session_factory) as repo:
            return repo.strategies.get_by_id(strategy_id).payload

    def test_relaunch_advances_page(self):
        new_ids = self.workflow.relaunch(self.search_id, [self.original])

        self.assertEqual(len(new_ids), 1)
        self.assertEqual(self.payload(new_ids[0])["startPage"], 2)
        self.assertEqual(self.payload(self.original)["startPage"], 2)
        self.assertEqual(self.search(self.search_id)[0], 'executing')
        self.assertEqual(len(self.publisher.to(STRATEGY_TICK_PATH)), 1)

        with sourcing_uow(self.session_factory) as repo:
            relaunched = repo.strategies.get_by_id(new_ids[0])
            self.assertEqual(relaunched.relaunched_from_id, self.original)
            self.assertEqual(relaunched.status, 'pending')
            self.assertEqual(repo.strategies.get_by_id(self.original).status, 'completed')

    def test_same_id_twice_advances_twice(self):
        new_ids = self.workflow.relaunch(self.search_id, [self.original, self.original])

        self.assertEqual(sorted(self.payload(i)["startPage"] for i in new_ids), [2, 3])
        self.assertEqual(self.payload(self.original)["startPage"], 3)

    def test_missing_start_page_counts_as_first(self):
        original = seed_strategy(self.session_factory, self.search_id, status='error', payload={"searchQuery": "go"})
        new_ids = self.workflow.relaunch(self.search_id, [original])
        self.assertEqual(self.payload(new_ids[0])["startPage"], 2)

    def test_unknown_strategies(self):
        with self.assertRaises(NotFoundError):
            self.workflow.relaunch(self.search_id, ["missing"])
        self.assertEqual(self.publisher.published, [])


class TestListStrategies(SourcingWorkflowTestCase):
    def test_lists(self):
        search_id = seed_search(self.session_factory)
        strategy_id = seed_strategy(self.session_factory, search_id, status='polling', task_id='t-9')

        strategies = self.workflow.list_strategies(search_id)

        self.assertEqual(len(strategies), 1)
        self.assertEqual(strategies[0]["id"], strategy_id)
        self.assertEqual(strategies[0]["task_id"], 't-9')


if __name__ == '__main__':
    unittest.main()
