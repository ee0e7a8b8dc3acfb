#!/usr/bin/env python3
"""Tests for the scoring fan-out: delay buckets, sequencing and validation."""

import unittest

from core.exceptions import NotFoundError, SequencingError, ValidationError
from core.scoring.dispatcher import SCORE_CANDIDATE_PATH, ScoringDispatcher, compute_delays
from database.uow import sourcing_uow
from notification import events
from tests import make_session_factory
from tests.mocks.sourcing_mocks import (
    FakePublisher,
    RecordingRealtimeBus,
    seed_candidates,
    seed_search
)


class TestComputeDelays(unittest.TestCase):
    def test_buckets(self):
        self.assertEqual(compute_delays(7, 3), [0, 0, 0, 2, 2, 2, 4])

    def test_parallelism_one(self):
        self.assertEqual(compute_delays(3, 1), [0, 2, 4])

    def test_fewer_jobs_than_parallelism(self):
        self.assertEqual(compute_delays(2, 5), [0, 0])

    def test_empty(self):
        self.assertEqual(compute_delays(0, 5), [])

    def test_bucket_never_exceeds_parallelism(self):
        delays = compute_delays(23, 4, bucket_seconds=3)
        for delay in set(delays):
            self.assertLessEqual(delays.count(delay), 4)


class TestScoringDispatcher(unittest.TestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        self.publisher = FakePublisher()
        self.realtime = RecordingRealtimeBus()
        self.dispatcher = ScoringDispatcher(
            self.publisher, self.realtime, session_factory=self.session_factory, default_parallelism=2
        )

    def test_dispatch_unscored(self):
        search_id = seed_search(self.session_factory, with_model=True)
        link_ids = seed_candidates(self.session_factory, search_id, 5)

        result = self.dispatcher.dispatch(search_id)

        self.assertEqual(result, {"success": True, "queued": 5, "searchId": search_id})
        jobs = self.publisher.to(SCORE_CANDIDATE_PATH)
        self.assertEqual([delay for _body, delay in jobs], [0, 0, 2, 2, 4])
        self.assertEqual(sorted(body["searchCandidateId"] for body, _delay in jobs), sorted(link_ids))
        body = jobs[0][0]
        self.assertEqual(body["total"], 5)
        self.assertNotIn("rescore", body)
        self.assertIn("fullName", body["candidateData"])

    def test_started_event_before_jobs(self):
        search_id = seed_search(self.session_factory, with_model=True)
        seed_candidates(self.session_factory, search_id, 3)

        self.dispatcher.dispatch(search_id, parallelism=10)

        self.assertEqual(self.realtime.named(events.SCORING_STARTED), [{"total": 3}])

    def test_skips_scored_and_retries_errored(self):
        search_id = seed_search(self.session_factory, with_model=True)
        link_ids = seed_candidates(self.session_factory, search_id, 4)
        with sourcing_uow(self.session_factory) as repo:
            repo.candidates.record_score(link_ids[0], 90, {"final_score": 90}, version="v3", model_id="model-1")
            repo.candidates.record_error(link_ids[1], "Evaluate API error: 500")

        result = self.dispatcher.dispatch(search_id)

        self.assertEqual(result["queued"], 3)
        queued = [body["searchCandidateId"] for body, _delay in self.publisher.to(SCORE_CANDIDATE_PATH)]
        self.assertNotIn(link_ids[0], queued)
        self.assertIn(link_ids[1], queued)
        self.assertNotIn("rescore", self.publisher.to(SCORE_CANDIDATE_PATH)[0][0])
        self.assertEqual(self.realtime.named(events.SCORING_STARTED), [{"total": 4}])

    def test_rescore_queues_everything(self):
        search_id = seed_search(self.session_factory, with_model=True)
        link_ids = seed_candidates(self.session_factory, search_id, 3)
        with sourcing_uow(self.session_factory) as repo:
            repo.candidates.record_score(link_ids[0], 90, {"final_score": 90}, version="v3", model_id="model-1")

        result = self.dispatcher.dispatch(search_id, rescore=True)

        self.assertEqual(result["queued"], 3)
        self.assertTrue(all(body["rescore"] for body, _delay in self.publisher.to(SCORE_CANDIDATE_PATH)))

    def test_requires_cached_model(self):
        search_id = seed_search(self.session_factory, parsed={"title": "x"})
        seed_candidates(self.session_factory, search_id, 2)

        with self.assertRaises(SequencingError):
            self.dispatcher.dispatch(search_id)
        self.assertEqual(self.publisher.published, [])
        self.assertEqual(self.realtime.emitted, [])

    def test_invalid_parallelism(self):
        search_id = seed_search(self.session_factory, with_model=True)
        for value in (0, -1, "3", 2.5):
            with self.assertRaises(ValidationError):
                self.dispatcher.dispatch(search_id, parallelism=value)

    def test_unknown_search(self):
        with self.assertRaises(NotFoundError):
            self.dispatcher.dispatch("missing")

    def test_nothing_to_score(self):
        search_id = seed_search(self.session_factory, with_model=True)
        result = self.dispatcher.dispatch(search_id)
        self.assertEqual(result["queued"], 0)
        self.assertEqual(self.publisher.published, [])


if __name__ == '__main__':
    unittest.main()
