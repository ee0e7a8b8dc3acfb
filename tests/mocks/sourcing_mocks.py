#!/usr/bin/env python3
"""
Test doubles and seed helpers for the sourcing pipeline.

These keep unit tests free of Redis and of the external APIs while still
running every service against a real (SQLite) database.
"""
from typing import Any, Dict, List, Optional, Tuple

from database.uow import sourcing_uow
from notification.realtime import RealtimeBus, _to_dict
from pipeline.queue import TaskPublisher

SCORING_MODEL = {"version": "v3", "weights": {"skills": 0.6, "experience": 0.4}}
PARSED_CRITERIA = {"schema_version": 2, "title": "Backend Engineer", "skills": ["python"]}


class RecordingRealtimeBus(RealtimeBus):
    """Keeps every emitted event in memory."""

    def __init__(self):
        self.emitted: List[Tuple[str, str, Dict[str, Any]]] = []

    def emit(self, channel, event, payload):
        self.emitted.append((channel, event, _to_dict(payload)))

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [data for _channel, name, data in self.emitted if name == event]

    def names(self) -> List[str]:
        return [name for _channel, name, _data in self.emitted]


class FakePublisher(TaskPublisher):
    """Collects published messages instead of enqueueing them."""

    def __init__(self):
        self.published: List[Tuple[str, Dict[str, Any], int]] = []

    def publish(self, path, body, delay_seconds=0):
        self.published.append((path, body, delay_seconds))
        return f"job-{len(self.published)}"

    def to(self, path: str) -> List[Tuple[Dict[str, Any], int]]:
        return [(body, delay) for p, body, delay in self.published if p == path]

    def drain(self) -> List[Tuple[str, Dict[str, Any], int]]:
        messages, self.published = self.published, []
        return messages


def make_profile(index: int, **overrides) -> Dict[str, Any]:
    profile = {
        "id": f"profile-{index}",
        "linkedinUrl": f"https://www.linkedin.com/in/candidate-{index}",
        "fullName": f"Candidate {index}",
        "headline": "Senior Backend Engineer",
        "summary": "Builds data platforms",
        "location": {"linkedinText": "Berlin, Germany"},
        "experiences": [
            {"position": "Staff Engineer", "companyName": "Acme", "endDate": {"text": "Present"}},
            {"position": "Engineer", "companyName": "Initech", "endDate": {"text": "2020"}},
        ],
        "educations": [{"school": "TU Berlin", "degree": "MSc"}],
        "skills": ["python", "postgres"],
    }
    profile.update(overrides)
    return profile


def seed_search(
    session_factory,
    query: str = "Senior backend engineer in Berlin",
    parsed: Optional[Dict[str, Any]] = None,
    with_model: bool = False,
    status: str = 'created',
) -> str:
    with sourcing_uow(session_factory) as repo:
        search = repo.searches.create_search(query)
        search.status = status
        if parsed is not None or with_model:
            repo.searches.save_parsed_criteria(search, parsed or PARSED_CRITERIA)
        if with_model:
            row = repo.scoring_models.get_or_create(search.id)
            repo.scoring_models.mark_computed(
                row,
                model=SCORING_MODEL,
                content_hash="hash",
                model_id="model-1",
                version="v3",
            )
        return search.id


def seed_candidates(session_factory, search_id: str, count: int, start: int = 0) -> List[str]:
    """Link ``count`` candidates to a search; returns the search candidate ids."""
    from core.candidate_profile import profile_to_candidate_fields

    ids = []
    with sourcing_uow(session_factory) as repo:
        for i in range(start, start + count):
            external_id, fields = profile_to_candidate_fields(make_profile(i))
            candidate = repo.candidates.upsert_candidate(external_id, fields)
            link = repo.candidates.link_to_search(search_id, candidate.id)
            ids.append(link.id)
    return ids


def seed_strategy(session_factory, search_id: str, status: str = 'pending', **values) -> str:
    with sourcing_uow(session_factory) as repo:
        strategy = repo.strategies.create_strategy(
            search_id,
            payload=values.pop('payload', {"searchQuery": "backend", "maxItems": 25}),
            name=values.pop('name', 'Backend engineers'),
        )
        strategy.status = status
        for key, value in values.items():
            setattr(strategy, key, value)
        return strategy.id


def seed_organization(session_factory, credits: int = 100, name: str = "Acme") -> str:
    with sourcing_uow(session_factory) as repo:
        return repo.credits.create_organization(name, credits=credits).id
