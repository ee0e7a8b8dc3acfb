"""
Realtime event names and payloads.

Every event is published on the ``search:<search_id>`` channel. Payloads
serialize with camelCase keys, which is what the browser client reads.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

STATUS_UPDATED = "status.updated"
PROGRESS_UPDATED = "progress.updated"
SEARCH_COMPLETED = "search.completed"
SEARCH_FAILED = "search.failed"
SCORING_STARTED = "scoring.started"
SCORING_PROGRESS = "scoring.progress"
SCORING_COMPLETED = "scoring.completed"
SCORING_FAILED = "scoring.failed"
CANDIDATES_ADDED = "candidates.added"


def search_channel(search_id: str) -> str:
    return f"search:{search_id}"


class EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class StatusUpdated(EventPayload):
    status: str
    message: str
    progress: Optional[int] = None


class ProgressUpdated(EventPayload):
    progress: int
    message: str


class SearchCompleted(EventPayload):
    candidates_count: int
    status: str


class SearchFailed(EventPayload):
    error: str


class ScoringStarted(EventPayload):
    total: int


class ScoringProgress(EventPayload):
    candidate_id: str
    search_candidate_id: str
    score: Optional[int] = None
    scored: int
    total: int


class ScoringCompleted(EventPayload):
    scored: int
    errors: int


class ScoringFailed(EventPayload):
    error: str


class CandidatesAdded(EventPayload):
    count: int
    total: int
    strategy_id: Optional[str] = None
