"""Candidate scoring: cached model, job fan-out, per-candidate worker, progress."""

from core.scoring.progress import ProgressAggregator, ScoringCounts
from core.scoring.model_cache import ScoringModelService, ScoringModelSnapshot
from core.scoring.dispatcher import ScoringDispatcher, compute_delays
from core.scoring.worker import ScoringWorker

__all__ = [
    'ProgressAggregator',
    'ScoringCounts',
    'ScoringModelService',
    'ScoringModelSnapshot',
    'ScoringDispatcher',
    'compute_delays',
    'ScoringWorker',
]
