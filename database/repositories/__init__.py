from database.repositories.base import BaseRepository
from database.repositories.search import SearchRepository
from database.repositories.strategy import StrategyRepository
from database.repositories.candidate import CandidateRepository
from database.repositories.scoring_model import ScoringModelRepository
from database.repositories.credit import CreditRepository

__all__ = [
    'BaseRepository',
    'SearchRepository',
    'StrategyRepository',
    'CandidateRepository',
    'ScoringModelRepository',
    'CreditRepository',
]
