from .base import Base, JSONType, generate_id
from .organization import Organization, CreditTransaction, TRANSACTION_TYPES, CREDIT_TYPES
from .search import Search, ScoringModelCache, SourcingStrategy
from .candidate import Candidate, SearchCandidate

__all__ = [
    'Base',
    'JSONType',
    'generate_id',
    'Organization',
    'CreditTransaction',
    'TRANSACTION_TYPES',
    'CREDIT_TYPES',
    'Search',
    'ScoringModelCache',
    'SourcingStrategy',
    'Candidate',
    'SearchCandidate',
]
