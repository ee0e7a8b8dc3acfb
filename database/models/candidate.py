from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, Integer, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, JSONType, generate_id


class Candidate(Base):
    """Candidate profile as returned by the sourcing provider, keyed by its external id."""
    __tablename__ = 'candidate'

    id = Column(Text, primary_key=True, default=generate_id)
    external_id = Column(Text, nullable=False)
    linkedin_url = Column(Text, nullable=True)

    full_name = Column(Text, nullable=True)
    headline = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    position = Column(Text, nullable=True)
    location = Column(JSONType, nullable=True)
    location_text = Column(Text, nullable=True)
    experiences = Column(JSONType, nullable=True)
    educations = Column(JSONType, nullable=True)
    skills = Column(JSONType, nullable=True)
    raw_profile = Column(JSONType, nullable=False, default=dict)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    search_links = relationship("SearchCandidate", back_populates="candidate")

    __table_args__ = (
        UniqueConstraint('external_id', name='uq_candidate_external_id'),
        Index('idx_candidate_linkedin', 'linkedin_url'),
    )


class SearchCandidate(Base):
    """
    A candidate found for a search, plus its scoring outcome.

    ``match_score`` and ``scoring_error`` are mutually exclusive: a
    successful write clears the error, a failed write leaves the score null.
    ``scoring_attempts`` only ever increases.
    """
    __tablename__ = 'search_candidate'

    id = Column(Text, primary_key=True, default=generate_id)
    search_id = Column(Text, ForeignKey('search.id', ondelete='CASCADE'), nullable=False)
    candidate_id = Column(Text, ForeignKey('candidate.id', ondelete='CASCADE'), nullable=False)
    source_strategy_id = Column(Text, nullable=True)

    match_score = Column(Integer, nullable=True)  # 0-100
    scoring_result = Column(JSONType, nullable=True)
    scoring_version = Column(Text, nullable=True)
    scoring_model_id = Column(Text, nullable=True)
    scoring_error = Column(Text, nullable=True)
    scoring_error_at = Column(TIMESTAMP(timezone=True), nullable=True)
    scoring_attempts = Column(Integer, nullable=False, default=0)
    scoring_updated_at = Column(TIMESTAMP(timezone=True), nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    search = relationship("Search", back_populates="candidates")
    candidate = relationship("Candidate", back_populates="search_links")

    __table_args__ = (
        UniqueConstraint('search_id', 'candidate_id', name='uq_search_candidate'),
        Index('idx_search_candidate_search', 'search_id'),
        Index('idx_search_candidate_score', 'match_score'),
    )
