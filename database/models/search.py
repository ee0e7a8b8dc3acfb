from sqlalchemy import Column, Text, TIMESTAMP, ForeignKey, Integer, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, JSONType, generate_id


class Search(Base):
    """
    A submitted hiring query.

    Status moves created -> processing -> generating -> executing -> polling
    and ends at completed or error. ``parsed_criteria`` caches the parse
    service output so it is computed once per search.
    """
    __tablename__ = 'search'

    id = Column(Text, primary_key=True, default=generate_id)
    name = Column(Text, nullable=False, default='')
    query = Column(Text, nullable=False)
    organization_id = Column(Text, ForeignKey('organization.id', ondelete='CASCADE'), nullable=True)
    user_id = Column(Text, nullable=True)

    parsed_criteria = Column(JSONType, nullable=True)
    parse_schema_version = Column(Integer, nullable=True)
    parse_error = Column(Text, nullable=True)
    parse_updated_at = Column(TIMESTAMP(timezone=True), nullable=True)

    status = Column(Text, nullable=False, default='created')
    progress = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    strategies = relationship("SourcingStrategy", back_populates="search", cascade="all, delete-orphan")
    candidates = relationship("SearchCandidate", back_populates="search", cascade="all, delete-orphan")
    scoring_model_cache = relationship("ScoringModelCache", back_populates="search", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_search_org', 'organization_id'),
        Index('idx_search_status', 'status'),
    )


class ScoringModelCache(Base):
    """
    Once-computed scoring model for a search.

    One row per search. ``status`` is 'computed' only after the model blob,
    its content hash and id have been stored; workers read it and never
    write it. ``invalidate`` is the only way back to 'pending'.
    """
    __tablename__ = 'scoring_model_cache'

    id = Column(Text, primary_key=True, default=generate_id)
    search_id = Column(Text, ForeignKey('search.id', ondelete='CASCADE'), nullable=False)

    status = Column(Text, nullable=False, default='pending')  # pending|computed|error
    model = Column(JSONType, nullable=True)
    content_hash = Column(Text, nullable=True)
    model_id = Column(Text, nullable=True)
    version = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    computed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    search = relationship("Search", back_populates="scoring_model_cache")

    __table_args__ = (
        UniqueConstraint('search_id', name='uq_scoring_model_cache_search'),
    )

    @property
    def is_computed(self) -> bool:
        return self.status == 'computed' and self.model is not None


class SourcingStrategy(Base):
    """
    One externally-executed sourcing query variant of a search.

    Status only moves forward: pending -> executing -> polling ->
    completed|error. ``poll_count`` persists the polling budget so a
    resumed workflow continues where it stopped.
    """
    __tablename__ = 'sourcing_strategy'

    id = Column(Text, primary_key=True, default=generate_id)
    search_id = Column(Text, ForeignKey('search.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False, default='')
    description = Column(Text, nullable=True)
    payload = Column(JSONType, nullable=False, default=dict)

    status = Column(Text, nullable=False, default='pending')
    task_id = Column(Text, nullable=True)
    poll_count = Column(Integer, nullable=False, default=0)
    candidates_found = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    relaunched_from_id = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    search = relationship("Search", back_populates="strategies")

    __table_args__ = (
        Index('idx_strategy_search', 'search_id'),
        Index('idx_strategy_status', 'status'),
    )
