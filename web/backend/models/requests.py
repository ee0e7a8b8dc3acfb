#!/usr/bin/env python3
"""
Request models for API endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import ApiModel


class ScoreCandidateRequest(ApiModel):
    """One queued scoring job."""
    search_id: str = Field(..., min_length=1)
    search_candidate_id: Optional[str] = None
    candidate_id: Optional[str] = None
    candidate_data: Optional[Dict[str, Any]] = None
    total: Optional[int] = None
    rescore: bool = False


class ScoringModelRequest(ApiModel):
    search_id: str = Field(..., min_length=1)
    force: bool = False


class ScoringDispatchRequest(ApiModel):
    search_id: str = Field(..., min_length=1)
    parallelism: Optional[int] = Field(None, description="Jobs per 2s delay bucket, must be >= 1")
    rescore: bool = False


class StrategyTickRequest(ApiModel):
    strategy_id: str = Field(..., min_length=1)
    # poll count the sender saw; a tick whose count is stale is dropped
    poll_count: int = Field(0, ge=0)


class StrategyItem(ApiModel):
    """A strategy as produced by the generation API."""
    id: Optional[str] = None
    name: str = ''
    description: Optional[str] = None
    apify_payload: Dict[str, Any] = Field(default_factory=dict, alias="apify_payload")


class SourcingStartRequest(ApiModel):
    search_id: str = Field(..., min_length=1)
    strategies: Optional[List[StrategyItem]] = None


class RelaunchRequest(ApiModel):
    search_id: str = Field(..., min_length=1)
    strategy_ids: List[str] = Field(..., min_length=1)


class CreateSearchRequest(ApiModel):
    query: str = Field(..., min_length=1)
    name: str = ''
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    start: bool = Field(True, description="Start sourcing right away")


class DeductCreditsRequest(ApiModel):
    organization_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    amount: int
    credit_type: str = 'general'
    related_entity_id: Optional[str] = None
    description: str = 'Credit consumption'
    metadata: Optional[Dict[str, Any]] = None


class CreditHistoryQuery(ApiModel):
    credit_type: Optional[str] = None
    transaction_type: Optional[str] = None
    user_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)
