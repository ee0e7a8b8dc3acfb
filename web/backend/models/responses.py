#!/usr/bin/env python3
"""
Response models for API endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict

from .base import ApiModel


class ScoreCandidateResponse(ApiModel):
    success: bool
    score: Optional[int] = None
    scored: int = 0
    total: int = 0
    skipped: bool = False
    error: Optional[str] = None


class ScoringModelResponse(ApiModel):
    success: bool = True
    search_id: str
    scoring_model_id: str
    scoring_model_version: Optional[str] = None
    content_hash: str


class DispatchResponse(ApiModel):
    success: bool
    queued: int
    search_id: str


class StrategyTickResponse(ApiModel):
    strategy_id: str
    search_id: str
    status: str
    next_delay: Optional[int] = None
    poll_count: Optional[int] = None
    candidates_found: int = 0
    error: Optional[str] = None


class SourcingStartResponse(ApiModel):
    success: bool
    search_id: str
    strategy_ids: List[str]


class RelaunchResponse(ApiModel):
    success: bool = True
    search_id: str
    strategy_ids: List[str]


class SearchCreatedResponse(ApiModel):
    success: bool = True
    search_id: str
    strategy_ids: List[str] = []


class SearchProgressResponse(ApiModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 40,
                "scored": 31,
                "unscored": 7,
                "errors": 2,
                "excellent": 6,
                "good": 14,
                "fair": 25,
                "isScoringComplete": False,
                "searchStatus": "completed",
                "searchProgress": 100
            }
        }
    )

    total: int
    scored: int
    unscored: int
    errors: int
    excellent: int
    good: int
    fair: int
    is_scoring_complete: bool
    search_status: str
    search_progress: int


class StrategySummary(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    status: str
    task_id: Optional[str] = None
    poll_count: int = 0
    candidates_found: int = 0
    error: Optional[str] = None
    relaunched_from_id: Optional[str] = None
    payload: Dict[str, Any] = {}


class CreditTransactionResponse(ApiModel):
    id: str
    organization_id: str
    user_id: str
    type: str
    credit_type: str
    amount: int
    balance_before: int
    balance_after: int
    related_entity_id: Optional[str] = None
    description: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class CreditUsageResponse(ApiModel):
    organization_id: str
    start: datetime
    end: datetime
    credit_type: Optional[str] = None
    used: int


class CreditTypeTotals(ApiModel):
    used: int = 0
    added: int = 0


class CreditStatsResponse(ApiModel):
    total_used: int
    total_added: int
    by_type: Dict[str, CreditTypeTotals]
    recent_transactions: List[CreditTransactionResponse]


class CreditLedgerResponse(ApiModel):
    balance: int
    transactions: List[CreditTransactionResponse]
