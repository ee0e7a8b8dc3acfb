#!/usr/bin/env python3
"""
Search endpoints - create searches and read their progress.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request

from core.app_context import AppContext
from ..dependencies import get_app_context
from ..models.requests import CreateSearchRequest
from ..models.responses import SearchCreatedResponse, SearchProgressResponse, StrategySummary
from ..rate_limit import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


@router.post("", response_model=SearchCreatedResponse)
@limiter.limit("10/minute")
def create_search(request: Request, body: CreateSearchRequest, ctx: AppContext = Depends(get_app_context)):
    """Create a search from a raw hiring query and, by default, start sourcing it."""
    search_id = ctx.sourcing_workflow.create_search(
        body.query,
        name=body.name,
        organization_id=body.organization_id,
        user_id=body.user_id
    )
    strategy_ids: List[str] = []
    if body.start:
        strategy_ids = ctx.sourcing_workflow.start(search_id)["strategyIds"]
    return SearchCreatedResponse(search_id=search_id, strategy_ids=strategy_ids)


@router.get("/{search_id}/progress", response_model=SearchProgressResponse)
def get_search_progress(search_id: str, ctx: AppContext = Depends(get_app_context)):
    """
    Scoring progress for a search.

    Counts are recomputed from the candidate rows on every call.
    """
    return SearchProgressResponse(**ctx.progress.get_search_progress(search_id))


@router.get("/{search_id}/strategies", response_model=List[StrategySummary])
def list_strategies(search_id: str, ctx: AppContext = Depends(get_app_context)):
    return [StrategySummary(**s) for s in ctx.sourcing_workflow.list_strategies(search_id)]
