#!/usr/bin/env python3
"""
Workflow endpoints - sourcing start, strategy ticks and scoring dispatch.

Strategy ticks and scoring dispatch are delivered by the task queue and
must carry a valid queue signature.
"""

import logging

from fastapi import APIRouter, Depends, Request

from core.app_context import AppContext
from ..dependencies import get_app_context
from ..models.requests import (
    RelaunchRequest,
    ScoringDispatchRequest,
    SourcingStartRequest,
    StrategyTickRequest
)
from ..models.responses import (
    DispatchResponse,
    RelaunchResponse,
    SourcingStartResponse,
    StrategyTickResponse
)
from ..rate_limit import limiter
from ..security import verify_queue_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workflow", tags=["workflow"])


@router.post(
    "/scoring",
    response_model=DispatchResponse,
    dependencies=[Depends(verify_queue_signature)]
)
def dispatch_scoring(body: ScoringDispatchRequest, ctx: AppContext = Depends(get_app_context)):
    """Queue one scoring job per unscored candidate of a search."""
    result = ctx.dispatcher.dispatch(body.search_id, parallelism=body.parallelism, rescore=body.rescore)
    return DispatchResponse(**result)


@router.post(
    "/strategy",
    response_model=StrategyTickResponse,
    dependencies=[Depends(verify_queue_signature)]
)
def strategy_tick(body: StrategyTickRequest, ctx: AppContext = Depends(get_app_context)):
    """Advance one strategy by one step; re-queues itself until the strategy ends."""
    result = ctx.strategy_workflow.tick(body.strategy_id, poll_count=body.poll_count)
    return StrategyTickResponse(**result.to_dict())


@router.post("/sourcing", response_model=SourcingStartResponse)
@limiter.limit("10/minute")
def start_sourcing(request: Request, body: SourcingStartRequest, ctx: AppContext = Depends(get_app_context)):
    """
    Start sourcing for a search.

    Strategies are generated from the search query unless the body
    provides them.
    """
    strategies = None
    if body.strategies:
        strategies = [s.model_dump(by_alias=True) for s in body.strategies]
    result = ctx.sourcing_workflow.start(body.search_id, strategies=strategies)
    return SourcingStartResponse(**result)


@router.post("/relaunch", response_model=RelaunchResponse)
@limiter.limit("10/minute")
def relaunch_strategies(request: Request, body: RelaunchRequest, ctx: AppContext = Depends(get_app_context)):
    """Find more: run the given strategies again on their next result page."""
    strategy_ids = ctx.sourcing_workflow.relaunch(body.search_id, body.strategy_ids)
    return RelaunchResponse(search_id=body.search_id, strategy_ids=strategy_ids)
