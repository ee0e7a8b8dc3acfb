#!/usr/bin/env python3
"""
Scoring endpoints - per-candidate scoring jobs and the cached scoring model.
"""

import logging

from fastapi import APIRouter, Depends

from core.app_context import AppContext
from ..dependencies import get_app_context
from ..models.requests import ScoreCandidateRequest, ScoringModelRequest
from ..models.responses import ScoreCandidateResponse, ScoringModelResponse
from ..security import verify_queue_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scoring", tags=["scoring"])


@router.post(
    "/candidate",
    response_model=ScoreCandidateResponse,
    dependencies=[Depends(verify_queue_signature)]
)
def score_candidate(body: ScoreCandidateRequest, ctx: AppContext = Depends(get_app_context)):
    """
    Score one candidate. Called by the task queue, one delivery per candidate.

    A failed evaluation is recorded on the candidate and answered with
    ``success: false`` and status 200 so the queue does not redeliver a
    terminal outcome.
    """
    result = ctx.scoring_worker.score_candidate(body.model_dump(by_alias=True))
    return ScoreCandidateResponse(**result)


@router.post("/model", response_model=ScoringModelResponse)
def compute_scoring_model(body: ScoringModelRequest, ctx: AppContext = Depends(get_app_context)):
    """Compute, or return the already cached, scoring model of a search."""
    snapshot = ctx.model_service.ensure_model(body.search_id, force=body.force)
    return ScoringModelResponse(
        search_id=snapshot.search_id,
        scoring_model_id=snapshot.model_id,
        scoring_model_version=snapshot.version,
        content_hash=snapshot.content_hash
    )
