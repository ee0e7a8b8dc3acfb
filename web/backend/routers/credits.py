#!/usr/bin/env python3
"""
Credit endpoints - debit and ledger reads.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from core.app_context import AppContext
from ..dependencies import get_app_context
from ..models.requests import DeductCreditsRequest
from ..models.responses import (
    CreditLedgerResponse,
    CreditStatsResponse,
    CreditTransactionResponse,
    CreditUsageResponse
)
from ..rate_limit import limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["credits"])

DEFAULT_USAGE_DAYS = 30


@router.post("/deduct", response_model=CreditTransactionResponse)
@limiter.limit("60/minute")
def deduct_credits(request: Request, body: DeductCreditsRequest, ctx: AppContext = Depends(get_app_context)):
    """
    Debit credits from an organization.

    Answers 402 when the balance is too small; nothing is written then.
    """
    record = ctx.credit_ledger.deduct_credits(
        organization_id=body.organization_id,
        user_id=body.user_id,
        amount=body.amount,
        credit_type=body.credit_type,
        related_entity_id=body.related_entity_id,
        description=body.description,
        metadata=body.metadata
    )
    return CreditTransactionResponse(**record.to_dict())


@router.get("/{organization_id}/balance")
def get_balance(
    organization_id: str,
    credit_type: Optional[str] = Query(None, alias="creditType"),
    ctx: AppContext = Depends(get_app_context)
):
    return {"organizationId": organization_id, "balance": ctx.credit_ledger.get_balance(organization_id, credit_type)}


@router.get("/{organization_id}/usage", response_model=CreditUsageResponse)
def get_usage(
    organization_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    credit_type: Optional[str] = Query(None, alias="creditType"),
    ctx: AppContext = Depends(get_app_context)
):
    """Credits consumed in [start, end]; defaults to the last 30 days."""
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(days=DEFAULT_USAGE_DAYS)
    used = ctx.credit_ledger.get_credits_usage_for_period(organization_id, start, end, credit_type)
    return CreditUsageResponse(
        organization_id=organization_id,
        start=start,
        end=end,
        credit_type=credit_type,
        used=used
    )


@router.get("/{organization_id}/history", response_model=List[CreditTransactionResponse])
def get_history(
    organization_id: str,
    credit_type: Optional[str] = Query(None, alias="creditType"),
    transaction_type: Optional[str] = Query(None, alias="transactionType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    ctx: AppContext = Depends(get_app_context)
):
    records = ctx.credit_ledger.get_credit_history(
        organization_id,
        credit_type=credit_type,
        transaction_type=transaction_type,
        user_id=user_id,
        start=start,
        end=end,
        limit=limit,
        offset=offset
    )
    return [CreditTransactionResponse(**r.to_dict()) for r in records]


@router.get("/{organization_id}/stats", response_model=CreditStatsResponse)
def get_stats(organization_id: str, ctx: AppContext = Depends(get_app_context)):
    stats = ctx.credit_ledger.get_credit_stats(organization_id)
    return CreditStatsResponse(
        total_used=stats["total_used"],
        total_added=stats["total_added"],
        by_type=stats["by_type"],
        recent_transactions=[CreditTransactionResponse(**r.to_dict()) for r in stats["recent_transactions"]]
    )


@router.get("/{organization_id}/ledger", response_model=CreditLedgerResponse)
def get_ledger(
    organization_id: str,
    limit: int = Query(50, ge=1, le=500),
    ctx: AppContext = Depends(get_app_context)
):
    ledger = ctx.credit_ledger.get_ledger(organization_id, limit=limit)
    return CreditLedgerResponse(
        balance=ledger["balance"],
        transactions=[CreditTransactionResponse(**r.to_dict()) for r in ledger["transactions"]]
    )
