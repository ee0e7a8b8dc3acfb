#!/usr/bin/env python3
"""
Verification of queue-delivered requests.
"""

import logging

from fastapi import Depends, HTTPException, Request

from core.app_context import AppContext
from pipeline.queue import SIGNATURE_HEADER, verify_signature
from .dependencies import get_app_context

logger = logging.getLogger(__name__)


async def verify_queue_signature(
    request: Request,
    ctx: AppContext = Depends(get_app_context)
) -> None:
    """
    Reject queue deliveries whose body was not signed with a configured key.

    With no signing keys configured (local development) every request is
    accepted.

    Raises:
        HTTPException: 401 when the signature is missing or matches neither key
    """
    queue_config = ctx.config.queue
    keys = [queue_config.current_signing_key, queue_config.next_signing_key]
    if not any(keys):
        return

    raw_body = (await request.body()).decode("utf-8")
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_signature(raw_body, signature, keys):
        logger.error(f"Invalid queue signature on {request.url.path}")
        raise HTTPException(status_code=401, detail="Invalid signature")
