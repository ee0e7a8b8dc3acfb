#!/usr/bin/env python3
"""
Realtime endpoint - Server-Sent Events relay of a search's event channel.
"""

import asyncio
import json
import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from redis import asyncio as aioredis

from core.app_context import AppContext
from notification.events import search_channel
from notification.realtime import RedisRealtimeBus, decode_stream_entries, stream_key
from ..dependencies import get_app_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/realtime", tags=["realtime"])

HEARTBEAT_SECONDS = 30.0
REPLAY_COUNT = 100


def format_sse(message: dict) -> str:
    event = message.get("event", "message")
    return f"event: {event}\ndata: {json.dumps(message.get('data', {}))}\n\n"


async def read_replay(client, channel: str, count: int = REPLAY_COUNT) -> List[dict]:
    """Recent events of a channel read through the async client, oldest first."""
    try:
        entries = await client.xrevrange(stream_key(channel), count=count)
    except Exception as e:
        logger.warning(f"Realtime replay read failed for {channel}: {e}")
        return []
    return decode_stream_entries(entries, channel)


@router.get("/{search_id}")
async def stream_search_events(search_id: str, ctx: AppContext = Depends(get_app_context)):
    """
    Stream events published for one search.

    Recent events are replayed first so a client that connects late still
    sees the current state. The subscription is opened before the replay
    is read, so an event may arrive twice but is never missed.
    """
    channel = search_channel(search_id)
    replay = isinstance(ctx.realtime, RedisRealtimeBus)

    async def event_generator():
        client = aioredis.from_url(ctx.config.redis.url)
        pubsub = client.pubsub()
        try:
            await pubsub.subscribe(channel)
            if replay:
                for message in await read_replay(client, channel):
                    yield format_sse(message)
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=HEARTBEAT_SECONDS)
                if message is None:
                    yield ": heartbeat\n\n"
                    continue
                data = message.get("data")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                try:
                    yield format_sse(json.loads(data))
                except (TypeError, ValueError):
                    logger.debug(f"Skipping malformed realtime message on {channel}")
        except asyncio.CancelledError:
            logger.info(f"SSE connection cancelled for search {search_id}")
        finally:
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
            await client.aclose()
            logger.info(f"SSE connection closed for search {search_id}")

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        }
    )
