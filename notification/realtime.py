#!/usr/bin/env python3
"""
Realtime bus

Best-effort fan-out of pipeline events to live subscribers. The database
stays authoritative: a dropped event only delays what the UI shows, so
emit() never raises.

Usage:
    from notification.realtime import RedisRealtimeBus
    from notification import events

    bus = RedisRealtimeBus(redis_url="redis://localhost:6379/0")
    bus.emit_search(search_id, events.SCORING_STARTED, events.ScoringStarted(total=42))
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from redis import Redis

from notification.events import EventPayload, search_channel

logger = logging.getLogger(__name__)

Payload = Union[EventPayload, Dict[str, Any]]


def _to_dict(payload: Payload) -> Dict[str, Any]:
    if isinstance(payload, EventPayload):
        return payload.to_wire()
    return dict(payload or {})


def encode_message(event: str, payload: Payload) -> str:
    return json.dumps({"event": event, "data": _to_dict(payload), "ts": int(time.time() * 1000)})


def stream_key(channel: str) -> str:
    return f"{channel}:events"


class RealtimeBus(ABC):
    """Observer interface the workflows and scoring worker publish through."""

    @abstractmethod
    def emit(self, channel: str, event: str, payload: Payload) -> None:
        """Publish one event. Must not raise."""
        pass

    def emit_search(self, search_id: str, event: str, payload: Payload) -> None:
        self.emit(search_channel(search_id), event, payload)


class NullRealtimeBus(RealtimeBus):
    """Used when realtime delivery is disabled."""

    def emit(self, channel: str, event: str, payload: Payload) -> None:
        logger.debug(f"Realtime disabled, dropping {event} on {channel}")


class RedisRealtimeBus(RealtimeBus):
    """
    Redis PUBLISH for live subscribers, plus a capped stream per channel so a
    client that connects late can replay recent events.
    """

    def __init__(
        self,
        redis_url: str = 'redis://localhost:6379/0',
        stream_max_length: int = 500,
        redis_client: Optional[Redis] = None
    ):
        self.redis_url = redis_url
        self.stream_max_length = stream_max_length
        self._redis = redis_client

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = Redis.from_url(self.redis_url)
        return self._redis

    def emit(self, channel: str, event: str, payload: Payload) -> None:
        try:
            message = encode_message(event, payload)
            client = self._get_redis()
            client.publish(channel, message)
            client.xadd(
                stream_key(channel),
                {"message": message},
                maxlen=self.stream_max_length,
                approximate=True
            )
            logger.debug(f"Emitted {event} on {channel}")
        except Exception as e:
            logger.warning(f"Realtime emit failed for {event} on {channel}: {e}")

    def history(self, channel: str, count: int = 100) -> List[Dict[str, Any]]:
        """Most recent events on a channel, oldest first."""
        try:
            entries = self._get_redis().xrevrange(stream_key(channel), count=count)
        except Exception as e:
            logger.warning(f"Realtime history read failed for {channel}: {e}")
            return []
        return decode_stream_entries(entries, channel)


def decode_stream_entries(entries, channel: str = '') -> List[Dict[str, Any]]:
    """Turn XREVRANGE output (newest first) into event dicts, oldest first."""
    messages = []
    for _entry_id, fields in reversed(entries or []):
        raw = fields.get(b"message") or fields.get("message")
        if raw is None:
            continue
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            messages.append(json.loads(raw))
        except ValueError:
            logger.debug(f"Skipping malformed realtime entry on {channel}")
    return messages
