#!/usr/bin/env python3
"""
Signed, delayed task delivery over Redis Queue.

Every unit of pipeline work (a strategy tick, a dispatch, one candidate
score) is an HTTP POST back into this service. Publishing enqueues an rq
job that performs that POST later; rq retries it on failure, so delivery
is at-least-once and every receiver must be idempotent.

Usage:
    publisher = RQTaskPublisher(redis_url, base_url="https://app.example.com", signing_key=key)
    publisher.publish("/api/scoring/candidate", {"searchId": ...}, delay_seconds=4)
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from redis import Redis
from rq import Queue, Retry

from pipeline.tasks import deliver_request

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Queue-Signature"


def encode_body(body: Dict[str, Any]) -> str:
    return json.dumps(body, separators=(",", ":"), default=str)


def sign_body(key: str, raw_body: str) -> str:
    """HMAC-SHA256 hex digest of the exact bytes that will be delivered."""
    return hmac.new(key.encode("utf-8"), raw_body.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(raw_body: str, signature: Optional[str], keys: Iterable[Optional[str]]) -> bool:
    """
    Check a delivery signature against each configured key in turn.

    Accepting the current and the next key lets the signing key rotate
    while messages signed with the old one are still in flight.
    """
    if not signature:
        return False
    for key in keys:
        if key and hmac.compare_digest(sign_body(key, raw_body), signature):
            return True
    return False


class TaskPublisher(ABC):
    @abstractmethod
    def publish(self, path: str, body: Dict[str, Any], delay_seconds: int = 0) -> Optional[str]:
        """
        Schedule one POST of ``body`` to ``path``.

        Returns:
            Queue job id
        """
        pass


class RQTaskPublisher(TaskPublisher):
    def __init__(
        self,
        redis_url: str = 'redis://localhost:6379/0',
        queue_name: str = 'sourcing',
        base_url: str = 'http://localhost:8080',
        signing_key: Optional[str] = None,
        retry_max: int = 3,
        retry_intervals: Optional[List[int]] = None,
        job_timeout: str = '5m',
        queue: Optional[Queue] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.signing_key = signing_key
        self.retry_max = retry_max
        self.retry_intervals = retry_intervals or [10, 30, 60]
        self.job_timeout = job_timeout
        self.queue = queue or Queue(queue_name, connection=Redis.from_url(redis_url))

        if not signing_key:
            logger.warning("No queue signing key configured, deliveries will be unsigned")

    def _url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def publish(self, path: str, body: Dict[str, Any], delay_seconds: int = 0) -> Optional[str]:
        url = self._url_for(path)
        raw_body = encode_body(body)
        headers = {"Content-Type": "application/json"}
        if self.signing_key:
            headers[SIGNATURE_HEADER] = sign_body(self.signing_key, raw_body)

        retry_policy = Retry(max=self.retry_max, interval=self.retry_intervals)
        if delay_seconds and delay_seconds > 0:
            job = self.queue.enqueue_in(
                timedelta(seconds=delay_seconds),
                deliver_request,
                url,
                raw_body,
                headers,
                job_timeout=self.job_timeout,
                retry=retry_policy
            )
        else:
            job = self.queue.enqueue(
                deliver_request,
                url,
                raw_body,
                headers,
                job_timeout=self.job_timeout,
                retry=retry_policy
            )

        logger.debug(f"Queued POST {url} as job {job.id} (delay={delay_seconds}s)")
        return job.id
