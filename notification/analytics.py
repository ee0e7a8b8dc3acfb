"""
Product analytics signals.

Events go to a PostHog-compatible capture endpoint. Delivery is
best-effort: callers have already committed their work, so a failed
capture is logged and dropped.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

CREDITS_LOW = "credits_low"
CREDITS_EXHAUSTED = "credits_exhausted"


class AnalyticsClient:
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        enabled: bool = False,
        request_timeout_seconds: int = 5
    ):
        self.url = url
        self.api_key = api_key
        self.enabled = bool(enabled and url)
        self.request_timeout_seconds = request_timeout_seconds
        self.session = requests.Session()

    def capture(self, event: str, distinct_id: str, properties: Optional[Dict[str, Any]] = None) -> bool:
        """
        Send one analytics event.

        Returns:
            True if the collector accepted it, False if disabled or failed
        """
        if not self.enabled:
            logger.debug(f"Analytics disabled, skipping {event}")
            return False

        body = {
            "api_key": self.api_key,
            "event": event,
            "distinct_id": distinct_id,
            "properties": properties or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = self.session.post(self.url, json=body, timeout=self.request_timeout_seconds)
            response.raise_for_status()
            logger.info(f"Analytics event sent: {event} for {distinct_id}")
            return True
        except requests.RequestException as e:
            logger.warning(f"Analytics event {event} failed: {e}")
            return False

    def close(self):
        self.session.close()
