"""
Notification Module

Best-effort outbound signals: realtime events for live search pages and
analytics events for credit thresholds.

Usage:
    from notification import RedisRealtimeBus, AnalyticsClient, events

    bus = RedisRealtimeBus(redis_url)
    bus.emit_search(search_id, events.SEARCH_COMPLETED, {"candidatesCount": 12, "status": "completed"})
"""

from notification import events
from notification.realtime import (
    RealtimeBus,
    NullRealtimeBus,
    RedisRealtimeBus,
)
from notification.analytics import AnalyticsClient

__all__ = [
    'events',
    'RealtimeBus',
    'NullRealtimeBus',
    'RedisRealtimeBus',
    'AnalyticsClient',
]
