"""rq job functions. Kept free of app imports so workers start fast."""

import logging
from typing import Dict

import requests

logger = logging.getLogger(__name__)

DELIVERY_TIMEOUT_SECONDS = 120


class DeliveryError(Exception):
    """Raised for a non-2xx delivery so rq schedules a retry."""
    pass


def deliver_request(url: str, raw_body: str, headers: Dict[str, str]) -> int:
    """
    POST a queued message to its receiver.

    Returns:
        The receiver's status code

    Raises:
        DeliveryError: on any non-2xx answer
        requests.RequestException: on transport failure
    """
    response = requests.post(
        url,
        data=raw_body.encode("utf-8"),
        headers=headers,
        timeout=DELIVERY_TIMEOUT_SECONDS
    )
    if not response.ok:
        logger.warning(f"Delivery to {url} failed with {response.status_code}: {response.text[:200]}")
        raise DeliveryError(f"Delivery to {url} failed: {response.status_code}")

    logger.info(f"Delivered to {url}: {response.status_code}")
    return response.status_code
