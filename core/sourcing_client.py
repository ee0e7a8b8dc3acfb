"""Sourcing API client: strategy generation, execution and result polling."""

import logging
import uuid
from typing import Optional, Dict, Any, List

import requests
from tenacity import (
    retry,
    stop_after_attempt,
    wait_fixed,
    retry_if_exception,
    before_sleep_log
)

from core.exceptions import UpstreamError
from core.utils import is_retryable_error

logger = logging.getLogger(__name__)


class SourcingClient:
    """
    Client for the external sourcing API with connection pooling and retry logic.

    Responsibilities:
    - Own a requests.Session for connection reuse
    - Generate and execute sourcing strategies with retry logic
    - Fetch task results one poll at a time (the caller owns the polling budget)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_timeout_seconds: int = 30,
        generate_path: str = "/api/v3/strategies/generate",
        execute_path: str = "/api/v2/strategies/execute",
        results_path: str = "/api/v2/strategies/results",
    ):
        """
        Initialize sourcing client.

        Args:
            base_url: Base URL for the sourcing API
            request_timeout_seconds: Timeout for individual HTTP requests
            generate_path: Path of the strategy generation endpoint
            execute_path: Path of the strategy execution endpoint
            results_path: Path prefix of the task results endpoint
        """
        self.base_url = (base_url or "http://localhost:8000").rstrip("/")
        self.request_timeout_seconds = request_timeout_seconds
        self.generate_path = generate_path
        self.execute_path = execute_path
        self.results_path = results_path

        self.session = requests.Session()

        logger.info(f"SourcingClient initialized: base_url={self.base_url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(2),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def _post(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        response = self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            timeout=self.request_timeout_seconds
        )
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    def _post_or_raise(self, path: str, payload: Dict[str, Any], error_prefix: str) -> Dict[str, Any]:
        try:
            response = self._post(path, payload)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise UpstreamError(f"{error_prefix}: {status}", status) from e
        except requests.RequestException as e:
            raise UpstreamError(f"{error_prefix}: {e}") from e

        if not response.ok:
            raise UpstreamError(f"{error_prefix}: {response.status_code}", response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{error_prefix}: invalid JSON body", response.status_code) from e

    def generate_strategies(
        self,
        raw_text: str,
        criteria: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Ask the sourcing API for strategies matching a query.

        Returns:
            List of strategy dicts with ``id``, ``name``, ``description`` and ``apify_payload``
        """
        request_id = request_id or f"req_{uuid.uuid4().hex}"
        logger.info(f"Generating strategies: request_id={request_id}")
        data = self._post_or_raise(
            self.generate_path,
            {
                "raw_text": raw_text,
                "parsed_with_criteria": criteria or {},
                "request_id": request_id,
            },
            "Strategy generation failed"
        )
        strategies = data.get("strategies")
        if not isinstance(strategies, list):
            raise UpstreamError("Strategy generation response invalid")
        logger.info(f"Generated {len(strategies)} strategies for request_id={request_id}")
        return strategies

    def execute_strategy(self, project_id: str, strategy: Dict[str, Any]) -> str:
        """
        Launch one strategy and return its external task id.

        Raises:
            UpstreamError: "Execution failed: <status>" on a non-2xx answer
        """
        data = self._post_or_raise(
            self.execute_path,
            {"project_id": project_id, "strategies": [strategy]},
            "Execution failed"
        )
        task_id = data.get("task_id")
        if not task_id:
            raise UpstreamError("Execution failed: missing task_id")
        logger.info(f"Strategy submitted for project {project_id}: task_id={task_id}")
        return task_id

    def get_results(self, task_id: str) -> Dict[str, Any]:
        """
        Poll task results once.

        No retry here: each poll is one tick of the caller's budget, and a
        failed poll simply waits for the next tick.
        """
        response = self.session.get(
            f"{self.base_url}{self.results_path}/{task_id}",
            timeout=self.request_timeout_seconds
        )
        if response.status_code != 200:
            raise UpstreamError(f"Poll failed: {response.status_code}", response.status_code)
        return response.json()

    def close(self):
        """Close the session and release resources."""
        self.session.close()
        logger.info("SourcingClient session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
