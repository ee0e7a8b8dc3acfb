"""Scoring API client: query parsing, scoring model calculation, candidate evaluation."""

import logging
import math
from typing import Optional, Dict, Any

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


class ScoringClient:
    """
    Client for the external scoring API.

    ``parse_query`` and ``calculate_model`` run once per search and retry
    transient failures themselves. ``evaluate`` runs once per candidate
    attempt and does not retry; the scoring worker owns that loop.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        request_timeout_seconds: int = 60,
        parse_path: str = "/api/v3/jobs/parse",
        calculation_path: str = "/api/v3/scoring/scoring/calculation",
        evaluate_path: str = "/api/v3/scoring/scoring/evaluate",
    ):
        self.base_url = (base_url or "http://localhost:8000").rstrip("/")
        self.request_timeout_seconds = request_timeout_seconds
        self.parse_path = parse_path
        self.calculation_path = calculation_path
        self.evaluate_path = evaluate_path

        self.session = requests.Session()

        logger.info(f"ScoringClient initialized: base_url={self.base_url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_fixed(2),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def _post_with_retry(self, path: str, payload: Dict[str, Any]) -> requests.Response:
        response = self.session.post(
            f"{self.base_url}{path}",
            json=payload,
            timeout=self.request_timeout_seconds
        )
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    def _call(self, path: str, payload: Dict[str, Any], error_prefix: str) -> Dict[str, Any]:
        try:
            response = self._post_with_retry(path, payload)
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise UpstreamError(f"{error_prefix} {status}", status) from e
        except requests.RequestException as e:
            raise UpstreamError(f"{error_prefix}: {e}") from e

        if not response.ok:
            raise UpstreamError(f"{error_prefix} {response.status_code}: {response.text[:100]}", response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"{error_prefix}: invalid JSON body", response.status_code) from e

    def parse_query(self, message: str) -> Dict[str, Any]:
        """Turn a raw hiring query into structured criteria."""
        return self._call(self.parse_path, {"message": message}, "Parse failed")

    def calculate_model(self, parsed: Dict[str, Any]) -> Dict[str, Any]:
        """Compute the scoring model for parsed criteria."""
        return self._call(self.calculation_path, parsed, "Calculation failed")

    def evaluate(
        self,
        candidate_profile: Dict[str, Any],
        scoring_model: Dict[str, Any],
        candidate_id: str,
        strategy_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Score one candidate against a scoring model.

        Raises:
            UpstreamError: on transport errors, non-2xx answers, or a body
                without a finite numeric ``final_score``
        """
        try:
            response = self.session.post(
                f"{self.base_url}{self.evaluate_path}",
                json={
                    "candidate_profile": candidate_profile,
                    "scoring_model": scoring_model,
                    "strategy_id": strategy_id,
                    "candidate_id": candidate_id,
                },
                timeout=self.request_timeout_seconds
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Evaluate API error: {e}") from e

        if not response.ok:
            raise UpstreamError(f"Evaluate API error: {response.status_code}", response.status_code)

        try:
            result = response.json()
        except ValueError as e:
            raise UpstreamError("Evaluate API returned invalid JSON", response.status_code) from e

        score = result.get("final_score") if isinstance(result, dict) else None
        if not isinstance(score, (int, float)) or isinstance(score, bool):
            raise UpstreamError("Evaluate API response missing final_score")
        if not math.isfinite(score):
            raise UpstreamError(f"Evaluate API returned a non-finite final_score: {score}")
        return result

    def close(self):
        self.session.close()
        logger.info("ScoringClient session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
