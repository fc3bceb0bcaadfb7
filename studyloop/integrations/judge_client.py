"""
Plan judge API client.

Handles HTTP communication with the external grader that scores free-text
plans against their checklist. Every failure surfaces as
ExternalJudgeUnavailable so the plan evaluator can fall back locally.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from loguru import logger

from studyloop.core.errors import ExternalJudgeUnavailable
from studyloop.items.plan import JudgeVerdict


def _verdict_from_dict(data: Any) -> JudgeVerdict:
    """Parse a judge response body."""
    if not isinstance(data, dict) or "coverage" not in data:
        raise ExternalJudgeUnavailable("Judge response is missing 'coverage'")
    try:
        coverage = float(data["coverage"])
    except (TypeError, ValueError) as e:
        raise ExternalJudgeUnavailable(f"Judge returned non-numeric coverage: {data['coverage']!r}") from e
    return JudgeVerdict(
        coverage=coverage,
        matched=[str(point) for point in data.get("matched") or []],
        missing=[str(point) for point in data.get("missing") or []],
        explanation=data.get("explanation"),
    )


class HttpPlanJudge:
    """HTTP client for the plan grading service."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_ms: int = 8000,
        retry_attempts: int = 2,
        backoff_seconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the judge client.

        Args:
            base_url: Base URL for the judge API
            api_key: Bearer token, if the service needs one
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts before giving up
            backoff_seconds: Base of the exponential backoff between attempts
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout_ms / 1000.0),
            headers=headers,
            follow_redirects=True,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> HttpPlanJudge | None:
        """Build a judge from settings, or None when no judge URL is configured."""
        if not settings.judge_url:
            return None
        return cls(
            base_url=settings.judge_url,
            api_key=settings.judge_api_key,
            timeout_ms=settings.judge_timeout_ms,
            retry_attempts=settings.judge_retry_attempts,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpPlanJudge:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def grade_plan(self, checklist: list[str], submitted_text: str) -> JudgeVerdict:
        """
        Score a plan against its checklist with retry logic.

        Args:
            checklist: Points a complete plan should cover
            submitted_text: The learner's plan

        Returns:
            JudgeVerdict with coverage and matched/missing points

        Raises:
            ExternalJudgeUnavailable: On client errors, bad responses or exhausted retries
        """
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(
                    f"{self.base_url}/grade-plan",
                    json={"checklist": checklist, "plan": submitted_text},
                )
                response.raise_for_status()
                return _verdict_from_dict(response.json())

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"Plan judge timeout on attempt {attempt + 1}/{self.retry_attempts}")

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    # Don't retry on 4xx client errors
                    logger.error(f"Plan judge client error: {e.response.status_code}")
                    raise ExternalJudgeUnavailable(f"Judge rejected request: {e.response.status_code}") from e
                logger.warning(
                    f"Plan judge server error {e.response.status_code} on attempt "
                    f"{attempt + 1}/{self.retry_attempts}"
                )

            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"Plan judge request error on attempt {attempt + 1}/{self.retry_attempts}: {e}")

            except ValueError as e:
                raise ExternalJudgeUnavailable("Judge returned invalid JSON") from e

            if attempt < self.retry_attempts - 1 and self.backoff_seconds:
                time.sleep(self.backoff_seconds * 2 ** attempt)

        logger.error(f"Plan judge failed after {self.retry_attempts} attempts: {last_error}")
        raise ExternalJudgeUnavailable(f"Judge unavailable after {self.retry_attempts} attempts") from last_error
